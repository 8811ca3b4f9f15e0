"""Pydantic schemas for duplicate scans and groups."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from vaultimport.db.models.enums import (
    DedupScanStatus,
    DuplicateGroupStatus,
    DuplicateGroupType,
    RequestedAction,
    ResolveAction,
)


# ============================================================
# Scans
# ============================================================


class DedupScanCreate(BaseModel):
    """Schema for starting a whole-vault scan."""

    similarity_threshold: float | None = Field(
        None, gt=0, le=1, description="Minimum similarity score; server default when omitted"
    )


class DedupScanResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: str
    status: DedupScanStatus
    similarity_threshold: float
    total_assets: int
    scanned_assets: int
    assets_with_fingerprint: int
    duplicates_found: int
    similar_found: int
    requested_action: RequestedAction
    error_code: str | None = None
    error_message: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class DedupScanList(BaseModel):
    items: list[DedupScanResponse]


# ============================================================
# Groups
# ============================================================


class DuplicateGroupMemberResponse(BaseModel):
    """One asset in a duplicate group."""

    asset_id: str
    is_primary: bool
    similarity_score: float
    filename: str | None = None
    width: int | None = None
    height: int | None = None
    byte_size: int | None = None
    created_at: datetime | None = None
    is_deleted: bool = False


class DuplicateGroupResponse(BaseModel):
    id: str
    scan_job_id: str | None = None
    group_type: DuplicateGroupType
    status: DuplicateGroupStatus
    asset_count: int
    resolution_action: ResolveAction | None = None
    kept_asset_id: str | None = None
    deleted_count: int
    created_at: datetime
    resolved_at: datetime | None = None
    members: list[DuplicateGroupMemberResponse]


class DuplicateGroupList(BaseModel):
    """Paginated list of duplicate groups."""

    items: list[DuplicateGroupResponse]
    total: int
    limit: int
    offset: int


class ResolveGroupRequest(BaseModel):
    """Schema for resolving a duplicate group."""

    action: ResolveAction
    keep_asset_id: str | None = Field(
        None, description="Survivor for keep_one; defaults to the group's primary"
    )
