"""Duplicate scan and group endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from vaultimport.api.deps import get_owner_id
from vaultimport.db import get_db
from vaultimport.db.models import DuplicateGroup, DuplicateGroupStatus, DuplicateGroupType
from vaultimport.schemas.dedup import (
    DedupScanCreate,
    DedupScanList,
    DedupScanResponse,
    DuplicateGroupList,
    DuplicateGroupMemberResponse,
    DuplicateGroupResponse,
    ResolveGroupRequest,
)
from vaultimport.services.dedup import DedupService

router = APIRouter(prefix="/dedup", tags=["dedup"])


def _build_group_response(group: DuplicateGroup) -> DuplicateGroupResponse:
    members = sorted(group.members, key=lambda m: (not m.is_primary, m.asset_id))
    return DuplicateGroupResponse(
        id=group.id,
        scan_job_id=group.scan_job_id,
        group_type=group.group_type,
        status=group.status,
        asset_count=group.asset_count,
        resolution_action=group.resolution_action,
        kept_asset_id=group.kept_asset_id,
        deleted_count=group.deleted_count or 0,
        created_at=group.created_at,
        resolved_at=group.resolved_at,
        members=[
            DuplicateGroupMemberResponse(
                asset_id=m.asset_id,
                is_primary=m.is_primary,
                similarity_score=m.similarity_score,
                filename=m.asset.filename,
                width=m.asset.width,
                height=m.asset.height,
                byte_size=m.asset.byte_size,
                created_at=m.asset.created_at,
                is_deleted=m.asset.is_deleted,
            )
            for m in members
        ],
    )


# =============================================================================
# Scans
# =============================================================================


@router.post("/scans", response_model=DedupScanResponse, status_code=status.HTTP_201_CREATED)
async def start_scan(
    data: DedupScanCreate | None = None,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> DedupScanResponse:
    """Queue a duplicate scan of the whole vault."""
    threshold = data.similarity_threshold if data else None
    scan = await DedupService(db).start_scan(owner_id, similarity_threshold=threshold)
    return DedupScanResponse.model_validate(scan)


@router.get("/scans", response_model=DedupScanList)
async def list_scans(
    limit: int = Query(20, ge=1, le=100),
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> DedupScanList:
    scans = await DedupService(db).list_scans(owner_id, limit=limit)
    return DedupScanList(items=[DedupScanResponse.model_validate(s) for s in scans])


@router.get("/scans/{scan_id}", response_model=DedupScanResponse)
async def get_scan(
    scan_id: str,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> DedupScanResponse:
    scan = await DedupService(db).get_status(owner_id, scan_id)
    return DedupScanResponse.model_validate(scan)


@router.post("/scans/{scan_id}/cancel", response_model=DedupScanResponse)
async def cancel_scan(
    scan_id: str,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> DedupScanResponse:
    scan = await DedupService(db).cancel_scan(owner_id, scan_id)
    return DedupScanResponse.model_validate(scan)


# =============================================================================
# Groups
# =============================================================================


@router.get("/groups", response_model=DuplicateGroupList)
async def list_groups(
    status_filter: DuplicateGroupStatus | None = Query(None, alias="status"),
    group_type: DuplicateGroupType | None = Query(None, description="exact or similar"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> DuplicateGroupList:
    """List duplicate groups, newest first."""
    groups, total = await DedupService(db).get_groups(
        owner_id,
        status=status_filter,
        group_type=group_type,
        limit=limit,
        offset=offset,
    )
    return DuplicateGroupList(
        items=[_build_group_response(g) for g in groups],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/groups/{group_id}", response_model=DuplicateGroupResponse)
async def get_group(
    group_id: str,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> DuplicateGroupResponse:
    group = await DedupService(db).get_group(owner_id, group_id)
    return _build_group_response(group)


@router.post("/groups/{group_id}/resolve", response_model=DuplicateGroupResponse)
async def resolve_group(
    group_id: str,
    data: ResolveGroupRequest,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> DuplicateGroupResponse:
    """Resolve a group. Repeating the same resolution is a no-op."""
    group = await DedupService(db).resolve_group(
        owner_id,
        group_id,
        data.action,
        keep_asset_id=data.keep_asset_id,
    )
    return _build_group_response(group)
