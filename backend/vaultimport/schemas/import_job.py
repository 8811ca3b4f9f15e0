"""Pydantic schemas for import jobs."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, computed_field

from vaultimport.db.models.enums import ImportJobStatus, ImportScope, RequestedAction
from vaultimport.schemas.plan import PlanCheckResponse

# Suspended states a later resume or a fresh start can recover from
RETRYABLE_STATUSES = (ImportJobStatus.BLOCKED_LIMIT, ImportJobStatus.PAUSED)
RETRYABLE_ERROR_CODES = ("provider_unavailable",)


# ============================================================
# Requests
# ============================================================


class ImportEstimateRequest(BaseModel):
    """Schema for sizing an import before starting it."""

    source_id: str
    scope: ImportScope = ImportScope.FULL
    selected_album_ids: list[str] | None = Field(
        None, description="Required when scope is selected_albums"
    )


class ImportJobCreate(ImportEstimateRequest):
    """Schema for starting an import job."""

    skip_deduplication: bool = Field(
        False, description="Import content even if the vault already holds it"
    )
    skip_similar: bool = Field(
        False, description="Also skip assets that look like an existing photo"
    )


# ============================================================
# Responses
# ============================================================


class ImportEstimateResponse(BaseModel):
    total_assets: int
    estimated_seconds: float
    plan_check: PlanCheckResponse


class ImportJobResponse(BaseModel):
    """Import job state as persisted by the worker running it."""

    model_config = {"from_attributes": True}

    id: str
    source_id: str
    status: ImportJobStatus
    scope: ImportScope
    selected_album_ids: list[str] = Field(default_factory=list)
    skip_deduplication: bool
    skip_similar: bool

    total_assets: int
    processed_assets: int
    imported_assets: int
    skipped_duplicates: int
    skipped_similar: int
    failed_assets: int
    progress_percent: float | None = None

    requested_action: RequestedAction
    error_code: str | None = None
    error_message: str | None = None

    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    rolled_back_at: datetime | None = None

    @computed_field
    @property
    def is_retryable(self) -> bool:
        """Whether the caller can expect the job (or a restart) to make progress later."""
        if self.status in RETRYABLE_STATUSES:
            return True
        return self.status == ImportJobStatus.FAILED and self.error_code in RETRYABLE_ERROR_CODES


class ImportJobList(BaseModel):
    """Paginated list of import jobs."""

    items: list[ImportJobResponse]
    total: int
    limit: int
    offset: int


class RollbackResponse(BaseModel):
    """Outcome of rolling back a completed import."""

    model_config = {"from_attributes": True}

    job_id: str
    deleted_assets: int
    already_removed: int = Field(
        0, description="Imported assets that had already been deleted"
    )
