"""Import job endpoints: start, poll, control and roll back imports.

Jobs run on background workers; these endpoints only create jobs, record
control requests and read the state the workers persist.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from vaultimport.api.deps import get_owner_id
from vaultimport.db import get_db
from vaultimport.db.models import ImportJobStatus
from vaultimport.schemas.import_job import (
    ImportEstimateRequest,
    ImportEstimateResponse,
    ImportJobCreate,
    ImportJobList,
    ImportJobResponse,
    RollbackResponse,
)
from vaultimport.schemas.plan import PlanCheckResponse
from vaultimport.services.import_jobs import ImportJobService
from vaultimport.services.rollback import RollbackService

router = APIRouter(prefix="/import-jobs", tags=["import-jobs"])


# =============================================================================
# Create
# =============================================================================


@router.post("/estimate", response_model=ImportEstimateResponse)
async def estimate_import(
    data: ImportEstimateRequest,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> ImportEstimateResponse:
    """Count what an import would bring in and check it against the plan."""
    estimate = await ImportJobService(db).estimate(
        owner_id,
        data.source_id,
        scope=data.scope,
        selected_album_ids=data.selected_album_ids,
    )
    return ImportEstimateResponse(
        total_assets=estimate.total_assets,
        estimated_seconds=estimate.estimated_seconds,
        plan_check=PlanCheckResponse.model_validate(estimate.plan_check),
    )


@router.post("", response_model=ImportJobResponse, status_code=status.HTTP_201_CREATED)
async def start_import(
    data: ImportJobCreate,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> ImportJobResponse:
    """Queue an import job.

    Fails with 409 when the account already has an import in progress.
    """
    job = await ImportJobService(db).start(
        owner_id,
        data.source_id,
        scope=data.scope,
        selected_album_ids=data.selected_album_ids,
        skip_deduplication=data.skip_deduplication,
        skip_similar=data.skip_similar,
    )
    return ImportJobResponse.model_validate(job)


# =============================================================================
# Read
# =============================================================================


@router.get("", response_model=ImportJobList)
async def list_import_jobs(
    status_filter: ImportJobStatus | None = Query(None, alias="status"),
    source_id: str | None = Query(None, description="Filter by source"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> ImportJobList:
    jobs, total = await ImportJobService(db).list_jobs(
        owner_id,
        status=status_filter,
        source_id=source_id,
        limit=limit,
        offset=offset,
    )
    return ImportJobList(
        items=[ImportJobResponse.model_validate(j) for j in jobs],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{job_id}", response_model=ImportJobResponse)
async def get_import_job(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> ImportJobResponse:
    """Poll a job's state and counters."""
    job = await ImportJobService(db).get_job(owner_id, job_id)
    return ImportJobResponse.model_validate(job)


# =============================================================================
# Control
# =============================================================================


@router.post("/{job_id}/cancel", response_model=ImportJobResponse)
async def cancel_import_job(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> ImportJobResponse:
    """Cancel a job. A running job stops after the asset in flight."""
    job = await ImportJobService(db).cancel(owner_id, job_id)
    return ImportJobResponse.model_validate(job)


@router.post("/{job_id}/pause", response_model=ImportJobResponse)
async def pause_import_job(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> ImportJobResponse:
    job = await ImportJobService(db).pause(owner_id, job_id)
    return ImportJobResponse.model_validate(job)


@router.post("/{job_id}/resume", response_model=ImportJobResponse)
async def resume_import_job(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> ImportJobResponse:
    """Resume a paused or limit-blocked job from where it stopped."""
    job = await ImportJobService(db).resume(owner_id, job_id)
    return ImportJobResponse.model_validate(job)


@router.post("/{job_id}/rollback", response_model=RollbackResponse)
async def rollback_import_job(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
) -> RollbackResponse:
    """Delete everything a completed import brought into the vault."""
    result = await RollbackService(db).rollback(owner_id, job_id)
    return RollbackResponse.model_validate(result)
