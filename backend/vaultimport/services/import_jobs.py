"""Import job control: start, estimate, observe and steer import runs.

Jobs are executed by ``ImportEngine`` on a worker; this service only
creates rows and records requests. Status changes on a job a worker is
running go through ``requested_action`` and are applied by that worker at
its next checkpoint.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vaultimport.core.config import settings
from vaultimport.core.exceptions import QuotaExceededError, StateConflictError, ValidationError
from vaultimport.core.logging import get_logger
from vaultimport.db.base import utc_now
from vaultimport.db.models import (
    ACTIVE_IMPORT_STATUSES,
    RESUMABLE_IMPORT_STATUSES,
    TERMINAL_IMPORT_STATUSES,
    ImportJob,
    ImportJobCandidate,
    ImportJobStatus,
    ImportScope,
    RequestedAction,
)
from vaultimport.services.ownership import get_owned
from vaultimport.services.plan_guard import PlanCheck, PlanGuard
from vaultimport.services.sources import (
    SourceService,
    iter_new_assets,
    open_connector,
    synced_remote_ids,
)

logger = get_logger(__name__)

# Statuses in which no worker is running the job; control requests apply directly
UNOWNED_CONTROLLABLE = (
    ImportJobStatus.PENDING,
    ImportJobStatus.READY,
)


@dataclass
class ImportEstimate:
    total_assets: int
    estimated_seconds: float
    plan_check: PlanCheck


def normalize_scope(scope: ImportScope, album_ids: list[str] | None) -> list[str] | None:
    """Validate the scope/album combination.

    Returns:
        Album ids to restrict to, or None for the full library.

    Raises:
        ValidationError: A selected-albums scope without any album.
    """
    if scope == ImportScope.SELECTED_ALBUMS:
        album_ids = [a for a in (album_ids or []) if a]
        if not album_ids:
            raise ValidationError("selected_album_ids is required for selected_albums scope")
        # Preserve order, drop repeats
        return list(dict.fromkeys(album_ids))
    return None


class ImportJobService:
    """Creates and controls import jobs for an owner."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.sources = SourceService(db)
        self.plan_guard = PlanGuard(db)

    async def start(
        self,
        owner_id: str,
        source_id: str,
        *,
        scope: ImportScope = ImportScope.FULL,
        selected_album_ids: list[str] | None = None,
        skip_deduplication: bool = False,
        skip_similar: bool = False,
    ) -> ImportJob:
        """Create a pending import job.

        The single-active-job rule is enforced by a partial unique index:
        the insert either succeeds or fails, with no window between a check
        and the write.

        Raises:
            NotFoundError / ForbiddenError: Source lookup failed.
            StateConflictError: The source is disconnected or the owner
                already has an active job.
            ValidationError: Bad scope/album combination.
        """
        source = await self.sources.get_active_source(owner_id, source_id)
        album_ids = normalize_scope(scope, selected_album_ids)

        job = ImportJob(
            owner_id=owner_id,
            source_id=source.id,
            status=ImportJobStatus.PENDING,
            scope=scope,
            skip_deduplication=skip_deduplication,
            skip_similar=skip_similar,
            requested_action=RequestedAction.NONE,
        )
        job.selected_album_ids = album_ids
        self.db.add(job)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            logger.info("import_job_rejected_active_exists", owner_id=owner_id, source_id=source_id)
            raise StateConflictError("An import is already in progress for this account") from e

        logger.info(
            "import_job_created",
            job_id=job.id,
            owner_id=owner_id,
            source_id=source.id,
            scope=scope.value,
            album_count=len(album_ids or []),
            skip_deduplication=skip_deduplication,
        )
        return job

    async def estimate(
        self,
        owner_id: str,
        source_id: str,
        *,
        scope: ImportScope = ImportScope.FULL,
        selected_album_ids: list[str] | None = None,
    ) -> ImportEstimate:
        """Count what an import would bring in and check it against the plan."""
        source = await self.sources.get_active_source(owner_id, source_id)
        album_ids = normalize_scope(scope, selected_album_ids)
        synced = await synced_remote_ids(self.db, source.id)

        total = 0
        async with open_connector(source) as connector:
            async for _asset in iter_new_assets(connector, synced, album_ids):
                total += 1

        return ImportEstimate(
            total_assets=total,
            estimated_seconds=total * settings.seconds_per_asset,
            plan_check=await self.plan_guard.check(owner_id, total),
        )

    async def get_job(self, owner_id: str, job_id: str) -> ImportJob:
        # populate_existing so repeated polls in one session see worker writes
        return await get_owned(self.db, ImportJob, job_id, owner_id, populate_existing=True)

    async def list_jobs(
        self,
        owner_id: str,
        *,
        status: ImportJobStatus | None = None,
        source_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ImportJob], int]:
        """Jobs for an owner, newest first, with the unpaginated total."""
        conditions = [ImportJob.owner_id == owner_id]
        if status:
            conditions.append(ImportJob.status == status)
        if source_id:
            conditions.append(ImportJob.source_id == source_id)

        total = await self.db.scalar(select(func.count(ImportJob.id)).where(*conditions))
        result = await self.db.execute(
            select(ImportJob)
            .where(*conditions)
            .order_by(ImportJob.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total or 0

    async def cancel(self, owner_id: str, job_id: str) -> ImportJob:
        """Cancel a job.

        Unowned jobs are cancelled immediately; a running job is asked to
        stop and will be ``cancelled`` once its worker reaches the next
        asset boundary. Assets already transferred stay in the vault.

        Raises:
            StateConflictError: The job already finished.
        """
        job = await self.get_job(owner_id, job_id)
        if job.status in TERMINAL_IMPORT_STATUSES:
            raise StateConflictError(f"Import job {job_id} is already {job.status.value}")

        now = utc_now()
        applied = await self._apply_if_unowned(
            job_id,
            UNOWNED_CONTROLLABLE + RESUMABLE_IMPORT_STATUSES,
            status=ImportJobStatus.CANCELLED,
            completed_at=now,
            requested_action=RequestedAction.NONE,
        )
        if not applied:
            await self._request_action(job_id, RequestedAction.CANCEL)

        logger.info("import_job_cancel_requested", job_id=job_id, immediate=applied)
        return await self.get_job(owner_id, job_id)

    async def pause(self, owner_id: str, job_id: str) -> ImportJob:
        """Pause a job, keeping its progress.

        Pausing a paused job is a no-op.

        Raises:
            StateConflictError: The job is finished or blocked on quota.
        """
        job = await self.get_job(owner_id, job_id)
        if job.status == ImportJobStatus.PAUSED:
            return job
        if job.status not in ACTIVE_IMPORT_STATUSES:
            raise StateConflictError(f"Cannot pause an import job that is {job.status.value}")

        applied = await self._apply_if_unowned(
            job_id,
            UNOWNED_CONTROLLABLE,
            status=ImportJobStatus.PAUSED,
            requested_action=RequestedAction.NONE,
        )
        if not applied:
            await self._request_action(job_id, RequestedAction.PAUSE)

        logger.info("import_job_pause_requested", job_id=job_id, immediate=applied)
        return await self.get_job(owner_id, job_id)

    async def resume(self, owner_id: str, job_id: str) -> ImportJob:
        """Put a paused or quota-blocked job back into the queue.

        Raises:
            StateConflictError: The job is not suspended, or another job
                for the owner is active.
            QuotaExceededError: The job is blocked on quota and the plan
                still has no room. The job is left unchanged.
        """
        job = await self.get_job(owner_id, job_id)
        if job.status not in RESUMABLE_IMPORT_STATUSES:
            raise StateConflictError(f"Cannot resume an import job that is {job.status.value}")

        if job.status == ImportJobStatus.BLOCKED_LIMIT:
            remaining = await self.plan_guard.remaining(owner_id)
            if remaining < 1:
                raise QuotaExceededError("Photo limit reached; upgrade the plan to continue")

        has_candidates = await self.db.scalar(
            select(func.count(ImportJobCandidate.id)).where(ImportJobCandidate.job_id == job_id)
        )
        next_status = ImportJobStatus.READY if has_candidates else ImportJobStatus.PENDING

        try:
            result = await self.db.execute(
                update(ImportJob)
                .where(ImportJob.id == job_id, ImportJob.status == job.status)
                .values(
                    status=next_status,
                    requested_action=RequestedAction.NONE,
                    error_code=None,
                    error_message=None,
                    lease_owner=None,
                    lease_expires_at=None,
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            raise StateConflictError("Another import is already in progress for this account") from e

        if result.rowcount != 1:
            raise StateConflictError(f"Import job {job_id} changed state; retry")

        logger.info("import_job_resumed", job_id=job_id, from_status=job.status.value)
        return await self.get_job(owner_id, job_id)

    async def _apply_if_unowned(self, job_id: str, statuses: tuple, **values) -> bool:
        result = await self.db.execute(
            update(ImportJob)
            .where(
                ImportJob.id == job_id,
                ImportJob.status.in_(statuses),
                ImportJob.lease_owner.is_(None),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _request_action(self, job_id: str, action: RequestedAction) -> None:
        result = await self.db.execute(
            update(ImportJob)
            .where(
                ImportJob.id == job_id,
                ImportJob.status.in_(ACTIVE_IMPORT_STATUSES),
                # A cancel request is never downgraded to a pause
                ImportJob.requested_action != RequestedAction.CANCEL,
            )
            .values(requested_action=action)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = await self.db.scalar(select(ImportJob.status).where(ImportJob.id == job_id))
            if current in TERMINAL_IMPORT_STATUSES:
                raise StateConflictError(f"Import job {job_id} is already {current.value}")
