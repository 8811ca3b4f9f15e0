"""Rollback: reverse a completed import by tombstoning what it brought in."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vaultimport.core.exceptions import StateConflictError
from vaultimport.core.logging import get_logger
from vaultimport.db.base import utc_now
from vaultimport.db.models import (
    Asset,
    ImportJob,
    ImportJobStatus,
    ImportSource,
    ImportSourceItem,
)
from vaultimport.services.ownership import get_owned

logger = get_logger(__name__)


@dataclass
class RollbackResult:
    job_id: str
    deleted_assets: int
    # Provenance-linked assets some earlier action (e.g. group resolution) removed
    already_removed: int = 0


class RollbackService:
    """Compensating operation for completed import jobs.

    Everything happens in the caller's transaction: on any error the
    caller rolls back and the job stays ``completed``.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def rollback(self, owner_id: str, job_id: str) -> RollbackResult:
        """Tombstone every asset the job imported and mark it rolled back.

        Assets already tombstoned (for example by resolving a duplicate
        group) are left as they are and reported in ``already_removed``.

        Raises:
            NotFoundError / ForbiddenError: Job lookup failed.
            StateConflictError: The job is not ``completed``, including a
                second rollback of the same job.
        """
        job = await get_owned(self.db, ImportJob, job_id, owner_id, populate_existing=True)
        if job.status != ImportJobStatus.COMPLETED:
            raise StateConflictError(
                f"Only completed imports can be rolled back (job is {job.status.value})"
            )

        now = utc_now()
        # Claim the transition first so concurrent rollbacks cannot both apply
        flipped = await self.db.execute(
            update(ImportJob)
            .where(ImportJob.id == job_id, ImportJob.status == ImportJobStatus.COMPLETED)
            .values(status=ImportJobStatus.ROLLED_BACK, rolled_back_at=now)
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount != 1:
            raise StateConflictError(f"Import job {job_id} was rolled back concurrently")

        linked = await self.db.scalar(
            select(func.count(Asset.id)).where(Asset.import_job_id == job_id)
        ) or 0

        tombstoned = await self.db.execute(
            update(Asset)
            .where(Asset.import_job_id == job_id, Asset.deleted_at.is_(None))
            .values(deleted_at=now)
            .execution_options(synchronize_session=False)
        )
        deleted = tombstoned.rowcount or 0

        # Let later imports (from any source) bring the same content back
        linked_ids = select(Asset.id).where(Asset.import_job_id == job_id)
        await self.db.execute(
            delete(ImportSourceItem)
            .where(ImportSourceItem.asset_id.in_(linked_ids))
            .execution_options(synchronize_session=False)
        )

        # The source counter grew by one per imported asset
        await self.db.execute(
            update(ImportSource)
            .where(ImportSource.id == job.source_id)
            .values(
                total_assets_synced=case(
                    (ImportSource.total_assets_synced < linked, 0),
                    else_=ImportSource.total_assets_synced - linked,
                )
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()

        logger.info(
            "import_job_rolled_back",
            job_id=job_id,
            owner_id=owner_id,
            deleted_assets=deleted,
            already_removed=linked - deleted,
        )
        return RollbackResult(job_id=job_id, deleted_assets=deleted, already_removed=linked - deleted)
