"""Time-bounded worker leases over import and scan job rows.

Every claim and renewal is a compare-and-set UPDATE, so two workers can
never both believe they own a job. A lease that is not renewed expires and
the job becomes claimable again.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, TypeVar

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vaultimport.core.config import settings
from vaultimport.core.exceptions import LeaseLostError
from vaultimport.core.logging import get_logger
from vaultimport.db.base import utc_now

logger = get_logger(__name__)

JobModel = TypeVar("JobModel")

# How many claim candidates to try per poll before giving up
CLAIM_BATCH = 5


def lease_deadline(now: datetime | None = None) -> datetime:
    return (now or utc_now()) + timedelta(seconds=settings.lease_seconds)


def _claimable(model: Any, statuses: Sequence[Enum], now: datetime) -> Any:
    return and_(
        model.status.in_(statuses),
        or_(model.lease_owner.is_(None), model.lease_expires_at < now),
    )


async def claim_next(
    db: AsyncSession,
    model: type[JobModel],
    statuses: Sequence[Enum],
    worker_id: str,
) -> JobModel | None:
    """Claim the oldest unleased (or lease-expired) job in ``statuses``.

    Commits the claim so other workers observe it immediately.

    Returns:
        The claimed row, refreshed, or None if nothing is claimable.
    """
    now = utc_now()
    result = await db.execute(
        select(model.id)
        .where(_claimable(model, statuses, now))
        .order_by(model.created_at.asc())
        .limit(CLAIM_BATCH)
    )
    for job_id in result.scalars().all():
        claimed = await db.execute(
            update(model)
            .where(model.id == job_id, _claimable(model, statuses, now))
            .values(lease_owner=worker_id, lease_expires_at=lease_deadline(now))
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if claimed.rowcount == 1:
            job = await db.get(model, job_id, populate_existing=True)
            logger.info(
                "job_lease_claimed",
                job_kind=model.__tablename__,
                job_id=job_id,
                worker_id=worker_id,
            )
            return job
    return None


async def guarded_update(
    db: AsyncSession,
    model: type[JobModel],
    job_id: str,
    worker_id: str,
    **values: Any,
) -> None:
    """Write job fields only while ``worker_id`` still holds the lease.

    Extends the lease as a side effect. Does not commit.

    Raises:
        LeaseLostError: If another worker reclaimed the job.
    """
    result = await db.execute(
        update(model)
        .where(model.id == job_id, model.lease_owner == worker_id)
        .values(lease_expires_at=lease_deadline(), **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise LeaseLostError(f"{model.__name__} {job_id} is no longer leased by {worker_id}")


async def release(
    db: AsyncSession,
    model: type[JobModel],
    job_id: str,
    worker_id: str,
    **values: Any,
) -> None:
    """Apply final field values and drop the lease in one guarded write."""
    await guarded_update(db, model, job_id, worker_id, lease_owner=None, **values)
    # guarded_update stamped a fresh deadline; an unowned row carries none
    await db.execute(
        update(model)
        .where(model.id == job_id, model.lease_owner.is_(None))
        .values(lease_expires_at=None)
        .execution_options(synchronize_session=False)
    )


async def expire_stale_leases(
    db: AsyncSession,
    model: type[JobModel],
    statuses: Sequence[Enum],
) -> int:
    """Clear leases whose deadline passed so the jobs show as unowned.

    Returns:
        Number of leases cleared.
    """
    result = await db.execute(
        update(model)
        .where(
            model.status.in_(statuses),
            model.lease_owner.is_not(None),
            model.lease_expires_at < utc_now(),
        )
        .values(lease_owner=None, lease_expires_at=None)
        .execution_options(synchronize_session=False)
    )
    count = result.rowcount or 0
    if count:
        logger.warning("stale_leases_expired", job_kind=model.__tablename__, count=count)
    return count
