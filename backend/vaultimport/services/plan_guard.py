"""Plan guard: per-account limits on live vault assets."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from vaultimport.core.config import settings
from vaultimport.core.exceptions import ValidationError
from vaultimport.core.logging import get_logger
from vaultimport.db.models import AccountPlan, Asset

logger = get_logger(__name__)


@dataclass
class PlanInfo:
    plan_tier: str
    current_photos: int
    max_photos: int

    @property
    def remaining_photos(self) -> int:
        return max(self.max_photos - self.current_photos, 0)


@dataclass
class PlanCheck:
    """Whether a planned import fits the account's remaining capacity."""

    can_import: bool
    remaining_photos: int
    current_photos: int
    max_photos: int
    would_exceed_by: int


class PlanGuard:
    """Counts live assets against the owner's plan limit.

    The count is read fresh on every call; only tombstoned assets free
    capacity.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_plan_info(self, owner_id: str) -> PlanInfo:
        # Workers hold one session for a whole run; re-read plan changes from billing
        plan = await self.db.get(AccountPlan, owner_id, populate_existing=True)
        if plan is None:
            tier, max_photos = settings.default_plan_tier, settings.default_max_photos
        else:
            tier, max_photos = plan.plan_tier, plan.max_photos

        current = await self.db.scalar(
            select(func.count(Asset.id)).where(
                Asset.owner_id == owner_id,
                Asset.deleted_at.is_(None),
            )
        )
        return PlanInfo(plan_tier=tier, current_photos=current or 0, max_photos=max_photos)

    async def remaining(self, owner_id: str) -> int:
        return (await self.get_plan_info(owner_id)).remaining_photos

    async def has_capacity(self, owner_id: str, count: int = 1) -> bool:
        return await self.remaining(owner_id) >= count

    async def check(self, owner_id: str, planned: int) -> PlanCheck:
        """Compare a planned number of new assets with remaining capacity."""
        info = await self.get_plan_info(owner_id)
        remaining = info.remaining_photos
        return PlanCheck(
            can_import=planned <= remaining,
            remaining_photos=remaining,
            current_photos=info.current_photos,
            max_photos=info.max_photos,
            would_exceed_by=max(planned - remaining, 0),
        )

    async def set_plan_limit(
        self,
        owner_id: str,
        max_photos: int,
        plan_tier: str | None = None,
    ) -> AccountPlan:
        """Record a plan change from billing.

        Raises:
            ValidationError: If max_photos is negative.
        """
        if max_photos < 0:
            raise ValidationError("max_photos must not be negative")

        plan = await self.db.get(AccountPlan, owner_id)
        if plan is None:
            plan = AccountPlan(
                owner_id=owner_id,
                plan_tier=plan_tier or settings.default_plan_tier,
                max_photos=max_photos,
            )
            self.db.add(plan)
        else:
            plan.max_photos = max_photos
            if plan_tier:
                plan.plan_tier = plan_tier
        await self.db.flush()

        logger.info(
            "plan_limit_updated",
            owner_id=owner_id,
            plan_tier=plan.plan_tier,
            max_photos=max_photos,
        )
        return plan
