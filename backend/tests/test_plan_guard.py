"""Tests for plan limits on live vault assets."""

import pytest
from fakes import OTHER_OWNER, OWNER

from vaultimport.core.config import settings
from vaultimport.core.exceptions import ValidationError
from vaultimport.db.base import utc_now
from vaultimport.services.plan_guard import PlanGuard


class TestPlanGuard:
    """Tests for PlanGuard."""

    async def test_default_plan_for_unknown_owner(self, db_session):
        info = await PlanGuard(db_session).get_plan_info(OWNER)

        assert info.plan_tier == settings.default_plan_tier
        assert info.max_photos == settings.default_max_photos
        assert info.current_photos == 0
        assert info.remaining_photos == settings.default_max_photos

    async def test_counts_only_live_assets_of_owner(self, db_session, make_asset):
        await make_asset()
        await make_asset()
        await make_asset(deleted_at=utc_now())
        await make_asset(owner_id=OTHER_OWNER)

        info = await PlanGuard(db_session).get_plan_info(OWNER)

        assert info.current_photos == 2

    async def test_set_plan_limit_creates_then_updates(self, db_session):
        guard = PlanGuard(db_session)

        plan = await guard.set_plan_limit(OWNER, 10, plan_tier="family")
        assert (plan.plan_tier, plan.max_photos) == ("family", 10)

        plan = await guard.set_plan_limit(OWNER, 20)
        assert (plan.plan_tier, plan.max_photos) == ("family", 20)

    async def test_negative_limit_rejected(self, db_session):
        with pytest.raises(ValidationError):
            await PlanGuard(db_session).set_plan_limit(OWNER, -1)

    async def test_remaining_never_negative(self, db_session, make_asset):
        guard = PlanGuard(db_session)
        for _ in range(3):
            await make_asset()
        await guard.set_plan_limit(OWNER, 1)

        assert await guard.remaining(OWNER) == 0
        assert await guard.has_capacity(OWNER) is False

    async def test_check_reports_overflow(self, db_session, make_asset):
        guard = PlanGuard(db_session)
        await make_asset()
        await guard.set_plan_limit(OWNER, 5)

        fits = await guard.check(OWNER, 4)
        overflow = await guard.check(OWNER, 7)

        assert fits.can_import is True
        assert fits.would_exceed_by == 0
        assert overflow.can_import is False
        assert overflow.remaining_photos == 4
        assert overflow.current_photos == 1
        assert overflow.would_exceed_by == 3

    async def test_tombstoning_frees_capacity(self, db_session, make_asset):
        guard = PlanGuard(db_session)
        asset = await make_asset()
        await guard.set_plan_limit(OWNER, 1)
        assert await guard.has_capacity(OWNER) is False

        asset.deleted_at = utc_now()
        await db_session.commit()

        assert await guard.has_capacity(OWNER) is True

    async def test_limit_change_from_another_session_is_seen(self, db_session, session_maker):
        """A long-running worker session picks up an upgrade made elsewhere."""
        guard = PlanGuard(db_session)
        await guard.set_plan_limit(OWNER, 1)
        await db_session.commit()
        assert (await guard.get_plan_info(OWNER)).max_photos == 1

        async with session_maker() as billing:
            await PlanGuard(billing).set_plan_limit(OWNER, 50)
            await billing.commit()

        info = await guard.get_plan_info(OWNER)
        assert info.max_photos == 50
        assert await guard.has_capacity(OWNER) is True
