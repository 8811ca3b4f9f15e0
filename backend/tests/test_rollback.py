"""Tests for rolling back completed imports."""

from __future__ import annotations

import pytest
from fakes import OTHER_OWNER, OWNER
from sqlalchemy import func, select, update

from vaultimport.core.exceptions import ForbiddenError, NotFoundError, StateConflictError
from vaultimport.db.base import utc_now
from vaultimport.db.models import Asset, ImportJob, ImportJobStatus, ImportSourceItem
from vaultimport.services.import_jobs import ImportJobService
from vaultimport.services.plan_guard import PlanGuard
from vaultimport.services.rollback import RollbackService
from vaultimport.services.sources import SourceService


@pytest.fixture
def completed_import(db_session, library, make_source, run_import):
    """Factory that imports ``count`` assets and returns (source, job)."""

    async def _import(count: int = 4):
        library.add_many(count)
        source = await make_source(library)
        job = await ImportJobService(db_session).start(OWNER, source.id)
        await db_session.commit()
        assert await run_import() == ImportJobStatus.COMPLETED
        return source, job

    return _import


async def live_assets(db, job_id: str) -> int:
    return await db.scalar(
        select(func.count(Asset.id)).where(Asset.import_job_id == job_id, Asset.deleted_at.is_(None))
    )


class TestRollback:
    """Tests for RollbackService.rollback."""

    async def test_tombstones_imported_assets(self, db_session, completed_import):
        source, job = await completed_import(4)

        result = await RollbackService(db_session).rollback(OWNER, job.id)
        await db_session.commit()

        assert result.deleted_assets == 4
        assert result.already_removed == 0
        assert await live_assets(db_session, job.id) == 0
        job = await db_session.get(ImportJob, job.id, populate_existing=True)
        assert job.status == ImportJobStatus.ROLLED_BACK
        assert job.rolled_back_at is not None

    async def test_frees_plan_capacity_and_resets_source(self, db_session, completed_import):
        source, job = await completed_import(4)
        guard = PlanGuard(db_session)
        assert (await guard.get_plan_info(OWNER)).current_photos == 4

        await RollbackService(db_session).rollback(OWNER, job.id)
        await db_session.commit()

        assert (await guard.get_plan_info(OWNER)).current_photos == 0
        await db_session.refresh(source)
        assert source.total_assets_synced == 0
        remaining_items = await db_session.scalar(
            select(func.count(ImportSourceItem.id)).where(ImportSourceItem.source_id == source.id)
        )
        assert remaining_items == 0

    async def test_rolled_back_assets_count_as_new_again(self, db_session, completed_import):
        source, job = await completed_import(3)
        sources = SourceService(db_session)
        assert (await sources.check_new(OWNER, source.id)).new_assets == 0

        await RollbackService(db_session).rollback(OWNER, job.id)
        await db_session.commit()

        assert (await sources.check_new(OWNER, source.id)).new_assets == 3

    async def test_reimport_after_rollback_brings_assets_back(
        self, db_session, completed_import, run_import
    ):
        source, job = await completed_import(3)
        await RollbackService(db_session).rollback(OWNER, job.id)
        await db_session.commit()

        again = await ImportJobService(db_session).start(OWNER, source.id)
        await db_session.commit()
        assert await run_import() == ImportJobStatus.COMPLETED

        again = await db_session.get(ImportJob, again.id, populate_existing=True)
        assert again.imported_assets == 3
        assert again.skipped_duplicates == 0

    async def test_second_rollback_conflicts(self, db_session, completed_import):
        _, job = await completed_import(2)
        service = RollbackService(db_session)
        await service.rollback(OWNER, job.id)
        await db_session.commit()

        with pytest.raises(StateConflictError):
            await service.rollback(OWNER, job.id)

    async def test_unfinished_job_cannot_be_rolled_back(self, db_session, library, make_source):
        source = await make_source(library)
        job = await ImportJobService(db_session).start(OWNER, source.id)
        await db_session.commit()

        with pytest.raises(StateConflictError):
            await RollbackService(db_session).rollback(OWNER, job.id)

        job = await db_session.get(ImportJob, job.id, populate_existing=True)
        assert job.status == ImportJobStatus.PENDING

    async def test_already_tombstoned_assets_are_reported(self, db_session, completed_import):
        _, job = await completed_import(3)
        victim = await db_session.scalar(
            select(Asset.id).where(Asset.import_job_id == job.id).order_by(Asset.id).limit(1)
        )
        await db_session.execute(
            update(Asset).where(Asset.id == victim).values(deleted_at=utc_now())
        )
        await db_session.commit()

        result = await RollbackService(db_session).rollback(OWNER, job.id)

        assert result.deleted_assets == 2
        assert result.already_removed == 1

    async def test_other_owner_is_forbidden(self, db_session, completed_import):
        _, job = await completed_import(1)

        with pytest.raises(ForbiddenError):
            await RollbackService(db_session).rollback(OTHER_OWNER, job.id)

    async def test_unknown_job_is_not_found(self, db_session):
        with pytest.raises(NotFoundError):
            await RollbackService(db_session).rollback(OWNER, "missing")

    async def test_leaves_other_jobs_assets_alone(
        self, db_session, library, make_source, make_asset, completed_import
    ):
        unrelated = await make_asset(filename="mine.jpg", fingerprint="sha256:" + "0" * 64)
        _, job = await completed_import(2)

        await RollbackService(db_session).rollback(OWNER, job.id)
        await db_session.commit()

        await db_session.refresh(unrelated)
        assert unrelated.deleted_at is None
