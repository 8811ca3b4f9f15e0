"""Tests for structlog setup and per-job log context."""

from __future__ import annotations

import logging

import pytest
import structlog
from fakes import OWNER

from vaultimport.core.config import settings
from vaultimport.core.logging import NOISY_LOGGERS, job_log_context, setup_logging
from vaultimport.services.import_jobs import ImportJobService
from vaultimport.workers import ImportWorker


@pytest.fixture
def restore_logging():
    root_level = logging.getLogger().level
    levels = {name: logging.getLogger(name).level for name in NOISY_LOGGERS}
    yield
    structlog.reset_defaults()
    logging.getLogger().setLevel(root_level)
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)


# =============================================================================
# Setup
# =============================================================================


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_request_loggers_are_quieted(self, restore_logging, monkeypatch):
        monkeypatch.setattr(settings, "debug", False)

        setup_logging("INFO")

        assert logging.getLogger().level == logging.INFO
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self, restore_logging):
        setup_logging("chatty")

        assert logging.getLogger().level == logging.INFO


# =============================================================================
# Job context
# =============================================================================


class TestJobLogContext:
    """Tests for binding worker and job ids to log events."""

    def test_context_is_bound_only_inside_block(self):
        with job_log_context(worker_id="w1", job_id="job-1"):
            assert structlog.contextvars.get_contextvars() == {
                "worker_id": "w1",
                "job_id": "job-1",
            }

        assert "job_id" not in structlog.contextvars.get_contextvars()

    async def test_worker_binds_running_job(
        self, db_session, session_maker, library, make_source, storage, monkeypatch
    ):
        library.add_many(1)
        source = await make_source(library)
        job = await ImportJobService(db_session).start(OWNER, source.id)
        await db_session.commit()
        seen = []

        async def record_context(db, job_id):
            seen.append(structlog.contextvars.get_contextvars())

        worker = ImportWorker(
            worker_id="w1", session_maker=session_maker, engine_options={"storage": storage}
        )
        monkeypatch.setattr(worker, "process", record_context)

        assert await worker.poll_once() is True
        assert len(seen) == 1
        assert seen[0]["worker_id"] == "w1"
        assert seen[0]["job_kind"] == "import"
        assert seen[0]["job_id"] == job.id
        assert "job_id" not in structlog.contextvars.get_contextvars()
