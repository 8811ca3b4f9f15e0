"""Base worker class for lease-based background jobs."""

from __future__ import annotations

import asyncio
import signal
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vaultimport.core.config import settings
from vaultimport.core.logging import get_logger, job_log_context
from vaultimport.db.session import async_session_maker

logger = get_logger(__name__)


class BaseWorker(ABC):
    """Abstract base class for background job workers.

    Subclasses implement:
    - claim(db): atomically lease the next job, or return None
    - process(db, job_id): run the leased job to a stopping point
    - fail(db, job_id, error): record an unexpected error on the job

    Features:
    - Configurable poll interval
    - Graceful shutdown handling
    - Error logging and job state updates
    """

    job_kind: str = "job"

    def __init__(
        self,
        *,
        poll_interval: float | None = None,
        worker_id: str | None = None,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
    ):
        """Initialize the worker.

        Args:
            poll_interval: Seconds to wait between polls when idle.
            worker_id: Lease owner identity; must be unique per process.
            session_maker: Session factory (tests pass their own engine's).
        """
        self.poll_interval = poll_interval or settings.worker_poll_interval
        self.worker_id = worker_id or self.__class__.__name__
        self.session_maker = session_maker or async_session_maker

        self._running = False
        self._shutdown_event = asyncio.Event()
        self._current_job_id: str | None = None
        self._jobs_processed = 0
        self._jobs_failed = 0
        self._started_at: datetime | None = None

    @abstractmethod
    async def claim(self, db: AsyncSession) -> str | None:
        """Lease the next job and return its id."""

    @abstractmethod
    async def process(self, db: AsyncSession, job_id: str) -> Any:
        """Run a leased job. Domain errors are recorded, not raised."""

    @abstractmethod
    async def fail(self, db: AsyncSession, job_id: str, error: Exception) -> None:
        """Mark a leased job failed after an unexpected error."""

    async def run(self) -> None:
        """Main worker loop.

        Polls for jobs and processes them until shutdown is requested.
        """
        self._running = True
        self._started_at = datetime.now(timezone.utc)
        self._setup_signal_handlers()

        logger.info(
            "worker_started",
            worker_id=self.worker_id,
            job_kind=self.job_kind,
            poll_interval=self.poll_interval,
        )

        try:
            while self._running and not self._shutdown_event.is_set():
                try:
                    processed = await self.poll_once()
                except Exception as e:
                    logger.error(
                        "worker_poll_error",
                        worker_id=self.worker_id,
                        error=str(e),
                        exc_info=True,
                    )
                    # Wait before retrying after unexpected error
                    await asyncio.sleep(self.poll_interval * 2)
                    continue

                if not processed:
                    try:
                        await asyncio.wait_for(
                            self._shutdown_event.wait(),
                            timeout=self.poll_interval,
                        )
                    except TimeoutError:
                        pass
        finally:
            logger.info(
                "worker_stopped",
                worker_id=self.worker_id,
                jobs_processed=self._jobs_processed,
                jobs_failed=self._jobs_failed,
                uptime_seconds=self._uptime_seconds(),
            )

    async def poll_once(self) -> bool:
        """Claim and process at most one job.

        Returns:
            True if a job was claimed.
        """
        async with self.session_maker() as db:
            job_id = await self.claim(db)
            if job_id is None:
                return False

            self._current_job_id = job_id
            try:
                with job_log_context(
                    worker_id=self.worker_id, job_kind=self.job_kind, job_id=job_id
                ):
                    await self._process_claimed(db, job_id)
            finally:
                self._current_job_id = None
            return True

    async def _process_claimed(self, db: AsyncSession, job_id: str) -> None:
        logger.info("job_processing_start")
        try:
            await self.process(db, job_id)
            self._jobs_processed += 1
        except Exception as e:
            logger.error("job_processing_error", error=str(e), exc_info=True)
            self._jobs_failed += 1
            await self.fail(db, job_id, e)

    def request_shutdown(self) -> None:
        """Request graceful shutdown of the worker.

        A job in progress keeps its lease until it expires, then another
        worker resumes it from its last committed asset.
        """
        logger.info(
            "worker_shutdown_requested",
            worker_id=self.worker_id,
            current_job_id=self._current_job_id,
        )
        self._running = False
        self._shutdown_event.set()

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        try:
            loop = asyncio.get_running_loop()

            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(
                    sig,
                    self.request_shutdown,
                )
        except (NotImplementedError, RuntimeError):
            # Signal handlers not supported (e.g., Windows, or running in thread)
            pass

    def _uptime_seconds(self) -> int:
        """Calculate worker uptime in seconds."""
        if self._started_at:
            return int((datetime.now(timezone.utc) - self._started_at).total_seconds())
        return 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict[str, Any]:
        """Get worker statistics."""
        return {
            "worker_id": self.worker_id,
            "job_kind": self.job_kind,
            "is_running": self._running,
            "is_processing": self._current_job_id is not None,
            "current_job_id": self._current_job_id,
            "jobs_processed": self._jobs_processed,
            "jobs_failed": self._jobs_failed,
            "uptime_seconds": self._uptime_seconds(),
        }
