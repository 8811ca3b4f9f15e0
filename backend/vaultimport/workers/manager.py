"""Worker manager for orchestrating background workers."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vaultimport.core.config import settings
from vaultimport.core.logging import get_logger
from vaultimport.db.models import ACTIVE_IMPORT_STATUSES, ACTIVE_SCAN_STATUSES, DedupScanJob, ImportJob
from vaultimport.db.session import async_session_maker
from vaultimport.services import leases
from vaultimport.workers.base import BaseWorker

logger = get_logger(__name__)


class WorkerManager:
    """Orchestrates background workers for job processing.

    Manages the lifecycle of workers, including:
    - Starting workers in their own tasks
    - Graceful shutdown of all workers
    - Expired lease recovery
    """

    def __init__(
        self,
        *,
        maintenance_interval: int | None = None,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
    ):
        """Initialize the worker manager.

        Args:
            maintenance_interval: Seconds between expired-lease sweeps.
            session_maker: Session factory for maintenance queries.
        """
        self.maintenance_interval = maintenance_interval or settings.maintenance_interval
        self.session_maker = session_maker or async_session_maker

        self._workers: list[BaseWorker] = []
        self._worker_tasks: list[asyncio.Task] = []
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._maintenance_task: asyncio.Task | None = None
        self._started_at: datetime | None = None

    def register_worker(
        self,
        worker_class: type[BaseWorker],
        *,
        count: int = 1,
        **kwargs: Any,
    ) -> None:
        """Register a worker class to be managed.

        Args:
            worker_class: The worker class to instantiate.
            count: Number of worker instances to create.
            **kwargs: Arguments to pass to worker constructor.
        """
        for i in range(count):
            worker_id = f"{worker_class.__name__}-{id(self):x}-{i + 1}"
            worker = worker_class(worker_id=worker_id, session_maker=self.session_maker, **kwargs)
            self._workers.append(worker)
            logger.info(
                "worker_registered",
                worker_id=worker_id,
                job_kind=worker.job_kind,
            )

    async def start(self) -> None:
        """Start all registered workers.

        This method runs until shutdown is requested.
        """
        if self._running:
            logger.warning("worker_manager_already_running")
            return

        self._running = True
        self._started_at = datetime.now(timezone.utc)

        for worker in self._workers:
            task = asyncio.create_task(
                worker.run(),
                name=f"worker-{worker.worker_id}",
            )
            self._worker_tasks.append(task)

        self._maintenance_task = asyncio.create_task(
            self._maintenance_loop(),
            name="worker-maintenance",
        )

        logger.info(
            "worker_manager_started",
            worker_count=len(self._workers),
        )

        # Wait for shutdown signal
        await self._shutdown_event.wait()

        await self._shutdown_workers()

    async def stop(self) -> None:
        """Request graceful shutdown of all workers."""
        if not self._running:
            return

        logger.info("worker_manager_stopping")
        self._running = False
        self._shutdown_event.set()

    async def _shutdown_workers(self) -> None:
        """Gracefully shut down all workers."""
        for worker in self._workers:
            worker.request_shutdown()

        if self._maintenance_task:
            self._maintenance_task.cancel()
            try:
                await self._maintenance_task
            except asyncio.CancelledError:
                pass

        if self._worker_tasks:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*self._worker_tasks, return_exceptions=True),
                    timeout=30.0,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "worker_shutdown_timeout",
                    pending_workers=len([t for t in self._worker_tasks if not t.done()]),
                )
                for task in self._worker_tasks:
                    if not task.done():
                        task.cancel()

        logger.info("worker_manager_shutdown_complete")

    async def _maintenance_loop(self) -> None:
        """Background loop for maintenance tasks."""
        while self._running:
            try:
                await asyncio.sleep(self.maintenance_interval)

                if not self._running:
                    break

                await self.recover_expired_leases()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(
                    "maintenance_loop_error",
                    error=str(e),
                    exc_info=True,
                )

    async def recover_expired_leases(self) -> int:
        """Release leases of workers that stopped renewing them.

        Returns:
            Number of import jobs and scans made claimable again.
        """
        async with self.session_maker() as db:
            count = await leases.expire_stale_leases(db, ImportJob, ACTIVE_IMPORT_STATUSES)
            count += await leases.expire_stale_leases(db, DedupScanJob, ACTIVE_SCAN_STATUSES)
            await db.commit()
        return count

    def get_stats(self) -> dict[str, Any]:
        """Get statistics about the worker manager and all workers."""
        return {
            "manager": {
                "running": self._running,
                "worker_count": len(self._workers),
                "uptime_seconds": self._uptime_seconds(),
            },
            "workers": [w.stats for w in self._workers],
        }

    def _uptime_seconds(self) -> int:
        """Calculate manager uptime in seconds."""
        if self._started_at:
            return int((datetime.now(timezone.utc) - self._started_at).total_seconds())
        return 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def worker_count(self) -> int:
        return len(self._workers)


# Global worker manager instance
_manager: WorkerManager | None = None


def get_worker_manager() -> WorkerManager:
    """Get the global worker manager instance, creating it on first use."""
    global _manager
    if _manager is None:
        _manager = WorkerManager()
    return _manager


async def start_workers() -> None:
    """Register the import and dedup workers and run them until stopped.

    Intended to be started as a task from application startup.
    """
    from vaultimport.workers.dedup_worker import DedupScanWorker
    from vaultimport.workers.import_worker import ImportWorker

    manager = get_worker_manager()
    manager.register_worker(ImportWorker, count=settings.import_worker_count)
    manager.register_worker(DedupScanWorker, count=settings.dedup_worker_count)

    logger.info("starting_workers", worker_count=manager.worker_count)
    await manager.start()


async def stop_workers() -> None:
    """Stop the global worker manager."""
    global _manager
    if _manager is not None:
        await _manager.stop()
        _manager = None
