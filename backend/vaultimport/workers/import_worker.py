"""Worker that runs import jobs through the import engine."""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from vaultimport.db.models import ACTIVE_IMPORT_STATUSES, ImportJob, ImportJobStatus
from vaultimport.services import leases
from vaultimport.services.import_engine import ImportEngine
from vaultimport.workers.base import BaseWorker


class ImportWorker(BaseWorker):
    """Claims pending or lease-expired import jobs and runs them."""

    job_kind = "import"

    def __init__(self, *, engine_options: dict[str, Any] | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        # Passed through to ImportEngine (storage, connector_factory, oracle)
        self.engine_options = engine_options or {}

    async def claim(self, db: AsyncSession) -> str | None:
        job = await leases.claim_next(db, ImportJob, ACTIVE_IMPORT_STATUSES, self.worker_id)
        return job.id if job else None

    async def process(self, db: AsyncSession, job_id: str) -> ImportJobStatus | None:
        engine = ImportEngine(db, self.worker_id, **self.engine_options)
        return await engine.run(job_id)

    async def fail(self, db: AsyncSession, job_id: str, error: Exception) -> None:
        await ImportEngine(db, self.worker_id, **self.engine_options).fail(job_id, error)
