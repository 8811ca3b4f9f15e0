"""Worker that runs whole-vault dedup scans."""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from vaultimport.core.exceptions import LeaseLostError
from vaultimport.db.models import ACTIVE_SCAN_STATUSES, DedupScanJob, DedupScanStatus
from vaultimport.services import leases
from vaultimport.services.dedup import DedupScanner
from vaultimport.workers.base import BaseWorker


class DedupScanWorker(BaseWorker):
    """Claims queued scans; a reclaimed scan starts over from the first asset."""

    job_kind = "dedup_scan"

    def __init__(self, *, scanner_options: dict[str, Any] | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.scanner_options = scanner_options or {}

    async def claim(self, db: AsyncSession) -> str | None:
        scan = await leases.claim_next(db, DedupScanJob, ACTIVE_SCAN_STATUSES, self.worker_id)
        return scan.id if scan else None

    async def process(self, db: AsyncSession, job_id: str) -> DedupScanStatus | None:
        return await DedupScanner(db, self.worker_id, **self.scanner_options).run(job_id)

    async def fail(self, db: AsyncSession, job_id: str, error: Exception) -> None:
        scanner = DedupScanner(db, self.worker_id, **self.scanner_options)
        try:
            await scanner.fail(job_id, "internal_error", str(error))
        except LeaseLostError:
            await db.rollback()
