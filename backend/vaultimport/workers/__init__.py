"""Background workers for import jobs and dedup scans."""

from vaultimport.workers.base import BaseWorker
from vaultimport.workers.dedup_worker import DedupScanWorker
from vaultimport.workers.import_worker import ImportWorker
from vaultimport.workers.manager import WorkerManager, get_worker_manager, start_workers, stop_workers

__all__ = [
    "BaseWorker",
    "DedupScanWorker",
    "ImportWorker",
    "WorkerManager",
    "get_worker_manager",
    "start_workers",
    "stop_workers",
]
