"""Business logic services for Vault Import."""

from vaultimport.services.dedup import DedupScanner, DedupService
from vaultimport.services.import_engine import ImportEngine
from vaultimport.services.import_jobs import ImportJobService
from vaultimport.services.plan_guard import PlanGuard
from vaultimport.services.registry import ServiceRegistry
from vaultimport.services.rollback import RollbackService
from vaultimport.services.sources import SourceService

__all__ = [
    "DedupScanner",
    "DedupService",
    "ImportEngine",
    "ImportJobService",
    "PlanGuard",
    "RollbackService",
    "ServiceRegistry",
    "SourceService",
]
