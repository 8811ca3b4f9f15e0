"""Database models for Vault Import."""

from vaultimport.db.models.account_plan import AccountPlan
from vaultimport.db.models.asset import Asset
from vaultimport.db.models.dedup import DedupScanJob, DuplicateGroup, DuplicateGroupMember
from vaultimport.db.models.enums import (
    ACTIVE_IMPORT_STATUSES,
    ACTIVE_SCAN_STATUSES,
    RESUMABLE_IMPORT_STATUSES,
    TERMINAL_IMPORT_STATUSES,
    CandidateOutcome,
    ConnectorKind,
    DedupScanStatus,
    DuplicateGroupStatus,
    DuplicateGroupType,
    ImportJobStatus,
    ImportScope,
    RequestedAction,
    ResolveAction,
)
from vaultimport.db.models.import_job import ImportJob, ImportJobCandidate
from vaultimport.db.models.import_service import ImportService
from vaultimport.db.models.import_source import ImportSource, ImportSourceItem

__all__ = [
    # Models
    "AccountPlan",
    "Asset",
    "DedupScanJob",
    "DuplicateGroup",
    "DuplicateGroupMember",
    "ImportJob",
    "ImportJobCandidate",
    "ImportService",
    "ImportSource",
    "ImportSourceItem",
    # Enums
    "ACTIVE_IMPORT_STATUSES",
    "ACTIVE_SCAN_STATUSES",
    "RESUMABLE_IMPORT_STATUSES",
    "TERMINAL_IMPORT_STATUSES",
    "CandidateOutcome",
    "ConnectorKind",
    "DedupScanStatus",
    "DuplicateGroupStatus",
    "DuplicateGroupType",
    "ImportJobStatus",
    "ImportScope",
    "RequestedAction",
    "ResolveAction",
]
