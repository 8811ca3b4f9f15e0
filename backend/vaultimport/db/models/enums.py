"""Enum types for database models."""

from __future__ import annotations

import enum

from sqlalchemy import Enum


def db_enum(enum_cls: type[enum.Enum]) -> Enum:
    """Column type that stores the enum's lowercase wire values.

    Partial indexes filter on these literal values, so they must match
    what the API returns.
    """
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
        validate_strings=True,
    )


class ConnectorKind(str, enum.Enum):
    """How a provider hands over its library."""

    OAUTH = "oauth"  # Redirect flow, credentials returned out-of-band
    ARCHIVE = "archive"  # Export file uploaded by the account holder
    LOCAL = "local"  # Device-side only, never connected server-side


class ImportScope(str, enum.Enum):
    """Which part of a source an import job covers."""

    FULL = "full"
    SELECTED_ALBUMS = "selected_albums"


class ImportJobStatus(str, enum.Enum):
    """Status of an import job."""

    PENDING = "pending"
    ESTIMATING = "estimating"
    READY = "ready"
    IMPORTING = "importing"
    PAUSED = "paused"
    BLOCKED_LIMIT = "blocked_limit"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ROLLED_BACK = "rolled_back"


# Statuses counted by the one-active-job-per-owner rule
ACTIVE_IMPORT_STATUSES = (
    ImportJobStatus.PENDING,
    ImportJobStatus.ESTIMATING,
    ImportJobStatus.READY,
    ImportJobStatus.IMPORTING,
)

TERMINAL_IMPORT_STATUSES = (
    ImportJobStatus.COMPLETED,
    ImportJobStatus.FAILED,
    ImportJobStatus.CANCELLED,
    ImportJobStatus.ROLLED_BACK,
)

# Suspended states a caller can resume from
RESUMABLE_IMPORT_STATUSES = (
    ImportJobStatus.PAUSED,
    ImportJobStatus.BLOCKED_LIMIT,
)


class RequestedAction(str, enum.Enum):
    """Advisory request observed by the owning worker at its next checkpoint."""

    NONE = "none"
    PAUSE = "pause"
    CANCEL = "cancel"


class CandidateOutcome(str, enum.Enum):
    """Result recorded for one enumerated remote asset."""

    PENDING = "pending"
    IMPORTED = "imported"
    DUPLICATE = "duplicate"
    SIMILAR = "similar"
    FAILED = "failed"


class DedupScanStatus(str, enum.Enum):
    """Status of a whole-vault dedup scan."""

    PENDING = "pending"
    SCANNING = "scanning"
    GROUPING = "grouping"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_SCAN_STATUSES = (
    DedupScanStatus.PENDING,
    DedupScanStatus.SCANNING,
    DedupScanStatus.GROUPING,
)


class DuplicateGroupType(str, enum.Enum):
    """Why the members of a group were grouped."""

    EXACT = "exact"  # Identical fingerprints
    SIMILAR = "similar"  # Similarity oracle above threshold


class DuplicateGroupStatus(str, enum.Enum):
    """Review status of a duplicate group."""

    PENDING = "pending"
    RESOLVED = "resolved"


class ResolveAction(str, enum.Enum):
    """How a duplicate group was resolved."""

    KEEP_ONE = "keep_one"
    KEEP_ALL = "keep_all"
    DELETE_ALL = "delete_all"
