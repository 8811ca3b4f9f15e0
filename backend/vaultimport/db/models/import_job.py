"""ImportJob model: one asynchronous run copying a source into the vault."""

from __future__ import annotations

import json
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vaultimport.db.base import Base, new_id, utc_now
from vaultimport.db.models.enums import (
    ACTIVE_IMPORT_STATUSES,
    CandidateOutcome,
    ImportJobStatus,
    ImportScope,
    RequestedAction,
    db_enum,
)

if TYPE_CHECKING:
    from vaultimport.db.models.import_source import ImportSource

_ACTIVE_STATUS_SQL = "status IN ({})".format(
    ", ".join(f"'{s.value}'" for s in ACTIVE_IMPORT_STATUSES)
)


class ImportJob(Base):
    """Tracks an import run and its progress counters.

    Counters are only written by the worker holding the job's lease.
    """

    __tablename__ = "import_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    source_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("import_sources.id"), nullable=False
    )

    status: Mapped[ImportJobStatus] = mapped_column(
        db_enum(ImportJobStatus), default=ImportJobStatus.PENDING, nullable=False
    )
    scope: Mapped[ImportScope] = mapped_column(
        db_enum(ImportScope), default=ImportScope.FULL, nullable=False
    )
    selected_album_ids_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    skip_deduplication: Mapped[bool] = mapped_column(Boolean, default=False)
    skip_similar: Mapped[bool] = mapped_column(Boolean, default=False)

    # Progress counters
    total_assets: Mapped[int] = mapped_column(Integer, default=0)
    processed_assets: Mapped[int] = mapped_column(Integer, default=0)
    imported_assets: Mapped[int] = mapped_column(Integer, default=0)
    skipped_duplicates: Mapped[int] = mapped_column(Integer, default=0)
    skipped_similar: Mapped[int] = mapped_column(Integer, default=0)
    failed_assets: Mapped[int] = mapped_column(Integer, default=0)

    error_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Advisory control requested by callers, applied by the owning worker
    requested_action: Mapped[RequestedAction] = mapped_column(
        db_enum(RequestedAction), default=RequestedAction.NONE, nullable=False
    )

    # Worker lease
    lease_owner: Mapped[str | None] = mapped_column(String(128), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    heartbeat_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rolled_back_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    source: Mapped[ImportSource] = relationship("ImportSource", back_populates="jobs")
    candidates: Mapped[list[ImportJobCandidate]] = relationship(
        "ImportJobCandidate",
        back_populates="job",
        order_by="ImportJobCandidate.ordinal",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        # One non-terminal job per owner, enforced by the database on insert
        Index(
            "uq_import_jobs_owner_active",
            "owner_id",
            unique=True,
            sqlite_where=text(_ACTIVE_STATUS_SQL),
            postgresql_where=text(_ACTIVE_STATUS_SQL),
        ),
        Index("ix_import_jobs_status_lease", "status", "lease_expires_at"),
        Index("ix_import_jobs_source_id", "source_id"),
    )

    @property
    def selected_album_ids(self) -> list[str]:
        if not self.selected_album_ids_json:
            return []
        return json.loads(self.selected_album_ids_json)

    @selected_album_ids.setter
    def selected_album_ids(self, album_ids: list[str] | None) -> None:
        self.selected_album_ids_json = json.dumps(list(album_ids)) if album_ids else None

    @property
    def progress_percent(self) -> float | None:
        """Calculate progress percentage."""
        if self.total_assets and self.total_assets > 0:
            return (self.processed_assets or 0) / self.total_assets * 100
        return None


class ImportJobCandidate(Base):
    """One remote asset enumerated for a job, in stable order.

    The list is written once while estimating; importing walks it from
    ``ordinal == processed_assets`` so a reclaimed job never re-enumerates.
    """

    __tablename__ = "import_job_candidates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    job_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("import_jobs.id", ondelete="CASCADE"), nullable=False
    )
    ordinal: Mapped[int] = mapped_column(Integer, nullable=False)
    remote_id: Mapped[str] = mapped_column(String(512), nullable=False)
    album_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    filename: Mapped[str | None] = mapped_column(String(512), nullable=True)
    media_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    byte_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    content_hash: Mapped[str | None] = mapped_column(String(160), nullable=True)
    perceptual_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    taken_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Provider-specific fetch details (download URL, archive member, ...)
    extra_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    outcome: Mapped[CandidateOutcome] = mapped_column(
        db_enum(CandidateOutcome), default=CandidateOutcome.PENDING, nullable=False
    )
    fingerprint: Mapped[str | None] = mapped_column(String(160), nullable=True)
    asset_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    job: Mapped[ImportJob] = relationship("ImportJob", back_populates="candidates")

    __table_args__ = (
        Index("ix_import_job_candidates_job_ordinal", "job_id", "ordinal", unique=True),
    )
