"""Asset model: the vault's record of one stored photo or video."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from vaultimport.db.base import Base, new_id, utc_now


class Asset(Base):
    """A vault asset.

    The vault owns these rows; the import core adds the provenance link
    (``import_job_id``) and reads fingerprints for deduplication. Deletion
    is a tombstone (``deleted_at``) so rollback and group resolution can
    both be retried safely.
    """

    __tablename__ = "assets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Content identity
    fingerprint: Mapped[str | None] = mapped_column(String(160), nullable=True)
    perceptual_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Media details
    filename: Mapped[str | None] = mapped_column(String(512), nullable=True)
    media_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    byte_size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    storage_key: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    taken_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Provenance
    source_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("import_sources.id"), nullable=True
    )
    remote_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    import_job_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("import_jobs.id"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_assets_owner_fingerprint", "owner_id", "fingerprint"),
        Index("ix_assets_import_job_id", "import_job_id"),
        Index("ix_assets_owner_deleted", "owner_id", "deleted_at"),
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def resolution(self) -> int:
        """Pixel count used to pick a group's primary member."""
        return (self.width or 0) * (self.height or 0)
