"""ImportSource model: one account's authorized connection to a provider."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vaultimport.db.base import Base, new_id, utc_now

if TYPE_CHECKING:
    from vaultimport.db.models.import_job import ImportJob
    from vaultimport.db.models.import_service import ImportService


class ImportSource(Base):
    """Authorized connection between an account and one provider.

    Disconnecting only flips ``is_active``; rows are kept so job history
    and provenance stay intact.
    """

    __tablename__ = "import_sources"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    service_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("import_services.id"), nullable=False
    )
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Fernet-encrypted provider credentials; never serialized to callers
    credentials_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    total_assets_synced: Mapped[int] = mapped_column(Integer, default=0)
    last_sync_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    disconnected_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    service: Mapped[ImportService] = relationship(
        "ImportService", back_populates="sources", lazy="joined"
    )
    jobs: Mapped[list[ImportJob]] = relationship("ImportJob", back_populates="source")

    __table_args__ = (
        Index("ix_import_sources_owner_active", "owner_id", "is_active"),
    )


class ImportSourceItem(Base):
    """Marks a remote asset as already synced for a source.

    Written when a candidate is imported or matched as a duplicate; cleared
    by rollback so the asset can be imported again.
    """

    __tablename__ = "import_source_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    source_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("import_sources.id", ondelete="CASCADE"), nullable=False
    )
    remote_id: Mapped[str] = mapped_column(String(512), nullable=False)
    fingerprint: Mapped[str | None] = mapped_column(String(160), nullable=True)
    asset_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    job_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        UniqueConstraint("source_id", "remote_id", name="uq_import_source_items_remote"),
        Index("ix_import_source_items_asset_id", "asset_id"),
    )
