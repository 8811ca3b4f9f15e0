"""Dedup scan and duplicate group models."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vaultimport.db.base import Base, new_id, utc_now
from vaultimport.db.models.enums import (
    ACTIVE_SCAN_STATUSES,
    DedupScanStatus,
    DuplicateGroupStatus,
    DuplicateGroupType,
    RequestedAction,
    ResolveAction,
    db_enum,
)

if TYPE_CHECKING:
    from vaultimport.db.models.asset import Asset

_ACTIVE_SCAN_SQL = "status IN ({})".format(
    ", ".join(f"'{s.value}'" for s in ACTIVE_SCAN_STATUSES)
)


class DedupScanJob(Base):
    """A whole-vault duplicate scan for one owner."""

    __tablename__ = "dedup_scan_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[DedupScanStatus] = mapped_column(
        db_enum(DedupScanStatus), default=DedupScanStatus.PENDING, nullable=False
    )
    similarity_threshold: Mapped[float] = mapped_column(Float, nullable=False)

    total_assets: Mapped[int] = mapped_column(Integer, default=0)
    scanned_assets: Mapped[int] = mapped_column(Integer, default=0)
    assets_with_fingerprint: Mapped[int] = mapped_column(Integer, default=0)
    duplicates_found: Mapped[int] = mapped_column(Integer, default=0)
    similar_found: Mapped[int] = mapped_column(Integer, default=0)

    error_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    requested_action: Mapped[RequestedAction] = mapped_column(
        db_enum(RequestedAction), default=RequestedAction.NONE, nullable=False
    )

    lease_owner: Mapped[str | None] = mapped_column(String(128), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index(
            "uq_dedup_scan_jobs_owner_active",
            "owner_id",
            unique=True,
            sqlite_where=text(_ACTIVE_SCAN_SQL),
            postgresql_where=text(_ACTIVE_SCAN_SQL),
        ),
        Index("ix_dedup_scan_jobs_status_lease", "status", "lease_expires_at"),
    )


class DuplicateGroup(Base):
    """A set of two or more vault assets judged duplicates of each other."""

    __tablename__ = "duplicate_groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    scan_job_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("dedup_scan_jobs.id", ondelete="SET NULL"), nullable=True
    )
    group_type: Mapped[DuplicateGroupType] = mapped_column(
        db_enum(DuplicateGroupType), nullable=False
    )
    # Shared fingerprint for exact groups, primary asset id for similar ones
    group_key: Mapped[str] = mapped_column(String(160), nullable=False)
    status: Mapped[DuplicateGroupStatus] = mapped_column(
        db_enum(DuplicateGroupStatus), default=DuplicateGroupStatus.PENDING, nullable=False
    )
    asset_count: Mapped[int] = mapped_column(Integer, nullable=False)

    resolution_action: Mapped[ResolveAction | None] = mapped_column(
        db_enum(ResolveAction), nullable=True
    )
    kept_asset_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    deleted_count: Mapped[int] = mapped_column(Integer, default=0)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    members: Mapped[list[DuplicateGroupMember]] = relationship(
        "DuplicateGroupMember",
        back_populates="group",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_duplicate_groups_owner_status", "owner_id", "status"),
    )

    @property
    def primary_member(self) -> DuplicateGroupMember | None:
        for member in self.members:
            if member.is_primary:
                return member
        return None


class DuplicateGroupMember(Base):
    """Membership of one asset in a duplicate group."""

    __tablename__ = "duplicate_group_members"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    group_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("duplicate_groups.id", ondelete="CASCADE"), nullable=False
    )
    asset_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("assets.id", ondelete="CASCADE"), nullable=False
    )
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False)
    similarity_score: Mapped[float] = mapped_column(Float, default=1.0)

    group: Mapped[DuplicateGroup] = relationship("DuplicateGroup", back_populates="members")
    asset: Mapped[Asset] = relationship("Asset", lazy="joined")

    __table_args__ = (
        Index("ix_duplicate_group_members_group_id", "group_id"),
        Index("ix_duplicate_group_members_asset_id", "asset_id"),
    )
