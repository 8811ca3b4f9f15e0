"""AccountPlan model: per-owner quota overrides."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from vaultimport.db.base import Base, utc_now


class AccountPlan(Base):
    """Plan tier and photo limit for an owner.

    Owners without a row fall back to the configured default tier.
    """

    __tablename__ = "account_plans"

    owner_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    plan_tier: Mapped[str] = mapped_column(String(64), nullable=False)
    max_photos: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )
