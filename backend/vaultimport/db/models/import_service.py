"""ImportService model: the static provider catalog."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vaultimport.db.base import Base, new_id
from vaultimport.db.models.enums import ConnectorKind, db_enum

if TYPE_CHECKING:
    from vaultimport.db.models.import_source import ImportSource


class ImportService(Base):
    """A supported external provider and its capability flags.

    Rows are seeded from the in-code catalog and never edited by callers.
    """

    __tablename__ = "import_services"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    service_key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    connector_kind: Mapped[ConnectorKind] = mapped_column(
        db_enum(ConnectorKind), nullable=False
    )
    requires_app_review: Mapped[bool] = mapped_column(Boolean, default=False)
    supports_albums: Mapped[bool] = mapped_column(Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    sources: Mapped[list[ImportSource]] = relationship(
        "ImportSource", back_populates="service"
    )
