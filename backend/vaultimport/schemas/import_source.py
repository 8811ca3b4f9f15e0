"""Pydantic schemas for the service catalog and import sources."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from vaultimport.db.models.enums import ConnectorKind
from vaultimport.schemas.plan import PlanInfoResponse


# ============================================================
# Service Catalog
# ============================================================


class ImportServiceResponse(BaseModel):
    """A supported provider and its capability flags."""

    model_config = {"from_attributes": True}

    id: str
    service_key: str
    display_name: str
    description: str | None = None
    connector_kind: ConnectorKind
    requires_app_review: bool
    supports_albums: bool
    is_active: bool


class ImportServiceList(BaseModel):
    """Schema for the service catalog."""

    items: list[ImportServiceResponse]


# ============================================================
# Sources
# ============================================================


class ImportSourceResponse(BaseModel):
    """A connected source. Credentials are never returned."""

    id: str
    service_key: str
    service_name: str
    display_name: str | None = None
    is_active: bool
    total_assets_synced: int
    last_sync_at: datetime | None = None
    created_at: datetime
    disconnected_at: datetime | None = None


class ImportSourceList(BaseModel):
    """Active sources together with the account's plan usage."""

    items: list[ImportSourceResponse]
    plan: PlanInfoResponse


class ConnectRequest(BaseModel):
    """Schema for starting a provider connection."""

    service_key: str = Field(..., min_length=1, max_length=64)
    display_name: str | None = Field(None, max_length=255)
    # Archive services only, e.g. {"archive_path": "/exports/facebook.zip"}
    credentials: dict[str, Any] | None = Field(
        None, description="Export location for archive-based services"
    )


class ConnectResponse(BaseModel):
    """Either an OAuth redirect to follow or the source that was created."""

    auth_url: str | None = None
    state: str | None = None
    source: ImportSourceResponse | None = None


class AuthorizedSourceCreate(BaseModel):
    """Schema for registering a source after an OAuth handshake."""

    service_key: str = Field(..., min_length=1, max_length=64)
    credentials: dict[str, Any] = Field(..., description="Tokens returned by the provider")
    display_name: str | None = Field(None, max_length=255)


# ============================================================
# Browsing
# ============================================================


class RemoteAlbumResponse(BaseModel):
    """An album or folder on the provider side."""

    model_config = {"from_attributes": True}

    id: str
    name: str
    asset_count: int | None = None
    cover_url: str | None = None


class RemoteAlbumList(BaseModel):
    items: list[RemoteAlbumResponse]


class CheckNewResponse(BaseModel):
    """Remote assets not yet synced from a source."""

    new_assets: int
    estimated_seconds: float
