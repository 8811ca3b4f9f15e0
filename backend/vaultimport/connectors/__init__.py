"""Source connectors and the service_key -> connector registry."""

from __future__ import annotations

from typing import Any

from vaultimport.connectors.archive import ArchiveExportConnector
from vaultimport.connectors.base import (
    AuthorizationStart,
    HttpSourceConnector,
    RemoteAlbum,
    RemoteAsset,
    SourceConnector,
    media_type_for,
    raise_for_provider_status,
    with_backoff,
)
from vaultimport.connectors.dropbox import DropboxConnector
from vaultimport.connectors.google_photos import GooglePhotosConnector
from vaultimport.core.exceptions import ServiceUnavailableError

_CONNECTORS: dict[str, type[SourceConnector]] = {}


def register_connector(service_key: str, connector_cls: type[SourceConnector]) -> None:
    """Register (or replace) the connector class for a service."""
    _CONNECTORS[service_key] = connector_cls


def get_connector_class(service_key: str) -> type[SourceConnector]:
    try:
        return _CONNECTORS[service_key]
    except KeyError:
        raise ServiceUnavailableError(f"No connector for service {service_key}") from None


def create_connector(service_key: str, credentials: dict[str, Any], **kwargs: Any) -> SourceConnector:
    """Build a connector for a stored source's credentials."""
    return get_connector_class(service_key)(credentials, **kwargs)


register_connector(GooglePhotosConnector.service_key, GooglePhotosConnector)
register_connector(DropboxConnector.service_key, DropboxConnector)
register_connector(ArchiveExportConnector.service_key, ArchiveExportConnector)

__all__ = [
    "ArchiveExportConnector",
    "AuthorizationStart",
    "DropboxConnector",
    "GooglePhotosConnector",
    "HttpSourceConnector",
    "RemoteAlbum",
    "RemoteAsset",
    "SourceConnector",
    "create_connector",
    "get_connector_class",
    "media_type_for",
    "raise_for_provider_status",
    "register_connector",
    "with_backoff",
]
