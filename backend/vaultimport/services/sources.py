"""Source management: connecting providers and browsing what they hold."""

from __future__ import annotations

import secrets
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vaultimport.connectors import (
    AuthorizationStart,
    RemoteAlbum,
    RemoteAsset,
    SourceConnector,
    create_connector,
    get_connector_class,
)
from vaultimport.core.config import settings
from vaultimport.core.exceptions import (
    ServiceUnavailableError,
    ServiceUnderReviewError,
    StateConflictError,
    ValidationError,
)
from vaultimport.core.logging import get_logger
from vaultimport.db.base import utc_now
from vaultimport.db.models import ConnectorKind, ImportService, ImportSource, ImportSourceItem
from vaultimport.services.ownership import get_owned
from vaultimport.services.plan_guard import PlanGuard, PlanInfo
from vaultimport.services.registry import ServiceRegistry
from vaultimport.utils.credentials import decrypt_credentials, encrypt_credentials

logger = get_logger(__name__)


@dataclass
class ConnectResult:
    """Either an OAuth redirect to follow or the created source."""

    authorization: AuthorizationStart | None = None
    source: ImportSource | None = None


@dataclass
class NewAssetsCheck:
    new_assets: int
    estimated_seconds: float


class SourceService:
    """Creates, lists and disconnects import sources for an owner."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.registry = ServiceRegistry(db)

    async def connect(
        self,
        owner_id: str,
        service_key: str,
        credentials: dict[str, Any] | None = None,
        display_name: str | None = None,
    ) -> ConnectResult:
        """Begin connecting a provider.

        OAuth providers return an authorization URL; the caller completes
        the handshake and then calls ``register_authorized_source``.
        Archive providers take their credentials (the export location)
        directly and return the new source.

        Raises:
            NotFoundError: Unknown service key.
            ServiceUnavailableError: The service is inactive.
            ServiceUnderReviewError: The provider integration awaits review.
            ValidationError: Archive credentials are missing or unusable.
        """
        service = await self._get_connectable_service(service_key)
        connector_cls = get_connector_class(service.service_key)

        if service.connector_kind == ConnectorKind.OAUTH:
            state = secrets.token_urlsafe(24)
            auth_url = connector_cls.authorization_url(state)
            logger.info("source_authorization_started", owner_id=owner_id, service=service_key)
            return ConnectResult(authorization=AuthorizationStart(auth_url=auth_url, state=state))

        if service.connector_kind == ConnectorKind.ARCHIVE:
            cleaned = connector_cls.validate_credentials(credentials or {})
            source = await self._create_source(owner_id, service, cleaned, display_name)
            return ConnectResult(source=source)

        raise ServiceUnavailableError(f"{service.display_name} cannot be connected server-side")

    async def register_authorized_source(
        self,
        owner_id: str,
        service_key: str,
        credentials: dict[str, Any],
        display_name: str | None = None,
    ) -> ImportSource:
        """Record a source once an out-of-band OAuth handshake produced credentials."""
        service = await self._get_connectable_service(service_key)
        if service.connector_kind != ConnectorKind.OAUTH:
            raise ValidationError(f"{service.display_name} is not an OAuth service")
        cleaned = get_connector_class(service.service_key).validate_credentials(credentials)
        return await self._create_source(owner_id, service, cleaned, display_name)

    async def list_sources(self, owner_id: str) -> tuple[list[ImportSource], PlanInfo]:
        """Active sources for an owner together with their plan usage."""
        result = await self.db.execute(
            select(ImportSource)
            .where(ImportSource.owner_id == owner_id, ImportSource.is_active.is_(True))
            .order_by(ImportSource.created_at)
        )
        sources = list(result.scalars().unique().all())
        plan_info = await PlanGuard(self.db).get_plan_info(owner_id)
        return sources, plan_info

    async def get_source(self, owner_id: str, source_id: str) -> ImportSource:
        return await get_owned(self.db, ImportSource, source_id, owner_id)

    async def get_active_source(self, owner_id: str, source_id: str) -> ImportSource:
        source = await self.get_source(owner_id, source_id)
        if not source.is_active:
            raise StateConflictError(f"Source {source_id} is disconnected")
        return source

    async def disconnect(self, owner_id: str, source_id: str) -> ImportSource:
        """Mark a source inactive.

        Imported assets and job history are left untouched. Disconnecting
        twice is a no-op.
        """
        source = await self.get_source(owner_id, source_id)
        if source.is_active:
            source.is_active = False
            source.disconnected_at = utc_now()
            await self.db.flush()
            logger.info("source_disconnected", owner_id=owner_id, source_id=source_id)
        return source

    async def list_albums(self, owner_id: str, source_id: str) -> list[RemoteAlbum]:
        source = await self.get_active_source(owner_id, source_id)
        async with open_connector(source) as connector:
            return await connector.list_albums()

    async def check_new(
        self,
        owner_id: str,
        source_id: str,
        album_ids: list[str] | None = None,
    ) -> NewAssetsCheck:
        """Count remote assets not yet synced from this source."""
        source = await self.get_active_source(owner_id, source_id)
        synced = await synced_remote_ids(self.db, source.id)

        new_assets = 0
        async with open_connector(source) as connector:
            async for _asset in iter_new_assets(connector, synced, album_ids):
                new_assets += 1

        return NewAssetsCheck(
            new_assets=new_assets,
            estimated_seconds=new_assets * settings.seconds_per_asset,
        )

    async def _get_connectable_service(self, service_key: str) -> ImportService:
        service = await self.registry.get_by_key(service_key)
        if not service.is_active:
            raise ServiceUnavailableError(f"{service.display_name} is not available")
        if service.requires_app_review:
            raise ServiceUnderReviewError(f"{service.display_name} is awaiting provider review")
        return service

    async def _create_source(
        self,
        owner_id: str,
        service: ImportService,
        credentials: dict[str, Any],
        display_name: str | None,
    ) -> ImportSource:
        source = ImportSource(
            owner_id=owner_id,
            service=service,
            display_name=display_name or service.display_name,
            credentials_encrypted=encrypt_credentials(credentials),
            is_active=True,
            total_assets_synced=0,
        )
        self.db.add(source)
        await self.db.flush()

        logger.info(
            "source_connected",
            owner_id=owner_id,
            source_id=source.id,
            service=service.service_key,
        )
        return source


def open_connector(source: ImportSource, **kwargs: Any) -> SourceConnector:
    """Instantiate the connector for a stored source."""
    credentials = decrypt_credentials(source.credentials_encrypted)
    return create_connector(source.service.service_key, credentials, **kwargs)


async def synced_remote_ids(db: AsyncSession, source_id: str) -> set[str]:
    result = await db.execute(
        select(ImportSourceItem.remote_id).where(ImportSourceItem.source_id == source_id)
    )
    return set(result.scalars().all())


async def iter_new_assets(
    connector: SourceConnector,
    synced: set[str],
    album_ids: list[str] | None = None,
) -> AsyncIterator[RemoteAsset]:
    """Remote assets not yet synced, each remote id at most once.

    An asset can sit in several selected albums; only its first
    appearance is kept so enumeration order stays stable.
    """
    seen: set[str] = set()
    async for asset in connector.iter_assets(album_ids or None):
        if asset.remote_id in synced or asset.remote_id in seen:
            continue
        seen.add(asset.remote_id)
        yield asset
