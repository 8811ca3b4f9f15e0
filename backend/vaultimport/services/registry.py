"""Service registry: the static catalog of supported import providers."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vaultimport.core.config import settings
from vaultimport.core.exceptions import NotFoundError
from vaultimport.core.logging import get_logger
from vaultimport.db.models import ConnectorKind, ImportService

logger = get_logger(__name__)


@dataclass(frozen=True)
class ServiceDefinition:
    service_key: str
    display_name: str
    description: str
    connector_kind: ConnectorKind
    requires_app_review: bool = False
    supports_albums: bool = True
    is_active: bool = True


SERVICE_CATALOG: tuple[ServiceDefinition, ...] = (
    ServiceDefinition(
        service_key="google_photos",
        display_name="Google Photos",
        description="Import albums and your full library from Google Photos.",
        connector_kind=ConnectorKind.OAUTH,
    ),
    ServiceDefinition(
        service_key="dropbox",
        display_name="Dropbox",
        description="Import photos and videos stored in Dropbox folders.",
        connector_kind=ConnectorKind.OAUTH,
    ),
    ServiceDefinition(
        service_key="facebook",
        display_name="Facebook",
        description="Import from a Facebook 'Download your information' export.",
        connector_kind=ConnectorKind.ARCHIVE,
    ),
    ServiceDefinition(
        service_key="camera_roll",
        display_name="Camera Roll",
        description="Device photos are uploaded by the mobile app, not imported here.",
        connector_kind=ConnectorKind.LOCAL,
        supports_albums=False,
        is_active=False,
    ),
)


class ServiceRegistry:
    """Reads and seeds the import_services catalog."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def ensure_catalog(
        self, catalog: tuple[ServiceDefinition, ...] = SERVICE_CATALOG
    ) -> int:
        """Insert catalog entries that are missing and sync flags on existing ones.

        Safe to run on every startup.

        Returns:
            Number of services created.
        """
        result = await self.db.execute(select(ImportService))
        existing = {service.service_key: service for service in result.scalars()}

        created = 0
        for definition in catalog:
            service = existing.get(definition.service_key)
            if service is None:
                service = ImportService(service_key=definition.service_key)
                self.db.add(service)
                created += 1
            service.display_name = definition.display_name
            service.description = definition.description
            service.connector_kind = definition.connector_kind
            service.requires_app_review = (
                definition.requires_app_review
                or definition.service_key in settings.services_pending_review
            )
            service.supports_albums = definition.supports_albums
            service.is_active = definition.is_active

        await self.db.flush()
        if created:
            logger.info("service_catalog_seeded", created=created)
        return created

    async def list_services(self) -> list[ImportService]:
        result = await self.db.execute(
            select(ImportService).order_by(ImportService.display_name)
        )
        return list(result.scalars().all())

    async def get_by_key(self, service_key: str) -> ImportService:
        """Look up a service by key.

        Raises:
            NotFoundError: If the key is not in the catalog.
        """
        result = await self.db.execute(
            select(ImportService).where(ImportService.service_key == service_key)
        )
        service = result.scalar_one_or_none()
        if service is None:
            raise NotFoundError("ImportService", service_key)
        return service
