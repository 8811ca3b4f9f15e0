"""Tests for the provider catalog."""

import pytest

from vaultimport.core.config import settings
from vaultimport.core.exceptions import NotFoundError
from vaultimport.db.models import ConnectorKind
from vaultimport.services.registry import SERVICE_CATALOG, ServiceRegistry


class TestServiceRegistry:
    """Tests for seeding and reading the catalog."""

    async def test_seeds_every_service_once(self, db_session):
        registry = ServiceRegistry(db_session)

        assert await registry.ensure_catalog() == len(SERVICE_CATALOG)
        assert await registry.ensure_catalog() == 0

        services = await registry.list_services()
        assert {s.service_key for s in services} == {d.service_key for d in SERVICE_CATALOG}

    async def test_services_are_sorted_by_name(self, db_session):
        registry = ServiceRegistry(db_session)
        await registry.ensure_catalog()

        names = [s.display_name for s in await registry.list_services()]

        assert names == sorted(names)

    async def test_catalog_flags(self, db_session):
        registry = ServiceRegistry(db_session)
        await registry.ensure_catalog()

        google = await registry.get_by_key("google_photos")
        facebook = await registry.get_by_key("facebook")
        camera_roll = await registry.get_by_key("camera_roll")

        assert google.connector_kind == ConnectorKind.OAUTH
        assert google.requires_app_review is False
        assert facebook.connector_kind == ConnectorKind.ARCHIVE
        assert facebook.requires_app_review is True
        assert camera_roll.is_active is False
        assert camera_roll.supports_albums is False

    async def test_review_flag_follows_settings(self, db_session, monkeypatch):
        registry = ServiceRegistry(db_session)
        await registry.ensure_catalog()
        monkeypatch.setattr(settings, "services_pending_review", [])

        await registry.ensure_catalog()

        assert (await registry.get_by_key("facebook")).requires_app_review is False

    async def test_unknown_key(self, db_session):
        with pytest.raises(NotFoundError):
            await ServiceRegistry(db_session).get_by_key("myspace")
