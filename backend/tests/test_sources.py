"""Tests for connecting, listing and disconnecting import sources."""

from __future__ import annotations

import pytest
from cryptography.fernet import Fernet
from fakes import FAKE_SERVICE_KEY, OTHER_OWNER, OWNER

from vaultimport.core.config import settings
from vaultimport.core.exceptions import (
    AuthFailedError,
    ForbiddenError,
    NotFoundError,
    ServiceUnavailableError,
    ServiceUnderReviewError,
    StateConflictError,
    ValidationError,
)
from vaultimport.services.import_jobs import ImportJobService
from vaultimport.services.registry import ServiceRegistry
from vaultimport.services.sources import SourceService
from vaultimport.utils.credentials import decrypt_credentials


@pytest.fixture
async def catalog(db_session):
    await ServiceRegistry(db_session).ensure_catalog()
    await db_session.commit()


# =============================================================================
# Connecting
# =============================================================================


class TestConnect:
    """Tests for SourceService.connect and register_authorized_source."""

    async def test_archive_service_creates_source(self, db_session, fake_service, library):
        result = await SourceService(db_session).connect(
            OWNER, FAKE_SERVICE_KEY, {"library": library.name, "extra": "dropped"}, "My library"
        )

        source = result.source
        assert result.authorization is None
        assert source.owner_id == OWNER
        assert source.display_name == "My library"
        assert source.is_active is True
        assert source.total_assets_synced == 0
        assert decrypt_credentials(source.credentials_encrypted) == {"library": library.name}

    async def test_display_name_defaults_to_service(self, db_session, fake_service, library):
        result = await SourceService(db_session).connect(
            OWNER, FAKE_SERVICE_KEY, {"library": library.name}
        )

        assert result.source.display_name == "Fake Photos"

    async def test_bad_archive_credentials(self, db_session, fake_service):
        with pytest.raises(ValidationError):
            await SourceService(db_session).connect(OWNER, FAKE_SERVICE_KEY, {})

    async def test_oauth_service_returns_authorization(self, db_session, catalog, monkeypatch):
        monkeypatch.setattr(settings, "google_client_id", "client-123")

        result = await SourceService(db_session).connect(OWNER, "google_photos")

        assert result.source is None
        assert result.authorization.state
        assert result.authorization.state in result.authorization.auth_url

    async def test_service_under_review(self, db_session, catalog):
        with pytest.raises(ServiceUnderReviewError) as exc_info:
            await SourceService(db_session).connect(OWNER, "facebook", {"archive_path": "x"})

        assert exc_info.value.code == "service_under_review"

    async def test_inactive_service(self, db_session, catalog):
        with pytest.raises(ServiceUnavailableError):
            await SourceService(db_session).connect(OWNER, "camera_roll")

    async def test_unknown_service(self, db_session, catalog):
        with pytest.raises(NotFoundError):
            await SourceService(db_session).connect(OWNER, "myspace")

    async def test_register_authorized_source(self, db_session, catalog):
        source = await SourceService(db_session).register_authorized_source(
            OWNER, "dropbox", {"access_token": "tok", "refresh_token": "r"}
        )

        assert source.display_name == "Dropbox"
        assert source.service.service_key == "dropbox"
        assert decrypt_credentials(source.credentials_encrypted)["access_token"] == "tok"

    async def test_register_requires_token(self, db_session, catalog):
        with pytest.raises(ValidationError):
            await SourceService(db_session).register_authorized_source(OWNER, "dropbox", {})

    async def test_register_rejects_non_oauth_service(self, db_session, fake_service, library):
        with pytest.raises(ValidationError):
            await SourceService(db_session).register_authorized_source(
                OWNER, FAKE_SERVICE_KEY, {"library": library.name}
            )


# =============================================================================
# Listing and disconnecting
# =============================================================================


class TestSourceLifecycle:
    """Tests for listing and disconnecting sources."""

    async def test_list_sources_with_plan(self, db_session, library, make_source, make_asset):
        first = await make_source(library)
        second = await make_source(library)
        await make_source(library, owner_id=OTHER_OWNER)
        await make_asset()

        sources, plan = await SourceService(db_session).list_sources(OWNER)

        assert [s.id for s in sources] == [first.id, second.id]
        assert plan.current_photos == 1

    async def test_disconnect_hides_source_and_keeps_assets(
        self, db_session, library, make_source, run_import
    ):
        library.add_many(2)
        source = await make_source(library)
        await ImportJobService(db_session).start(OWNER, source.id)
        await db_session.commit()
        await run_import()
        service = SourceService(db_session)

        disconnected = await service.disconnect(OWNER, source.id)
        await db_session.commit()

        assert disconnected.is_active is False
        assert disconnected.disconnected_at is not None
        sources, plan = await service.list_sources(OWNER)
        assert sources == []
        assert plan.current_photos == 2

    async def test_disconnect_twice_is_a_no_op(self, db_session, library, make_source):
        source = await make_source(library)
        service = SourceService(db_session)
        first = await service.disconnect(OWNER, source.id)
        stamp = first.disconnected_at

        second = await service.disconnect(OWNER, source.id)

        assert second.disconnected_at == stamp

    async def test_disconnected_source_cannot_be_browsed(self, db_session, library, make_source):
        source = await make_source(library)
        service = SourceService(db_session)
        await service.disconnect(OWNER, source.id)

        with pytest.raises(StateConflictError):
            await service.list_albums(OWNER, source.id)
        with pytest.raises(StateConflictError):
            await service.check_new(OWNER, source.id)

    async def test_other_owner_is_forbidden(self, db_session, library, make_source):
        source = await make_source(library)

        with pytest.raises(ForbiddenError):
            await SourceService(db_session).disconnect(OTHER_OWNER, source.id)


# =============================================================================
# Browsing the provider
# =============================================================================


class TestBrowseSource:
    """Tests for albums and new-asset checks."""

    async def test_list_albums(self, db_session, library, make_source):
        library.add_many(2, prefix="a", album_id="album-a")
        library.add_many(1, prefix="b", album_id="album-b")
        source = await make_source(library)

        albums = await SourceService(db_session).list_albums(OWNER, source.id)

        assert [(a.id, a.asset_count) for a in albums] == [("album-a", 2), ("album-b", 1)]

    async def test_expired_credentials_surface(self, db_session, library, make_source):
        library.list_error = AuthFailedError("token expired")
        source = await make_source(library)

        with pytest.raises(AuthFailedError):
            await SourceService(db_session).list_albums(OWNER, source.id)

    async def test_check_new_counts_unsynced(self, db_session, library, make_source, run_import):
        library.add_many(3)
        source = await make_source(library)
        service = SourceService(db_session)

        before = await service.check_new(OWNER, source.id)
        assert before.new_assets == 3
        assert before.estimated_seconds == pytest.approx(3 * settings.seconds_per_asset)

        await ImportJobService(db_session).start(OWNER, source.id)
        await db_session.commit()
        await run_import()
        library.add_many(1, prefix="later")

        assert (await service.check_new(OWNER, source.id)).new_assets == 1

    async def test_check_new_for_albums(self, db_session, library, make_source):
        library.add_many(2, prefix="a", album_id="album-a")
        library.add_many(4, prefix="b", album_id="album-b")
        source = await make_source(library)

        check = await SourceService(db_session).check_new(OWNER, source.id, ["album-a"])

        assert check.new_assets == 2


# =============================================================================
# Credential storage
# =============================================================================


class TestCredentialStorage:
    """Tests for encrypted source credentials."""

    async def test_tokens_are_not_stored_in_clear(self, db_session, catalog):
        source = await SourceService(db_session).register_authorized_source(
            OWNER, "dropbox", {"access_token": "secret-token"}
        )

        assert "secret-token" not in source.credentials_encrypted

    def test_foreign_key_token_needs_reconnect(self):
        foreign = Fernet(Fernet.generate_key()).encrypt(b'{"access_token": "x"}').decode()

        with pytest.raises(AuthFailedError):
            decrypt_credentials(foreign)

    def test_missing_credentials_are_empty(self):
        assert decrypt_credentials(None) == {}
