"""Tests for the HTTP API."""

from __future__ import annotations

import pytest
from fakes import OTHER_OWNER, OWNER
from httpx import ASGITransport, AsyncClient

from vaultimport.core.exceptions import AuthFailedError
from vaultimport.db import get_db
from vaultimport.main import create_app
from vaultimport.services.plan_guard import PlanGuard
from vaultimport.services.registry import ServiceRegistry

V1 = "/api/v1"


@pytest.fixture
async def client(session_maker):
    """API client bound to the test database, acting as OWNER."""
    app = create_app()

    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Owner-Id": OWNER},
    ) as ac:
        yield ac


@pytest.fixture
async def catalog(db_session):
    await ServiceRegistry(db_session).ensure_catalog()
    await db_session.commit()


async def start_import(client, source_id: str, **body):
    return await client.post(f"{V1}/import-jobs", json={"source_id": source_id, **body})


# =============================================================================
# Health and identity
# =============================================================================


class TestHealthAndAuth:
    """Tests for health and the owner header."""

    async def test_health(self, client):
        response = await client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["database"] == "connected"
        assert data["workers_running"] is False

    async def test_missing_owner_header(self, client):
        del client.headers["X-Owner-Id"]

        response = await client.get(f"{V1}/import-jobs")

        assert response.status_code == 401

    async def test_blank_owner_header(self, client):
        response = await client.get(f"{V1}/plan", headers={"X-Owner-Id": "  "})

        assert response.status_code == 401


# =============================================================================
# Catalog and sources
# =============================================================================


class TestSourcesApi:
    """Tests for service catalog and source endpoints."""

    async def test_lists_services(self, client, catalog):
        response = await client.get(f"{V1}/import-services")

        assert response.status_code == 200
        keys = {s["service_key"] for s in response.json()["items"]}
        assert {"google_photos", "dropbox", "facebook"} <= keys

    async def test_service_under_review(self, client, catalog):
        response = await client.post(
            f"{V1}/import-sources/connect",
            json={"service_key": "facebook", "credentials": {"archive_path": "/tmp/x.zip"}},
        )

        assert response.status_code == 503
        assert response.json()["error"] == "service_under_review"

    async def test_connect_archive_source(self, client, fake_service, library):
        response = await client.post(
            f"{V1}/import-sources/connect",
            json={"service_key": fake_service.service_key, "credentials": {"library": library.name}},
        )

        assert response.status_code == 200
        source = response.json()["source"]
        assert source["service_key"] == fake_service.service_key
        assert source["is_active"] is True
        assert "credentials" not in source
        assert "credentials_encrypted" not in source

    async def test_list_albums_and_check_new(self, client, library, make_source):
        library.add_many(2, prefix="a", album_id="album-a")
        library.add_many(1, prefix="b", album_id="album-b")
        source = await make_source(library)

        albums = await client.get(f"{V1}/import-sources/{source.id}/albums")
        check = await client.get(
            f"{V1}/import-sources/{source.id}/check-new", params={"album_ids": ["album-a"]}
        )

        assert [a["id"] for a in albums.json()["items"]] == ["album-a", "album-b"]
        assert check.json()["new_assets"] == 2

    async def test_revoked_provider_token_is_not_an_owner_auth_error(
        self, client, library, make_source
    ):
        """A provider rejecting stored credentials must not look like a bad session."""
        library.list_error = AuthFailedError("Provider rejected the access token")
        source = await make_source(library)

        response = await client.get(f"{V1}/import-sources/{source.id}/albums")

        assert response.status_code == 424
        assert response.json()["error"] == "auth_failed"
        assert response.json()["retryable"] is False

    async def test_disconnect_then_list(self, client, library, make_source):
        source = await make_source(library)

        response = await client.post(f"{V1}/import-sources/{source.id}/disconnect")
        listing = await client.get(f"{V1}/import-sources")

        assert response.status_code == 200
        assert response.json()["is_active"] is False
        assert listing.json()["items"] == []
        assert "plan" in listing.json()

    async def test_other_owners_source_is_forbidden(self, client, library, make_source):
        source = await make_source(library, owner_id=OTHER_OWNER)

        response = await client.get(f"{V1}/import-sources/{source.id}/albums")

        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"


# =============================================================================
# Import jobs
# =============================================================================


class TestImportJobsApi:
    """Tests for import job endpoints."""

    async def test_second_import_conflicts(self, client, library, make_source):
        source = await make_source(library)

        first = await start_import(client, source.id)
        second = await start_import(client, source.id)

        assert first.status_code == 201
        assert first.json()["status"] == "pending"
        assert second.status_code == 409
        assert second.json()["error"] == "state_conflict"
        assert second.json()["retryable"] is False

    async def test_scope_validation(self, client, library, make_source):
        source = await make_source(library)

        response = await start_import(client, source.id, scope="selected_albums")

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    async def test_unknown_job(self, client):
        response = await client.get(f"{V1}/import-jobs/missing")

        assert response.status_code == 404

    async def test_estimate(self, client, db_session, library, make_source):
        library.add_many(5)
        source = await make_source(library)
        await PlanGuard(db_session).set_plan_limit(OWNER, 3)
        await db_session.commit()

        response = await client.post(f"{V1}/import-jobs/estimate", json={"source_id": source.id})

        assert response.status_code == 200
        data = response.json()
        assert data["total_assets"] == 5
        assert data["plan_check"]["can_import"] is False
        assert data["plan_check"]["would_exceed_by"] == 2

    async def test_full_import_and_rollback(self, client, library, make_source, run_import):
        library.add_many(4)
        source = await make_source(library)
        job_id = (await start_import(client, source.id)).json()["id"]

        await run_import()

        job = (await client.get(f"{V1}/import-jobs/{job_id}")).json()
        assert job["status"] == "completed"
        assert job["imported_assets"] == 4
        assert job["progress_percent"] == 100.0
        assert job["is_retryable"] is False

        listing = (await client.get(f"{V1}/import-jobs", params={"status": "completed"})).json()
        assert listing["total"] == 1

        rollback = await client.post(f"{V1}/import-jobs/{job_id}/rollback")
        assert rollback.status_code == 200
        assert rollback.json() == {"job_id": job_id, "deleted_assets": 4, "already_removed": 0}

        again = await client.post(f"{V1}/import-jobs/{job_id}/rollback")
        assert again.status_code == 409

        plan = (await client.get(f"{V1}/plan")).json()
        assert plan["current_photos"] == 0

    async def test_cancel_and_pause(self, client, library, make_source):
        source = await make_source(library)
        job_id = (await start_import(client, source.id)).json()["id"]

        paused = await client.post(f"{V1}/import-jobs/{job_id}/pause")
        assert paused.json()["status"] == "paused"
        assert paused.json()["is_retryable"] is True

        cancelled = await client.post(f"{V1}/import-jobs/{job_id}/cancel")
        assert cancelled.json()["status"] == "cancelled"

    async def test_resume_without_quota(self, client, db_session, library, make_source, run_import):
        library.add_many(4)
        source = await make_source(library)
        await PlanGuard(db_session).set_plan_limit(OWNER, 2)
        await db_session.commit()
        job_id = (await start_import(client, source.id)).json()["id"]
        await run_import()

        job = (await client.get(f"{V1}/import-jobs/{job_id}")).json()
        assert job["status"] == "blocked_limit"
        assert job["imported_assets"] == 2

        response = await client.post(f"{V1}/import-jobs/{job_id}/resume")

        assert response.status_code == 429
        data = response.json()
        assert data["error"] == "quota_exceeded"
        assert data["retryable"] is True
        assert data["remaining_photos"] == 0


# =============================================================================
# Dedup
# =============================================================================


class TestDedupApi:
    """Tests for dedup scan and group endpoints."""

    async def test_scan_conflict_and_threshold_validation(self, client):
        first = await client.post(f"{V1}/dedup/scans")
        second = await client.post(f"{V1}/dedup/scans")
        bad = await client.post(f"{V1}/dedup/scans", json={"similarity_threshold": 2})

        assert first.status_code == 201
        assert first.json()["similarity_threshold"] == pytest.approx(0.90)
        assert second.status_code == 409
        assert bad.status_code == 422

    async def test_scan_and_resolve(self, client, make_asset, run_scan):
        small = await make_asset(fingerprint="sha256:" + "b" * 64, width=10, height=10)
        large = await make_asset(fingerprint="sha256:" + "b" * 64, width=50, height=50)
        scan_id = (await client.post(f"{V1}/dedup/scans")).json()["id"]

        await run_scan()

        scan = (await client.get(f"{V1}/dedup/scans/{scan_id}")).json()
        assert scan["status"] == "completed"
        assert scan["duplicates_found"] == 1

        groups = (await client.get(f"{V1}/dedup/groups", params={"status": "pending"})).json()
        assert groups["total"] == 1
        group = groups["items"][0]
        assert group["members"][0]["asset_id"] == large.id
        assert group["members"][0]["is_primary"] is True

        resolved = await client.post(
            f"{V1}/dedup/groups/{group['id']}/resolve", json={"action": "keep_one"}
        )
        assert resolved.status_code == 200
        body = resolved.json()
        assert body["status"] == "resolved"
        assert body["kept_asset_id"] == large.id
        deleted = {m["asset_id"]: m["is_deleted"] for m in body["members"]}
        assert deleted == {large.id: False, small.id: True}

        conflict = await client.post(
            f"{V1}/dedup/groups/{group['id']}/resolve", json={"action": "delete_all"}
        )
        assert conflict.status_code == 409

    async def test_cancel_pending_scan(self, client):
        scan_id = (await client.post(f"{V1}/dedup/scans")).json()["id"]

        response = await client.post(f"{V1}/dedup/scans/{scan_id}/cancel")

        assert response.json()["status"] == "cancelled"
