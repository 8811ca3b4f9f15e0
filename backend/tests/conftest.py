"""Pytest configuration and fixtures."""

import os
import tempfile
import uuid
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Create a temporary directory for test paths
_test_tmp_dir = tempfile.mkdtemp(prefix="vaultimport_test_")

# Set config paths BEFORE importing vaultimport modules
os.environ["VAULTIMPORT_CONFIG_PATH"] = str(Path(_test_tmp_dir) / "config")
os.environ["VAULTIMPORT_STORAGE_PATH"] = str(Path(_test_tmp_dir) / "vault")
os.environ["VAULTIMPORT_WORKERS_ENABLED"] = "false"

from fakes import FAKE_SERVICE_KEY, OWNER, FakeConnector, FakeLibrary, FlakyStorage

from vaultimport.connectors import register_connector
from vaultimport.db.base import Base
from vaultimport.db.models import (
    ACTIVE_IMPORT_STATUSES,
    ACTIVE_SCAN_STATUSES,
    Asset,
    ConnectorKind,
    DedupScanJob,
    ImportJob,
    ImportService,
    ImportSource,
)
from vaultimport.services import leases
from vaultimport.services.dedup import DedupScanner
from vaultimport.services.import_engine import ImportEngine
from vaultimport.utils.credentials import encrypt_credentials

register_connector(FAKE_SERVICE_KEY, FakeConnector)


@pytest.fixture
async def db_engine(tmp_path):
    """File-backed SQLite engine so several sessions can share it."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    """Session factory configured like the application's."""
    return async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
async def db_session(session_maker):
    """Create a test database session."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def storage(tmp_path):
    """Vault storage that never fails."""
    return FlakyStorage(tmp_path / "vault", failing=set())


@pytest.fixture
def library():
    """A registered, empty fake provider library."""
    lib = FakeLibrary(name=f"lib-{uuid.uuid4().hex[:8]}")
    FakeConnector.libraries[lib.name] = lib
    yield lib
    FakeConnector.libraries.pop(lib.name, None)


@pytest.fixture
async def fake_service(db_session):
    """Catalog row for the fake provider."""
    service = ImportService(
        service_key=FAKE_SERVICE_KEY,
        display_name="Fake Photos",
        description="In-memory provider",
        connector_kind=ConnectorKind.ARCHIVE,
        requires_app_review=False,
        supports_albums=True,
        is_active=True,
    )
    db_session.add(service)
    await db_session.commit()
    return service


@pytest.fixture
def make_source(db_session, fake_service):
    """Factory for committed sources over a fake library."""

    async def _make(lib: FakeLibrary, owner_id: str = OWNER) -> ImportSource:
        source = ImportSource(
            owner_id=owner_id,
            service_id=fake_service.id,
            display_name=lib.name,
            credentials_encrypted=encrypt_credentials({"library": lib.name}),
            is_active=True,
            total_assets_synced=0,
        )
        db_session.add(source)
        await db_session.commit()
        await db_session.refresh(source, ["service"])
        return source

    return _make


@pytest.fixture
def make_asset(db_session):
    """Factory for committed vault assets."""

    async def _make(owner_id: str = OWNER, **fields) -> Asset:
        asset = Asset(owner_id=owner_id, **fields)
        db_session.add(asset)
        await db_session.commit()
        return asset

    return _make


@pytest.fixture
def run_import(session_maker, storage):
    """Claim the next import job as a worker and run it to a stopping point."""

    async def _run(worker_id: str = "worker-1", **engine_kwargs):
        engine_kwargs.setdefault("storage", storage)
        async with session_maker() as db:
            job = await leases.claim_next(db, ImportJob, ACTIVE_IMPORT_STATUSES, worker_id)
            assert job is not None, "no claimable import job"
            return await ImportEngine(db, worker_id, **engine_kwargs).run(job.id)

    return _run


@pytest.fixture
def run_scan(session_maker, storage):
    """Claim the next dedup scan as a worker and run it."""

    async def _run(worker_id: str = "scanner-1", **scanner_kwargs):
        scanner_kwargs.setdefault("storage", storage)
        async with session_maker() as db:
            scan = await leases.claim_next(db, DedupScanJob, ACTIVE_SCAN_STATUSES, worker_id)
            assert scan is not None, "no claimable scan"
            return await DedupScanner(db, worker_id, **scanner_kwargs).run(scan.id)

    return _run


def pytest_sessionfinish(session, exitstatus):
    """Clean up temp directories after test session."""
    import shutil
    if Path(_test_tmp_dir).exists():
        shutil.rmtree(_test_tmp_dir, ignore_errors=True)
