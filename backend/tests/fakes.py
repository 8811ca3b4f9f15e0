"""In-memory provider and storage doubles shared by the tests."""

from __future__ import annotations

import asyncio
import hashlib
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from vaultimport.connectors import RemoteAlbum, RemoteAsset, SourceConnector
from vaultimport.core.exceptions import AuthFailedError, StorageFailureError, ValidationError
from vaultimport.db.models.enums import ConnectorKind
from vaultimport.storage import LocalVaultStorage

FAKE_SERVICE_KEY = "fake_photos"

OWNER = "owner-1"
OTHER_OWNER = "owner-2"


@dataclass
class FakeLibrary:
    """Albums of remote assets and their bytes, as a provider would hold them."""

    name: str
    albums: dict[str, list[RemoteAsset]] = field(default_factory=dict)
    content: dict[str, bytes] = field(default_factory=dict)
    # remote_id -> error raised when that asset is downloaded
    fetch_errors: dict[str, Exception] = field(default_factory=dict)
    # Raised by list_albums / iter_assets, e.g. an expired token
    list_error: Exception | None = None
    # Awaited after every download with the running download count
    on_fetch: Callable[[int], Awaitable[None]] | None = None
    fetch_count: int = 0

    def add(
        self,
        remote_id: str,
        data: bytes,
        *,
        album_id: str = "album-1",
        perceptual_hash: str | None = None,
        width: int | None = None,
        height: int | None = None,
        expose_hash: bool = False,
    ) -> RemoteAsset:
        asset = RemoteAsset(
            remote_id=remote_id,
            filename=f"{remote_id}.jpg",
            album_id=album_id,
            media_type="image",
            byte_size=len(data),
            content_hash=hashlib.sha256(data).hexdigest() if expose_hash else None,
            perceptual_hash=perceptual_hash,
            width=width,
            height=height,
        )
        self.albums.setdefault(album_id, []).append(asset)
        self.content[remote_id] = data
        return asset

    def add_many(self, count: int, prefix: str = "img", **kwargs: Any) -> list[RemoteAsset]:
        return [
            self.add(f"{prefix}-{i:03d}", f"{prefix} content {i}".encode(), **kwargs)
            for i in range(count)
        ]


class FakeConnector(SourceConnector):
    """Connector over a registered ``FakeLibrary``.

    Credentials are ``{"library": <name>}``; the archive kind lets
    ``connect`` create sources without an OAuth round trip.
    """

    service_key = FAKE_SERVICE_KEY
    kind = ConnectorKind.ARCHIVE
    libraries: dict[str, FakeLibrary] = {}

    def __init__(self, credentials: dict[str, Any]):
        super().__init__(credentials)
        library = self.libraries.get(credentials.get("library", ""))
        if library is None:
            raise AuthFailedError("Unknown library")
        self.library = library

    @classmethod
    def validate_credentials(cls, credentials: dict[str, Any]) -> dict[str, Any]:
        if credentials.get("library") not in cls.libraries:
            raise ValidationError("credentials.library is required")
        return {"library": credentials["library"]}

    async def list_albums(self) -> list[RemoteAlbum]:
        if self.library.list_error is not None:
            raise self.library.list_error
        return [
            RemoteAlbum(id=album_id, name=album_id.title(), asset_count=len(assets))
            for album_id, assets in sorted(self.library.albums.items())
        ]

    async def iter_assets(self, album_ids: list[str] | None = None) -> AsyncIterator[RemoteAsset]:
        if self.library.list_error is not None:
            raise self.library.list_error
        for album_id in sorted(self.library.albums):
            if album_ids and album_id not in album_ids:
                continue
            for asset in self.library.albums[album_id]:
                yield asset

    async def fetch_content(self, asset: RemoteAsset) -> bytes:
        self.library.fetch_count += 1
        if self.library.on_fetch is not None:
            await self.library.on_fetch(self.library.fetch_count)
        error = self.library.fetch_errors.get(asset.remote_id)
        if error is not None:
            raise error
        await asyncio.sleep(0)
        return self.library.content[asset.remote_id]


class FlakyStorage(LocalVaultStorage):
    """Local storage that refuses to store some files."""

    def __init__(self, root: Path, failing: set[str]):
        super().__init__(root)
        self.failing = failing

    async def put(self, owner_id: str, asset_id: str, filename: str | None, data: bytes) -> str:
        if filename and Path(filename).stem in self.failing:
            raise StorageFailureError(f"Disk full while storing {filename}")
        return await super().put(owner_id, asset_id, filename, data)

    def stored_files(self) -> list[Path]:
        return [p for p in self.root.rglob("*") if p.is_file()]
