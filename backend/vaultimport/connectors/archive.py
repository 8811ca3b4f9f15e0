"""Connector for export archives (e.g. a Facebook "Download your information" ZIP).

The account holder uploads the export; the source credentials just point
at the stored file. Albums are the directories that directly contain media.
"""

from __future__ import annotations

import asyncio
import zipfile
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any

from vaultimport.connectors.base import RemoteAlbum, RemoteAsset, SourceConnector, media_type_for
from vaultimport.core.exceptions import AuthFailedError, StorageFailureError, ValidationError
from vaultimport.db.models.enums import ConnectorKind

ROOT_ALBUM_ID = "/"


class ArchiveExportConnector(SourceConnector):
    """Reads media members out of a ZIP export in archive path order."""

    service_key = "facebook"
    kind = ConnectorKind.ARCHIVE

    def __init__(self, credentials: dict[str, Any]):
        super().__init__(credentials)
        self.archive_path = Path(credentials.get("archive_path", ""))

    @classmethod
    def validate_credentials(cls, credentials: dict[str, Any]) -> dict[str, Any]:
        archive_path = credentials.get("archive_path")
        if not archive_path:
            raise ValidationError("credentials.archive_path is required")
        path = Path(archive_path)
        if not path.is_file() or not zipfile.is_zipfile(path):
            raise ValidationError(f"{archive_path} is not a readable ZIP archive")
        return {"archive_path": str(path)}

    async def list_albums(self) -> list[RemoteAlbum]:
        members = await asyncio.to_thread(self._media_members)
        counts: dict[str, int] = {}
        for info in members:
            album_id = _album_id(info.filename)
            counts[album_id] = counts.get(album_id, 0) + 1
        return [
            RemoteAlbum(
                id=album_id,
                name="Uncategorized" if album_id == ROOT_ALBUM_ID else PurePosixPath(album_id).name,
                asset_count=count,
            )
            for album_id, count in sorted(counts.items())
        ]

    async def iter_assets(self, album_ids: list[str] | None = None) -> AsyncIterator[RemoteAsset]:
        wanted = set(album_ids) if album_ids else None
        members = await asyncio.to_thread(self._media_members)
        for info in members:
            album_id = _album_id(info.filename)
            if wanted is not None and album_id not in wanted:
                continue
            yield RemoteAsset(
                remote_id=info.filename,
                filename=PurePosixPath(info.filename).name,
                album_id=album_id,
                media_type=media_type_for(info.filename),
                byte_size=info.file_size,
                taken_at=datetime(*info.date_time, tzinfo=timezone.utc),
            )

    async def fetch_content(self, asset: RemoteAsset) -> bytes:
        return await asyncio.to_thread(self._read_member, asset.remote_id)

    def _open(self) -> zipfile.ZipFile:
        try:
            return zipfile.ZipFile(self.archive_path)
        except FileNotFoundError as e:
            # The upload behind this source is gone; reconnecting re-uploads it
            raise AuthFailedError(f"Export archive {self.archive_path} is missing") from e
        except zipfile.BadZipFile as e:
            raise AuthFailedError(f"Export archive {self.archive_path} is corrupt") from e

    def _media_members(self) -> list[zipfile.ZipInfo]:
        with self._open() as archive:
            members = [
                info
                for info in archive.infolist()
                if not info.is_dir() and media_type_for(info.filename) is not None
            ]
        return sorted(members, key=lambda info: info.filename)

    def _read_member(self, name: str) -> bytes:
        with self._open() as archive:
            try:
                return archive.read(name)
            except (KeyError, zipfile.BadZipFile, OSError) as e:
                raise StorageFailureError(f"Cannot read {name} from export: {e}") from e


def _album_id(member_name: str) -> str:
    parent = str(PurePosixPath(member_name).parent)
    return ROOT_ALBUM_ID if parent in ("", ".") else parent
