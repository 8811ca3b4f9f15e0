"""Dropbox connector: top-level folders act as albums."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any
from urllib.parse import urlencode

from vaultimport.connectors.base import HttpSourceConnector, RemoteAlbum, RemoteAsset, media_type_for
from vaultimport.core.config import settings
from vaultimport.core.exceptions import ServiceUnavailableError
from vaultimport.db.models.enums import ConnectorKind

API_BASE = "https://api.dropboxapi.com/2"
CONTENT_BASE = "https://content.dropboxapi.com/2"
AUTH_ENDPOINT = "https://www.dropbox.com/oauth2/authorize"


class DropboxConnector(HttpSourceConnector):
    """Enumerates image and video files from a Dropbox account."""

    service_key = "dropbox"
    kind = ConnectorKind.OAUTH
    # files/download answers path/not_found with a 409
    missing_asset_statuses = (404, 409, 410)

    @classmethod
    def authorization_url(cls, state: str) -> str:
        if not settings.dropbox_app_key:
            raise ServiceUnavailableError("Dropbox OAuth is not configured")
        query = urlencode(
            {
                "client_id": settings.dropbox_app_key,
                "redirect_uri": settings.oauth_redirect_uri,
                "response_type": "code",
                "token_access_type": "offline",
                "state": state,
            }
        )
        return f"{AUTH_ENDPOINT}?{query}"

    async def list_albums(self) -> list[RemoteAlbum]:
        albums = [
            RemoteAlbum(id=entry["path_lower"], name=entry["name"])
            async for entry in self._list_folder("", recursive=False)
            if entry.get(".tag") == "folder"
        ]
        return sorted(albums, key=lambda a: a.id)

    async def iter_assets(self, album_ids: list[str] | None = None) -> AsyncIterator[RemoteAsset]:
        roots = sorted(album_ids) if album_ids else [""]
        for root in roots:
            entries = [
                entry
                async for entry in self._list_folder(root, recursive=True)
                if entry.get(".tag") == "file"
            ]
            # list_folder order is not guaranteed between calls
            entries.sort(key=lambda e: e["path_lower"])
            for entry in entries:
                media_type = media_type_for(entry.get("name"))
                if media_type is None:
                    continue
                taken_at = None
                if entry.get("client_modified"):
                    taken_at = datetime.fromisoformat(entry["client_modified"].replace("Z", "+00:00"))
                yield RemoteAsset(
                    remote_id=entry["id"],
                    filename=entry.get("name"),
                    album_id=root or None,
                    media_type=media_type,
                    byte_size=entry.get("size"),
                    taken_at=taken_at,
                    # Dropbox content_hash is a block hash, not a plain SHA-256
                    extra={"path": entry["path_lower"], "dropbox_hash": entry.get("content_hash")},
                )

    async def fetch_content(self, asset: RemoteAsset) -> bytes:
        response = await self._request(
            "POST",
            f"{CONTENT_BASE}/files/download",
            headers={"Dropbox-API-Arg": json.dumps({"path": asset.remote_id})},
            operation="download",
            per_asset=True,
        )
        return response.content

    async def _list_folder(self, path: str, *, recursive: bool) -> AsyncIterator[dict[str, Any]]:
        response = await self._request(
            "POST",
            f"{API_BASE}/files/list_folder",
            json={"path": path, "recursive": recursive, "include_media_info": False},
            operation="list_folder",
        )
        data = response.json()
        while True:
            for entry in data.get("entries", []):
                yield entry
            if not data.get("has_more"):
                return
            response = await self._request(
                "POST",
                f"{API_BASE}/files/list_folder/continue",
                json={"cursor": data["cursor"]},
                operation="list_folder_continue",
            )
            data = response.json()
