"""Google Photos Library API connector.

Uses the read-only library scope. Token exchange and refresh happen
outside this service; an expired token surfaces as ``auth_failed`` and the
account holder reconnects.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any
from urllib.parse import urlencode

from vaultimport.connectors.base import HttpSourceConnector, RemoteAlbum, RemoteAsset, media_type_for
from vaultimport.core.config import settings
from vaultimport.core.exceptions import AuthFailedError, ServiceUnavailableError
from vaultimport.core.logging import get_logger
from vaultimport.db.models.enums import ConnectorKind

logger = get_logger(__name__)

API_BASE = "https://photoslibrary.googleapis.com/v1"
AUTH_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
SCOPES = ["https://www.googleapis.com/auth/photoslibrary.readonly"]

ALBUM_PAGE_SIZE = 50
MEDIA_PAGE_SIZE = 100


class GooglePhotosConnector(HttpSourceConnector):
    """Enumerates albums and media items from Google Photos."""

    service_key = "google_photos"
    kind = ConnectorKind.OAUTH

    @classmethod
    def authorization_url(cls, state: str) -> str:
        if not settings.google_client_id:
            raise ServiceUnavailableError("Google Photos OAuth is not configured")
        query = urlencode(
            {
                "client_id": settings.google_client_id,
                "redirect_uri": settings.oauth_redirect_uri,
                "response_type": "code",
                "scope": " ".join(SCOPES),
                "access_type": "offline",
                "prompt": "consent",
                "state": state,
            }
        )
        return f"{AUTH_ENDPOINT}?{query}"

    async def list_albums(self) -> list[RemoteAlbum]:
        albums: list[RemoteAlbum] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {"pageSize": ALBUM_PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            response = await self._request(
                "GET", f"{API_BASE}/albums", params=params, operation="list_albums"
            )
            data = response.json()
            for album in data.get("albums", []):
                count = album.get("mediaItemsCount")
                albums.append(
                    RemoteAlbum(
                        id=album["id"],
                        name=album.get("title") or "Untitled album",
                        asset_count=int(count) if count is not None else None,
                        cover_url=album.get("coverPhotoBaseUrl"),
                    )
                )
            page_token = data.get("nextPageToken")
            if not page_token:
                return albums

    async def iter_assets(self, album_ids: list[str] | None = None) -> AsyncIterator[RemoteAsset]:
        if not album_ids:
            async for asset in self._iter_library():
                yield asset
            return

        for album_id in album_ids:
            async for asset in self._iter_album(album_id):
                yield asset

    async def fetch_content(self, asset: RemoteAsset) -> bytes:
        base_url = asset.extra.get("base_url")
        if base_url:
            try:
                return await self._download(base_url, asset)
            except AuthFailedError:
                # baseUrls expire after an hour; the token itself may still be good
                logger.info("google_photos_base_url_expired", item_id=asset.remote_id)

        response = await self._request(
            "GET",
            f"{API_BASE}/mediaItems/{asset.remote_id}",
            operation="get_media_item",
            per_asset=True,
        )
        return await self._download(response.json()["baseUrl"], asset)

    async def _download(self, base_url: str, asset: RemoteAsset) -> bytes:
        suffix = "=dv" if asset.media_type == "video" else "=d"
        response = await self._request(
            "GET", base_url + suffix, operation="download", per_asset=True
        )
        return response.content

    async def _iter_library(self) -> AsyncIterator[RemoteAsset]:
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {"pageSize": MEDIA_PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            response = await self._request(
                "GET", f"{API_BASE}/mediaItems", params=params, operation="list_media"
            )
            data = response.json()
            for item in data.get("mediaItems", []):
                asset = self._to_remote_asset(item, album_id=None)
                if asset is not None:
                    yield asset
            page_token = data.get("nextPageToken")
            if not page_token:
                return

    async def _iter_album(self, album_id: str) -> AsyncIterator[RemoteAsset]:
        page_token: str | None = None
        while True:
            body: dict[str, Any] = {"albumId": album_id, "pageSize": MEDIA_PAGE_SIZE}
            if page_token:
                body["pageToken"] = page_token
            response = await self._request(
                "POST", f"{API_BASE}/mediaItems:search", json=body, operation="search_media"
            )
            data = response.json()
            for item in data.get("mediaItems", []):
                asset = self._to_remote_asset(item, album_id=album_id)
                if asset is not None:
                    yield asset
            page_token = data.get("nextPageToken")
            if not page_token:
                return

    @staticmethod
    def _to_remote_asset(item: dict[str, Any], album_id: str | None) -> RemoteAsset | None:
        media_type = media_type_for(item.get("filename"), item.get("mimeType"))
        if media_type is None:
            logger.debug("google_photos_item_skipped", item_id=item.get("id"))
            return None

        metadata = item.get("mediaMetadata", {})
        taken_at = None
        if metadata.get("creationTime"):
            taken_at = datetime.fromisoformat(metadata["creationTime"].replace("Z", "+00:00"))

        return RemoteAsset(
            remote_id=item["id"],
            filename=item.get("filename"),
            album_id=album_id,
            media_type=media_type,
            width=int(metadata["width"]) if metadata.get("width") else None,
            height=int(metadata["height"]) if metadata.get("height") else None,
            taken_at=taken_at,
            extra={"base_url": item.get("baseUrl")},
        )
