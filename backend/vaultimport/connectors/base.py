"""Source connector base classes and provider retry handling."""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, TypeVar

import httpx

from vaultimport.core.config import settings
from vaultimport.core.exceptions import (
    AssetUnavailableError,
    AuthFailedError,
    ProviderUnavailableError,
    RateLimitedError,
    ValidationError,
)
from vaultimport.core.logging import get_logger
from vaultimport.db.models.enums import ConnectorKind

logger = get_logger(__name__)

T = TypeVar("T")

BACKOFF_JITTER = 0.3  # +/- 30%

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".heic", ".heif", ".webp", ".tif", ".tiff", ".bmp", ".dng"}
VIDEO_EXTENSIONS = {".mp4", ".mov", ".m4v", ".avi", ".mkv", ".3gp", ".webm"}


@dataclass
class RemoteAlbum:
    """An album (or folder) on the provider side."""

    id: str
    name: str
    asset_count: int | None = None
    cover_url: str | None = None


@dataclass
class RemoteAsset:
    """One photo or video as enumerated from a provider."""

    remote_id: str
    filename: str | None = None
    album_id: str | None = None
    media_type: str | None = None
    byte_size: int | None = None
    # SHA-256 hex digest when the provider exposes one
    content_hash: str | None = None
    perceptual_hash: str | None = None
    width: int | None = None
    height: int | None = None
    taken_at: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class AuthorizationStart:
    """Redirect the caller must follow to finish an OAuth connect."""

    auth_url: str
    state: str


class SourceConnector(ABC):
    """Per-source access to one provider's library.

    Implementations must enumerate assets in a stable order: the import
    engine persists that order and resumes by position.
    """

    service_key: ClassVar[str]
    kind: ClassVar[ConnectorKind]

    def __init__(self, credentials: dict[str, Any]):
        self.credentials = credentials

    @classmethod
    def authorization_url(cls, state: str) -> str:
        """URL that starts the provider's OAuth consent screen."""
        raise ValidationError(f"{cls.service_key} does not use an OAuth redirect")

    @classmethod
    def validate_credentials(cls, credentials: dict[str, Any]) -> dict[str, Any]:
        """Check the shape of credentials before a source is stored."""
        return credentials

    @abstractmethod
    async def list_albums(self) -> list[RemoteAlbum]:
        """List albums available to import from."""

    @abstractmethod
    def iter_assets(self, album_ids: list[str] | None = None) -> AsyncIterator[RemoteAsset]:
        """Yield assets, optionally restricted to some albums."""

    @abstractmethod
    async def fetch_content(self, asset: RemoteAsset) -> bytes:
        """Download an asset's bytes."""

    async def aclose(self) -> None:
        """Release any network resources."""

    async def __aenter__(self) -> SourceConnector:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


class HttpSourceConnector(SourceConnector):
    """Connector backed by a provider HTTP API."""

    # Statuses meaning one asset is gone, not that the provider is down
    missing_asset_statuses: ClassVar[tuple[int, ...]] = (404, 410)

    def __init__(
        self,
        credentials: dict[str, Any],
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(credentials)
        access_token = credentials.get("access_token")
        if not access_token:
            raise AuthFailedError(f"{self.service_key} source has no access token")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=settings.provider_timeout)
        self._auth_headers = {"Authorization": f"Bearer {access_token}"}

    @classmethod
    def validate_credentials(cls, credentials: dict[str, Any]) -> dict[str, Any]:
        if not credentials.get("access_token"):
            raise ValidationError("credentials.access_token is required")
        return credentials

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        per_asset: bool = False,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one request with retries for throttling and outages.

        With ``per_asset`` a missing-item status raises
        ``AssetUnavailableError`` so only that asset is skipped.
        """
        headers = {**self._auth_headers, **kwargs.pop("headers", {})}

        async def _send() -> httpx.Response:
            try:
                response = await self.client.request(method, url, headers=headers, **kwargs)
            except httpx.TransportError as e:
                raise RateLimitedError(f"{operation}: {e}") from e
            if per_asset and response.status_code in self.missing_asset_statuses:
                raise AssetUnavailableError(
                    f"{operation}: asset no longer exists ({response.status_code})"
                )
            raise_for_provider_status(response, operation)
            return response

        return await with_backoff(_send, operation=f"{self.service_key}.{operation}")


def raise_for_provider_status(response: httpx.Response, operation: str) -> None:
    """Map provider HTTP errors onto the error taxonomy."""
    status = response.status_code
    if status < 400:
        return
    if status in (401, 403):
        raise AuthFailedError(f"{operation}: provider rejected credentials ({status})")
    if status == 429 or status >= 500:
        retry_after = response.headers.get("Retry-After")
        raise RateLimitedError(
            f"{operation}: provider returned {status}",
            retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
        )
    raise ProviderUnavailableError(f"{operation}: provider returned {status}")


async def with_backoff(
    call: Callable[[], Awaitable[T]],
    *,
    operation: str,
    max_retries: int | None = None,
    base_delay: float | None = None,
    max_delay: float | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run a provider call, retrying rate limits with exponential backoff.

    Only ``RateLimitedError`` is retried; auth failures propagate on the
    first attempt.

    Raises:
        ProviderUnavailableError: If the call is still throttled after
            ``max_retries`` retries.
    """
    retries = settings.provider_max_retries if max_retries is None else max_retries
    base = settings.provider_backoff_base if base_delay is None else base_delay
    ceiling = settings.provider_backoff_max if max_delay is None else max_delay

    for attempt in range(retries + 1):
        try:
            return await call()
        except RateLimitedError as e:
            if attempt >= retries:
                logger.error(
                    "provider_retries_exhausted",
                    operation=operation,
                    attempts=attempt + 1,
                    error=e.message,
                )
                raise ProviderUnavailableError(
                    f"{operation} unavailable after {attempt + 1} attempts: {e.message}"
                ) from e

            delay = min(base * (2 ** attempt), ceiling)
            delay += delay * BACKOFF_JITTER * (2 * random.random() - 1)
            if e.retry_after is not None:
                delay = max(delay, min(e.retry_after, ceiling))

            logger.warning(
                "provider_retry",
                operation=operation,
                attempt=attempt + 1,
                max_retries=retries,
                delay_seconds=round(delay, 2),
                error=e.message,
            )
            await sleep(delay)

    raise ProviderUnavailableError(f"{operation} retry handling failed")


def media_type_for(filename: str | None, mime_type: str | None = None) -> str | None:
    """Classify an asset as ``image`` or ``video``; None for anything else."""
    if mime_type:
        if mime_type.startswith("image/"):
            return "image"
        if mime_type.startswith("video/"):
            return "video"
    if filename:
        suffix = "." + filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
        if suffix in IMAGE_EXTENSIONS:
            return "image"
        if suffix in VIDEO_EXTENSIONS:
            return "video"
    return None
