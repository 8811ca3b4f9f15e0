"""Vault content storage.

``VaultStorage`` is the seam the import engine writes through; the local
implementation keeps one file per asset under ``settings.storage_path``.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from pathlib import Path

import aiofiles
import aiofiles.os

from vaultimport.core.config import settings
from vaultimport.core.exceptions import StorageFailureError
from vaultimport.core.logging import get_logger

logger = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class VaultStorage(ABC):
    """Where transferred asset bytes end up."""

    @abstractmethod
    async def put(self, owner_id: str, asset_id: str, filename: str | None, data: bytes) -> str:
        """Store content and return its storage key."""

    @abstractmethod
    async def read(self, storage_key: str) -> bytes:
        """Return stored content."""

    @abstractmethod
    async def delete(self, storage_key: str) -> None:
        """Remove stored content if present."""


class LocalVaultStorage(VaultStorage):
    """Stores content as files grouped by owner."""

    def __init__(self, root: Path | None = None):
        self.root = Path(root or settings.storage_path)

    async def put(self, owner_id: str, asset_id: str, filename: str | None, data: bytes) -> str:
        suffix = Path(filename).suffix.lower() if filename else ""
        storage_key = f"{_safe(owner_id)}/{asset_id}{_safe(suffix)}"
        path = self.root / storage_key
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(data)
        except OSError as e:
            raise StorageFailureError(f"Failed to store asset {asset_id}: {e}") from e

        logger.debug("asset_content_stored", storage_key=storage_key, size=len(data))
        return storage_key

    async def read(self, storage_key: str) -> bytes:
        try:
            async with aiofiles.open(self.path_for(storage_key), "rb") as f:
                return await f.read()
        except OSError as e:
            raise StorageFailureError(f"Failed to read {storage_key}: {e}") from e

    async def delete(self, storage_key: str) -> None:
        path = self.path_for(storage_key)
        if await aiofiles.os.path.exists(path):
            await aiofiles.os.remove(path)

    def path_for(self, storage_key: str) -> Path:
        return self.root / storage_key


def _safe(value: str) -> str:
    return _UNSAFE_CHARS.sub("_", value)


_storage: VaultStorage | None = None


def get_vault_storage() -> VaultStorage:
    """Get or create the process-wide storage backend."""
    global _storage
    if _storage is None:
        _storage = LocalVaultStorage()
    return _storage
