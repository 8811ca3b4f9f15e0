"""Content fingerprints for exact-duplicate detection.

A fingerprint is ``sha256:<hex>`` of the asset bytes. When bytes are not
available the fallback is ``meta:<service>:<remote_id>:<size>``, which only
matches the same provider object and never collides with content hashes.
"""

from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path

# Default chunk size for streaming hash computation
DEFAULT_CHUNK_SIZE = 64 * 1024

CONTENT_PREFIX = "sha256:"
METADATA_PREFIX = "meta:"


def compute_bytes_fingerprint(data: bytes) -> str:
    """Fingerprint in-memory content."""
    return CONTENT_PREFIX + hashlib.sha256(data).hexdigest()


def compute_file_fingerprint_sync(
    file_path: Path,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> str:
    """Fingerprint a file by streaming it in chunks.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        PermissionError: If the file can't be read.
    """
    sha256 = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            sha256.update(chunk)
    return CONTENT_PREFIX + sha256.hexdigest()


async def compute_file_fingerprint(
    file_path: Path,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> str:
    """Fingerprint a file without blocking the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        None,
        compute_file_fingerprint_sync,
        file_path,
        chunk_size,
    )


def metadata_fingerprint(service_key: str, remote_id: str, byte_size: int | None) -> str:
    """Fallback fingerprint from provider identity and size."""
    return f"{METADATA_PREFIX}{service_key}:{remote_id}:{byte_size if byte_size is not None else '?'}"


def normalize_content_hash(value: str | None) -> str | None:
    """Turn a provider-supplied SHA-256 hex digest into a fingerprint.

    Anything that is not a 64-character hex digest is ignored, since
    provider-specific hash schemes (e.g. Dropbox block hashes) do not
    compare with our own.
    """
    if not value:
        return None
    value = value.strip().lower()
    if value.startswith(CONTENT_PREFIX):
        value = value[len(CONTENT_PREFIX):]
    if len(value) != 64 or any(c not in "0123456789abcdef" for c in value):
        return None
    return CONTENT_PREFIX + value
