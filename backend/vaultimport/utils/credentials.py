"""Encryption of stored provider credentials.

Source credentials (OAuth tokens, export locations) are kept as a Fernet
token over their JSON form, keyed by ``settings.encryption_key``.
"""

from __future__ import annotations

import json
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from vaultimport.core.config import settings
from vaultimport.core.exceptions import AuthFailedError
from vaultimport.core.logging import get_logger

logger = get_logger(__name__)

_encryption_key: bytes | None = None


def _get_encryption_key() -> bytes:
    """Get or generate the encryption key."""
    global _encryption_key
    if _encryption_key:
        return _encryption_key

    if settings.encryption_key:
        # Fernet expects the key as base64-encoded bytes (not decoded)
        _encryption_key = settings.encryption_key.encode()
    else:
        # Generated keys only live as long as the process
        _encryption_key = Fernet.generate_key()
        logger.warning(
            "encryption_key_generated",
            message="Using auto-generated encryption key. Set VAULTIMPORT_ENCRYPTION_KEY for persistence.",
        )
    return _encryption_key


def encrypt_credentials(credentials: dict[str, Any]) -> str:
    return Fernet(_get_encryption_key()).encrypt(json.dumps(credentials).encode()).decode()


def decrypt_credentials(encrypted: str | None) -> dict[str, Any]:
    """Decrypt stored credentials.

    Raises:
        AuthFailedError: The token was written under a different key, so
            the account holder has to reconnect the source.
    """
    if not encrypted:
        return {}
    try:
        return json.loads(Fernet(_get_encryption_key()).decrypt(encrypted.encode()))
    except InvalidToken as e:
        raise AuthFailedError("Stored credentials cannot be decrypted; reconnect the source") from e
