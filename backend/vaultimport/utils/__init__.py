"""Utility functions for Vault Import."""

from vaultimport.utils.fingerprint import (
    compute_bytes_fingerprint,
    compute_file_fingerprint,
    metadata_fingerprint,
)

__all__ = [
    "compute_bytes_fingerprint",
    "compute_file_fingerprint",
    "metadata_fingerprint",
]
