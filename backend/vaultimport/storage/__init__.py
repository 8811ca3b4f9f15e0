"""Byte storage for vault asset content."""

from vaultimport.storage.local import LocalVaultStorage, VaultStorage, get_vault_storage

__all__ = [
    "LocalVaultStorage",
    "VaultStorage",
    "get_vault_storage",
]
