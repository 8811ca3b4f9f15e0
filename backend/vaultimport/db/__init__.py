"""Database package for Vault Import."""

from vaultimport.db.base import Base
from vaultimport.db.session import async_session_maker, engine, get_db

__all__ = [
    "Base",
    "async_session_maker",
    "engine",
    "get_db",
]
