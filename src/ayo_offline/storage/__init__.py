"""Persistent config/credential storage consumed by the router."""

from ayo_offline.storage.credentials import (
    ACTIVE_LOCAL_MODEL,
    API_KEY_PREFIX,
    OfflineStorage,
)
from ayo_offline.storage.crypto import SecretBox
from ayo_offline.storage.store import ConfigStore, MemoryConfigStore, SQLiteConfigStore

__all__ = [
    "ConfigStore",
    "MemoryConfigStore",
    "SQLiteConfigStore",
    "OfflineStorage",
    "SecretBox",
    "API_KEY_PREFIX",
    "ACTIVE_LOCAL_MODEL",
]
