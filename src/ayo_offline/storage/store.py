"""
Config store — the key/value surface the router reads credentials and
model bookkeeping from.

Two backends:
- MemoryConfigStore: a dict. Tests, ephemeral sessions.
- SQLiteConfigStore: aiosqlite, one table, values stored as JSON text.
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import aiosqlite

import ayo_offline.core.config as config_module

logger = logging.getLogger(__name__)


class ConfigStore(ABC):
    """Async key/value store. Values are JSON-compatible."""

    async def start(self) -> None:
        """Open the store. No-op by default."""

    async def stop(self) -> None:
        """Close the store. No-op by default."""

    @abstractmethod
    async def get_value(self, key: str) -> Any:
        """Return the value, or None if the key is missing."""
        ...

    @abstractmethod
    async def set_value(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    async def delete_value(self, key: str) -> None:
        """Remove a key. Missing keys are not an error."""
        ...

    @abstractmethod
    async def list_keys_with_prefix(self, prefix: str) -> list[str]:
        """Keys starting with prefix, in insertion order."""
        ...


class MemoryConfigStore(ConfigStore):
    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    async def get_value(self, key: str) -> Any:
        return self._data.get(key)

    async def set_value(self, key: str, value: Any) -> None:
        self._data[key] = value

    async def delete_value(self, key: str) -> None:
        self._data.pop(key, None)

    async def list_keys_with_prefix(self, prefix: str) -> list[str]:
        return [k for k in self._data if k.startswith(prefix)]


class SQLiteConfigStore(ConfigStore):
    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or Path(config_module.config.storage.db_path)
        self._db: aiosqlite.Connection | None = None

    async def start(self) -> None:
        if self._db:
            return
        self._db = await aiosqlite.connect(str(self.db_path))
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS config (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                key TEXT NOT NULL UNIQUE,
                value TEXT NOT NULL,
                updated_at REAL NOT NULL
            )
        """)
        await self._db.commit()
        logger.info(f"Config store ready ({self.db_path})")

    async def stop(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("Config store not started")
        return self._db

    async def get_value(self, key: str) -> Any:
        async with self._conn().execute(
            "SELECT value FROM config WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()
        return json.loads(row[0]) if row else None

    async def set_value(self, key: str, value: Any) -> None:
        db = self._conn()
        await db.execute(
            """
            INSERT INTO config (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, json.dumps(value), time.time()),
        )
        await db.commit()

    async def delete_value(self, key: str) -> None:
        db = self._conn()
        await db.execute("DELETE FROM config WHERE key = ?", (key,))
        await db.commit()

    async def list_keys_with_prefix(self, prefix: str) -> list[str]:
        # substr() instead of LIKE: provider ids may contain '_' or '%'
        async with self._conn().execute(
            "SELECT key FROM config WHERE substr(key, 1, ?) = ? ORDER BY seq",
            (len(prefix), prefix),
        ) as cursor:
            rows = await cursor.fetchall()
        return [row[0] for row in rows]
