"""Key-value storage backed by SQLite."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path

from .base import KeyValueStorage
from .schema import ensure_schema


class SQLiteStorage(KeyValueStorage):
    """Persists string values in the kv_store table.

    Blocking sqlite calls run in a worker thread; a lock keeps the shared
    connection to one statement at a time.
    """

    def __init__(self, db_path: str | Path = "~/.config/safeplate/storage.db") -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = ensure_schema(self._db_path)
        return self._conn

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _get(self, key: str) -> str | None:
        with self._lock:
            row = self._get_conn().execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def _set(self, key: str, value: str) -> None:
        with self._lock:
            conn = self._get_conn()
            conn.execute(
                """INSERT INTO kv_store (key, value) VALUES (?, ?)
                   ON CONFLICT(key) DO UPDATE SET
                     value=excluded.value,
                     updated_at=datetime('now', 'localtime')""",
                (key, value),
            )
            conn.commit()

    def _remove(self, key: str) -> None:
        with self._lock:
            conn = self._get_conn()
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()

    def _clear(self) -> None:
        with self._lock:
            conn = self._get_conn()
            conn.execute("DELETE FROM kv_store")
            conn.commit()

    def _keys(self) -> list[str]:
        with self._lock:
            rows = self._get_conn().execute(
                "SELECT key FROM kv_store ORDER BY key"
            ).fetchall()
        return [r["key"] for r in rows]

    async def get_item(self, key: str) -> str | None:
        return await asyncio.to_thread(self._get, key)

    async def set_item(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._set, key, value)

    async def remove_item(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)

    async def clear(self) -> None:
        await asyncio.to_thread(self._clear)

    async def get_all_keys(self) -> list[str]:
        return await asyncio.to_thread(self._keys)
