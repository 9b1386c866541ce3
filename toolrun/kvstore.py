from __future__ import annotations

import asyncio
import sqlite3
import time
from pathlib import Path


class KeyValueStore:
    """Namespaced byte blobs in a single sqlite file.

    Every call opens its own connection in a worker thread so the event loop
    is never blocked on disk I/O.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._init_lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        async with self._init_lock:
            await asyncio.to_thread(self._init_db)
            self._initialized = True

    async def _ensure_initialized(self) -> None:
        if not self._initialized or not self._path.exists():
            await self.initialize()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, timeout=30)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA busy_timeout=30000;")
        return conn

    def _init_db(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    namespace TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value BLOB NOT NULL,
                    updated_at INTEGER NOT NULL,
                    PRIMARY KEY (namespace, key)
                )
                """
            )
            conn.commit()

    async def get(self, namespace: str, key: str) -> bytes | None:
        await self._ensure_initialized()
        return await asyncio.to_thread(self._get, namespace, key)

    def _get(self, namespace: str, key: str) -> bytes | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM kv WHERE namespace = ? AND key = ?", (namespace, key)
            ).fetchone()
        if row is None:
            return None
        return bytes(row[0])

    async def put(self, namespace: str, key: str, value: bytes) -> None:
        await self._ensure_initialized()
        await asyncio.to_thread(self._put, namespace, key, value)

    def _put(self, namespace: str, key: str, value: bytes) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO kv (namespace, key, value, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(namespace, key) DO UPDATE SET
                    value=excluded.value,
                    updated_at=excluded.updated_at
                """,
                (namespace, key, sqlite3.Binary(value), int(time.time())),
            )
            conn.commit()

    async def remove(self, namespace: str, key: str) -> bool:
        await self._ensure_initialized()
        return await asyncio.to_thread(self._remove, namespace, key)

    def _remove(self, namespace: str, key: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM kv WHERE namespace = ? AND key = ?", (namespace, key)
            )
            conn.commit()
        return cur.rowcount > 0
