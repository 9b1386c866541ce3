from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Iterable, Protocol

from toolrun.errors import HistoryPersistError
from toolrun.models import ResultSet
from toolrun.ring import RingBuffer

log = logging.getLogger(__name__)

DEFAULT_CAPACITY = 16
NAMESPACE = "sproc-history"


class DurableStore(Protocol):
    async def get(self, namespace: str, key: str) -> bytes | None:
        ...

    async def put(self, namespace: str, key: str, value: bytes) -> None:
        ...

    async def remove(self, namespace: str, key: str) -> bool:
        ...


def _decode_snapshot(raw: bytes) -> list[ResultSet] | None:
    try:
        data: Any = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(data, list):
        return None
    if not all(isinstance(entry, list) and all(isinstance(ref, str) for ref in entry) for entry in data):
        return None
    return data


class ResultHistoryStore:
    """Per (guild, user) history of result sets, newest last.

    Buffers are loaded lazily from the durable store on first touch. Every
    recorded set schedules a background write of the full snapshot; a failed
    write is logged and otherwise ignored. When the store cannot be read, the
    key is served from memory and its snapshot is left alone until a later
    load succeeds.
    """

    def __init__(
        self,
        store: DurableStore,
        *,
        capacity: int = DEFAULT_CAPACITY,
        namespace: str = NAMESPACE,
    ) -> None:
        self._store = store
        self._capacity = capacity
        self._namespace = namespace
        self._buffers: dict[str, RingBuffer[ResultSet]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._unloaded: set[str] = set()
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def capacity(self) -> int:
        return self._capacity

    @staticmethod
    def make_key(tenant_id: int | str | None, user_id: int | str) -> str:
        return f"{tenant_id or 'dm'}+{user_id}"

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _load_locked(self, key: str) -> RingBuffer[ResultSet]:
        buffer = self._buffers.get(key)
        if buffer is not None and key not in self._unloaded:
            return buffer
        try:
            raw = await self._store.get(self._namespace, key)
        except Exception:
            log.exception("Failed to load history for %s", key)
            # keep serving from memory; the snapshot is not written until a load succeeds
            if buffer is None:
                buffer = RingBuffer(self._capacity)
                self._buffers[key] = buffer
            self._unloaded.add(key)
            return buffer
        seed: list[ResultSet] | None = None
        if raw is not None:
            seed = _decode_snapshot(raw)
            if seed is None:
                log.warning("Discarding malformed history snapshot for %s", key)
        loaded: RingBuffer[ResultSet] = RingBuffer(self._capacity, seed)
        if buffer is not None:
            # sets recorded while the store was unreadable are newer than the snapshot
            for result_set in buffer:
                loaded.push(result_set)
        self._unloaded.discard(key)
        self._buffers[key] = loaded
        return loaded

    async def record_result_set(
        self, key: str, refs: Iterable[str]
    ) -> asyncio.Task[None] | None:
        """Push a result set and schedule persistence.

        Returns the background persistence task, or ``None`` when ``refs`` is
        empty and nothing was recorded.
        """
        result_set = [str(ref) for ref in refs]
        if not result_set:
            return None
        async with self._lock_for(key):
            buffer = await self._load_locked(key)
            buffer.push(result_set)
        task = asyncio.create_task(self._persist(key))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def resolve_last(self, key: str, offset: int = 0) -> ResultSet | None:
        async with self._lock_for(key):
            buffer = await self._load_locked(key)
            found = buffer.last(offset)
        return list(found) if found is not None else None

    async def snapshot(self, key: str) -> list[ResultSet]:
        async with self._lock_for(key):
            buffer = await self._load_locked(key)
            return [list(entry) for entry in buffer.to_list()]

    async def clear(self, key: str) -> bool:
        async with self._lock_for(key):
            had_items = bool(self._buffers.get(key))
            self._buffers[key] = RingBuffer(self._capacity)
            self._unloaded.discard(key)
            try:
                removed = await self._store.remove(self._namespace, key)
            except Exception:
                log.exception("Failed to remove history snapshot for %s", key)
                removed = False
        return had_items or removed

    async def drain(self) -> None:
        """Wait for every scheduled snapshot write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _persist(self, key: str) -> None:
        try:
            async with self._lock_for(key):
                if key not in self._buffers:
                    return
                buffer = await self._load_locked(key)
                if key in self._unloaded:
                    log.warning("Skipping history write for %s until it can be loaded", key)
                    return
                payload = json.dumps(buffer.to_list(), ensure_ascii=False).encode("utf-8")
                try:
                    await self._store.put(self._namespace, key, payload)
                except Exception as e:
                    raise HistoryPersistError(f"Could not persist history for {key}") from e
        except HistoryPersistError:
            log.exception("History persistence failed for %s", key)
