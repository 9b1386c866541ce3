import asyncio
import json
import logging
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from toolrun.history import NAMESPACE, ResultHistoryStore  # noqa: E402
from toolrun.kvstore import KeyValueStore  # noqa: E402


class _MemoryStore:
    def __init__(self) -> None:
        self.data: dict[tuple[str, str], bytes] = {}
        self.puts = 0
        self.fail_puts = False

    async def get(self, namespace: str, key: str) -> bytes | None:
        return self.data.get((namespace, key))

    async def put(self, namespace: str, key: str, value: bytes) -> None:
        await asyncio.sleep(0)
        if self.fail_puts:
            raise OSError("disk full")
        self.puts += 1
        self.data[(namespace, key)] = value

    async def remove(self, namespace: str, key: str) -> bool:
        return self.data.pop((namespace, key), None) is not None


KEY = ResultHistoryStore.make_key(1, 10)


def test_make_key_combines_guild_and_user() -> None:
    assert ResultHistoryStore.make_key(1, 10) == "1+10"
    assert ResultHistoryStore.make_key(None, 10) == "dm+10"


def test_record_then_resolve_in_same_process() -> None:
    history = ResultHistoryStore(_MemoryStore())

    async def _run() -> None:
        await history.record_result_set(KEY, ["https://cdn/a.png", "https://cdn/b.png"])
        assert await history.resolve_last(KEY, 0) == ["https://cdn/a.png", "https://cdn/b.png"]
        assert await history.resolve_last(KEY, 1) is None
        assert await history.resolve_last("2+20", 0) is None
        await history.drain()

    asyncio.run(_run())


def test_history_survives_restart(tmp_path: Path) -> None:
    path = tmp_path / "kv.sqlite"

    async def _first() -> None:
        history = ResultHistoryStore(KeyValueStore(path))
        await history.record_result_set(KEY, ["https://cdn/first.png"])
        await history.record_result_set(KEY, ["https://cdn/second.png"])
        await history.drain()

    async def _second() -> None:
        history = ResultHistoryStore(KeyValueStore(path))
        assert await history.resolve_last(KEY, 0) == ["https://cdn/second.png"]
        assert await history.resolve_last(KEY, 1) == ["https://cdn/first.png"]

    asyncio.run(_first())
    asyncio.run(_second())


def test_empty_result_set_is_not_recorded() -> None:
    store = _MemoryStore()
    history = ResultHistoryStore(store)

    async def _run() -> None:
        assert await history.record_result_set(KEY, []) is None
        assert await history.resolve_last(KEY, 0) is None
        await history.drain()

    asyncio.run(_run())
    assert store.puts == 0


def test_capacity_sixteen_with_twenty_pushes() -> None:
    store = _MemoryStore()
    history = ResultHistoryStore(store, capacity=16)

    async def _run() -> None:
        for i in range(1, 21):
            await history.record_result_set(KEY, [f"R{i}"])
        assert await history.resolve_last(KEY, 0) == ["R20"]
        assert await history.resolve_last(KEY, 15) == ["R5"]
        assert await history.resolve_last(KEY, 16) is None
        await history.drain()

    asyncio.run(_run())
    snapshot = json.loads(store.data[(NAMESPACE, KEY)].decode("utf-8"))
    assert snapshot == [[f"R{i}"] for i in range(5, 21)]


def test_concurrent_records_are_not_lost() -> None:
    store = _MemoryStore()
    history = ResultHistoryStore(store, capacity=16)

    async def _run() -> None:
        await asyncio.gather(*(history.record_result_set(KEY, [f"R{i}"]) for i in range(10)))
        await history.drain()

    asyncio.run(_run())
    snapshot = json.loads(store.data[(NAMESPACE, KEY)].decode("utf-8"))
    assert sorted(entry[0] for entry in snapshot) == sorted(f"R{i}" for i in range(10))


@pytest.mark.parametrize(
    "raw",
    [b"{ broken json", b'{"not": "a list"}', b'[["ok"], [1, 2]]', b"\xff\xfe"],
)
def test_malformed_snapshot_starts_fresh(raw: bytes, caplog: pytest.LogCaptureFixture) -> None:
    store = _MemoryStore()
    store.data[(NAMESPACE, KEY)] = raw
    history = ResultHistoryStore(store, capacity=4)

    async def _run() -> None:
        assert await history.resolve_last(KEY, 0) is None
        await history.record_result_set(KEY, ["https://cdn/new.png"])
        await history.drain()

    with caplog.at_level(logging.WARNING, logger="toolrun.history"):
        asyncio.run(_run())

    assert "malformed history snapshot" in caplog.text
    assert json.loads(store.data[(NAMESPACE, KEY)]) == [["https://cdn/new.png"]]


def test_persist_failure_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    store = _MemoryStore()
    store.fail_puts = True
    history = ResultHistoryStore(store)

    async def _run() -> None:
        task = await history.record_result_set(KEY, ["https://cdn/a.png"])
        assert task is not None
        await task
        assert await history.resolve_last(KEY, 0) == ["https://cdn/a.png"]

    with caplog.at_level(logging.ERROR, logger="toolrun.history"):
        asyncio.run(_run())

    assert "History persistence failed" in caplog.text


def test_clear_removes_memory_and_snapshot() -> None:
    store = _MemoryStore()
    history = ResultHistoryStore(store)

    async def _run() -> None:
        await history.record_result_set(KEY, ["https://cdn/a.png"])
        await history.drain()
        assert (NAMESPACE, KEY) in store.data

        assert await history.clear(KEY) is True
        assert await history.resolve_last(KEY, 0) is None
        assert await history.snapshot(KEY) == []
        assert await history.clear(KEY) is False

    asyncio.run(_run())
    assert (NAMESPACE, KEY) not in store.data


class _FlakyStore(_MemoryStore):
    def __init__(self, failing_gets: int) -> None:
        super().__init__()
        self.failing_gets = failing_gets

    async def get(self, namespace: str, key: str) -> bytes | None:
        if self.failing_gets:
            self.failing_gets -= 1
            raise OSError("database is locked")
        return await super().get(namespace, key)


def _seed_full_history(store: _MemoryStore) -> None:
    saved = [[f"https://cdn/r{i}.png"] for i in range(16)]
    store.data[(NAMESPACE, KEY)] = json.dumps(saved).encode("utf-8")


def test_transient_read_failure_keeps_saved_history() -> None:
    store = _FlakyStore(failing_gets=1)
    _seed_full_history(store)
    history = ResultHistoryStore(store)

    async def _run() -> None:
        await history.record_result_set(KEY, ["https://cdn/new.png"])
        await history.drain()
        assert await history.resolve_last(KEY, 0) == ["https://cdn/new.png"]
        assert await history.resolve_last(KEY, 1) == ["https://cdn/r15.png"]

    asyncio.run(_run())

    saved = json.loads(store.data[(NAMESPACE, KEY)])
    assert len(saved) == 16
    assert saved[0] == ["https://cdn/r1.png"]
    assert saved[-1] == ["https://cdn/new.png"]


def test_unreadable_store_is_never_overwritten(caplog: pytest.LogCaptureFixture) -> None:
    store = _FlakyStore(failing_gets=100)
    _seed_full_history(store)
    before = store.data[(NAMESPACE, KEY)]
    history = ResultHistoryStore(store)

    async def _run() -> None:
        await history.record_result_set(KEY, ["https://cdn/new.png"])
        await history.drain()
        assert await history.resolve_last(KEY, 0) == ["https://cdn/new.png"]

    with caplog.at_level(logging.WARNING, logger="toolrun.history"):
        asyncio.run(_run())

    assert store.data[(NAMESPACE, KEY)] == before
    assert store.puts == 0
    assert "Skipping history write" in caplog.text
