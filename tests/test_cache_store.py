import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from cloak.fetch.cache import CacheEntry, DiskCacheStore, MemoryCacheStore

CAPTURED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _entry(body: bytes = b"<html></html>") -> CacheEntry:
    return CacheEntry(body=body, headers={"content-type": "text/html"}, captured_at=CAPTURED)


def test_entry_freshness_boundary():
    entry = _entry()
    window = timedelta(minutes=5)
    assert entry.is_fresh(CAPTURED + timedelta(minutes=4, seconds=59), window)
    assert not entry.is_fresh(CAPTURED + window, window)
    assert not entry.is_fresh(CAPTURED + timedelta(minutes=5, seconds=1), window)


def test_memory_store_overwrites_and_evicts_lru():
    async def _run():
        store = MemoryCacheStore(max_entries=2)
        await store.store("a", _entry(b"a1"))
        await store.store("b", _entry(b"b"))
        await store.store("a", _entry(b"a2"))
        assert (await store.lookup("a")).body == b"a2"
        await store.store("c", _entry(b"c"))
        assert await store.lookup("b") is None
        assert len(store) == 2

    asyncio.run(_run())


def test_memory_store_rejects_zero_capacity():
    with pytest.raises(ValueError):
        MemoryCacheStore(max_entries=0)


def test_disk_store_survives_reopen(tmp_path):
    path = tmp_path / "cache" / "preview.json"

    async def _run():
        store = DiskCacheStore(path)
        await store.store("key", CacheEntry(body=b"\x00\xffbytes", headers={"date": "x"}, captured_at=CAPTURED))
        reopened = DiskCacheStore(path)
        entry = await reopened.lookup("key")
        assert entry is not None
        assert entry.body == b"\x00\xffbytes"
        assert entry.headers == {"date": "x"}
        assert entry.captured_at == CAPTURED

    asyncio.run(_run())


def test_disk_store_ignores_corrupt_index(tmp_path):
    path = tmp_path / "preview.json"
    path.write_text("{not json", encoding="utf-8")

    async def _run():
        store = DiskCacheStore(path)
        assert await store.lookup("anything") is None

    asyncio.run(_run())


def test_disk_store_ignores_other_schema_versions(tmp_path):
    path = tmp_path / "preview.json"
    path.write_text('{"version": 99, "data": {"k": {"body": "", "headers": {}, "captured_at": "2024-01-01T00:00:00+00:00"}}}', encoding="utf-8")

    async def _run():
        assert await DiskCacheStore(path).lookup("k") is None

    asyncio.run(_run())


def test_disk_store_concurrent_writes_leave_complete_index(tmp_path):
    path = tmp_path / "preview.json"

    async def _run():
        store = DiskCacheStore(path)
        await asyncio.gather(*(store.store(f"k{i}", _entry(f"body{i}".encode())) for i in range(20)))
        reopened = DiskCacheStore(path)
        for i in range(20):
            assert (await reopened.lookup(f"k{i}")).body == f"body{i}".encode()

    asyncio.run(_run())
    assert [p.name for p in tmp_path.iterdir()] == ["preview.json"]


@pytest.mark.parametrize("data", ['[]', '"oops"', '{"k": "not-an-entry"}', '{"k": []}'])
def test_disk_store_ignores_malformed_data_section(tmp_path, data):
    path = tmp_path / "preview.json"
    path.write_text('{"version": 1, "data": ' + data + '}', encoding="utf-8")

    async def _run():
        store = DiskCacheStore(path)
        assert await store.lookup("k") is None
        assert len(store) == 0

    asyncio.run(_run())
