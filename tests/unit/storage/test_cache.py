"""Tests for the LRU/TTL cache and the caching store wrapper."""

from __future__ import annotations

import pytest

from bimcontext.models import ProjectManifest
from bimcontext.storage.cache import CachedChunkStore, CacheKey, LRUCache
from bimcontext.storage.memory import InMemoryChunkStore


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class _CountingStore(InMemoryChunkStore):
    def __init__(self) -> None:
        super().__init__()
        self.manifest_loads = 0
        self.chunk_loads: list[list[str]] = []

    async def load_manifest(self, project_id):
        self.manifest_loads += 1
        return await super().load_manifest(project_id)

    async def load_chunks(self, project_id, chunk_ids):
        self.chunk_loads.append(list(chunk_ids))
        return await super().load_chunks(project_id, chunk_ids)


# ------------------------------------------------------------------
# LRUCache
# ------------------------------------------------------------------

def test_get_set_and_stats():
    cache = LRUCache(capacity=2)
    cache.set("a", 1)
    assert cache.get("a") == 1
    assert cache.get("b") is None
    stats = cache.stats()
    assert (stats.hits, stats.misses, stats.size) == (1, 1, 1)
    assert stats.hit_rate == 0.5


def test_least_recently_used_is_evicted():
    cache = LRUCache(capacity=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")
    cache.set("c", 3)
    assert "b" not in cache
    assert "a" in cache and "c" in cache
    assert cache.stats().evictions == 1


def test_expired_entries_count_as_misses():
    clock = _Clock()
    cache = LRUCache(capacity=5, ttl_seconds=10, clock=clock)
    cache.set("a", 1)
    clock.now = 10
    assert cache.get("a") == 1
    clock.now = 10.5
    assert cache.get("a", "gone") == "gone"
    assert len(cache) == 0
    assert cache.stats().misses == 1


def test_invalidate_project_matches_key_field():
    cache = LRUCache()
    cache.set(CacheKey("chunk", "p1", "c1"), 1)
    cache.set(CacheKey("manifest", "p1"), 2)
    cache.set(CacheKey("chunk", "p10", "c1"), 3)
    assert cache.invalidate_project("p1") == 2
    assert CacheKey("chunk", "p10", "c1") in cache


@pytest.mark.parametrize("kwargs", [{"capacity": 0}, {"ttl_seconds": 0}])
def test_invalid_bounds(kwargs):
    with pytest.raises(ValueError):
        LRUCache(**kwargs)


def test_hit_rate_without_lookups():
    assert LRUCache().stats().hit_rate == 0.0


# ------------------------------------------------------------------
# CachedChunkStore
# ------------------------------------------------------------------

@pytest.fixture
def inner():
    return _CountingStore()


@pytest.mark.asyncio
async def test_manifest_read_through_and_invalidated_on_save(inner):
    store = CachedChunkStore(inner)
    await store.create_project("p1")
    await store.save_manifest(ProjectManifest(project_id="p1", name="One"))

    await store.load_manifest("p1")
    await store.load_manifest("p1")
    assert inner.manifest_loads == 1

    await store.save_manifest(ProjectManifest(project_id="p1", name="Two"))
    assert (await store.load_manifest("p1")).name == "Two"
    assert inner.manifest_loads == 2


@pytest.mark.asyncio
async def test_load_chunks_fetches_only_missing(inner, make_chunk):
    await inner.create_project("p1")
    await inner.save_chunks("p1", [make_chunk("c1"), make_chunk("c2", content="two")])
    store = CachedChunkStore(inner)

    await store.load_chunks("p1", ["c1"])
    loaded = await store.load_chunks("p1", ["c2", "c1"])

    assert [c.id for c in loaded] == ["c2", "c1"]
    assert inner.chunk_loads == [["c1"], ["c2"]]


@pytest.mark.asyncio
async def test_delete_project_drops_cached_entries(inner, make_chunk):
    store = CachedChunkStore(inner)
    await store.create_project("p1")
    await store.save_chunk(make_chunk("c1"))
    assert await store.chunk_exists("p1", "c1")

    await store.delete_project("p1")

    assert not await store.chunk_exists("p1", "c1")
    assert await store.load_chunk("p1", "c1") is None


@pytest.mark.asyncio
async def test_deleted_chunks_leave_cache(inner, make_chunk):
    store = CachedChunkStore(inner)
    await store.create_project("p1")
    await store.save_chunk(make_chunk("c1"))
    assert await store.delete_chunks("p1", ["c1"]) == 1
    assert await store.load_chunks("p1", ["c1"]) == []
