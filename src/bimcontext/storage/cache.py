"""Bounded LRU + TTL cache and a caching ChunkStore wrapper.

Keys are structured tuples (:class:`CacheKey`), so no component can
collide with a delimiter. Eviction only costs performance; every miss
falls through to the wrapped store.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Hashable, Sequence
from dataclasses import dataclass
from typing import Any, NamedTuple

from bimcontext.models import Chunk, ProjectManifest
from bimcontext.storage.base import ChunkStore

logger = logging.getLogger(__name__)


class CacheKey(NamedTuple):
    kind: str  # manifest | chunk | index
    project_id: str
    item_id: str = ""


@dataclass
class CacheStats:
    hits: int
    misses: int
    evictions: int
    size: int
    capacity: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class LRUCache:
    """Capacity- and time-bounded cache. Not thread-safe.

    Expired entries are dropped when touched and counted as misses; when
    full, the least recently used entry is evicted.
    """

    def __init__(
        self,
        capacity: int = 100,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[Hashable, tuple[float, Any]] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._clock() - entry[0] <= self.ttl_seconds

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return default

        stored_at, value = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            self._misses += 1
            return default

        self._entries.move_to_end(key)
        self._hits += 1
        return value

    def set(self, key: Hashable, value: Any) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
        self._entries[key] = (self._clock(), value)

        while len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug("Evicted cache entry %r", evicted)

    def delete(self, key: Hashable) -> bool:
        return self._entries.pop(key, None) is not None

    def invalidate_project(self, project_id: str) -> int:
        """Drop every key whose ``project_id`` field equals *project_id*."""
        doomed = [k for k in self._entries if getattr(k, "project_id", None) == project_id]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            size=len(self._entries),
            capacity=self.capacity,
        )


_MISSING = object()


class CachedChunkStore(ChunkStore):
    """Read-through cache in front of another ChunkStore.

    Reads of manifests, chunks and indices are cached; writes go straight
    to the wrapped store and refresh or drop the affected keys.
    """

    def __init__(self, store: ChunkStore, capacity: int = 100, ttl_seconds: float = 300.0) -> None:
        self.inner = store
        self.cache = LRUCache(capacity, ttl_seconds)

    def stats(self) -> CacheStats:
        return self.cache.stats()

    # -- projects ---------------------------------------------------------

    async def create_project(self, project_id: str, name: str = "") -> None:
        await self.inner.create_project(project_id, name)

    async def project_exists(self, project_id: str) -> bool:
        return await self.inner.project_exists(project_id)

    async def list_projects(self) -> list[tuple[str, str]]:
        return await self.inner.list_projects()

    async def delete_project(self, project_id: str) -> None:
        await self.inner.delete_project(project_id)
        self.cache.invalidate_project(project_id)

    # -- manifests --------------------------------------------------------

    async def load_manifest(self, project_id: str) -> ProjectManifest | None:
        key = CacheKey("manifest", project_id)
        cached = self.cache.get(key, _MISSING)
        if cached is not _MISSING:
            return cached
        manifest = await self.inner.load_manifest(project_id)
        if manifest is not None:
            self.cache.set(key, manifest)
        return manifest

    async def save_manifest(self, manifest: ProjectManifest) -> None:
        await self.inner.save_manifest(manifest)
        self.cache.delete(CacheKey("manifest", manifest.project_id))

    # -- chunks -----------------------------------------------------------

    async def save_chunks(self, project_id: str, chunks: Sequence[Chunk]) -> None:
        await self.inner.save_chunks(project_id, chunks)
        for chunk in chunks:
            self.cache.set(CacheKey("chunk", project_id, chunk.id), chunk)

    async def load_chunk(self, project_id: str, chunk_id: str) -> Chunk | None:
        key = CacheKey("chunk", project_id, chunk_id)
        cached = self.cache.get(key, _MISSING)
        if cached is not _MISSING:
            return cached
        chunk = await self.inner.load_chunk(project_id, chunk_id)
        if chunk is not None:
            self.cache.set(key, chunk)
        return chunk

    async def load_chunks(self, project_id: str, chunk_ids: Sequence[str]) -> list[Chunk]:
        found: dict[str, Chunk] = {}
        missing: list[str] = []
        for chunk_id in chunk_ids:
            cached = self.cache.get(CacheKey("chunk", project_id, chunk_id), _MISSING)
            if cached is _MISSING:
                missing.append(chunk_id)
            else:
                found[chunk_id] = cached

        if missing:
            for chunk in await self.inner.load_chunks(project_id, missing):
                found[chunk.id] = chunk
                self.cache.set(CacheKey("chunk", project_id, chunk.id), chunk)

        return [found[i] for i in chunk_ids if i in found]

    async def load_all_chunks(self, project_id: str) -> list[Chunk]:
        return await self.inner.load_all_chunks(project_id)

    async def delete_chunks(self, project_id: str, chunk_ids: Sequence[str]) -> int:
        deleted = await self.inner.delete_chunks(project_id, chunk_ids)
        for chunk_id in chunk_ids:
            self.cache.delete(CacheKey("chunk", project_id, chunk_id))
        return deleted

    async def chunk_exists(self, project_id: str, chunk_id: str) -> bool:
        if CacheKey("chunk", project_id, chunk_id) in self.cache:
            return True
        return await self.inner.chunk_exists(project_id, chunk_id)

    # -- indices ----------------------------------------------------------

    async def load_index(self, project_id: str, name: str) -> Any:
        key = CacheKey("index", project_id, name)
        cached = self.cache.get(key, _MISSING)
        if cached is not _MISSING:
            return cached
        data = await self.inner.load_index(project_id, name)
        if data:
            self.cache.set(key, data)
        return data

    async def save_index(self, project_id: str, name: str, data: Any) -> None:
        await self.inner.save_index(project_id, name, data)
        self.cache.delete(CacheKey("index", project_id, name))

    # -- size -------------------------------------------------------------

    async def project_size(self, project_id: str) -> int:
        return await self.inner.project_size(project_id)
