"""Persistence for chunks, manifests and indices."""

from bimcontext.storage.base import ChunkStore
from bimcontext.storage.cache import CachedChunkStore, CacheKey, CacheStats, LRUCache
from bimcontext.storage.connection import Database
from bimcontext.storage.memory import InMemoryChunkStore
from bimcontext.storage.migrations import MIGRATIONS, run_migrations
from bimcontext.storage.repository import Repository
from bimcontext.storage.sqlite_store import SqliteChunkStore

__all__ = [
    "CacheKey",
    "CacheStats",
    "CachedChunkStore",
    "ChunkStore",
    "Database",
    "InMemoryChunkStore",
    "LRUCache",
    "MIGRATIONS",
    "Repository",
    "SqliteChunkStore",
    "run_migrations",
]
