"""ChunkStore backed by the SQLite repository."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from bimcontext.exceptions import ProjectExistsError, StorageError
from bimcontext.models import Chunk, ProjectManifest
from bimcontext.storage.base import ChunkStore
from bimcontext.storage.connection import Database
from bimcontext.storage.migrations import run_migrations
from bimcontext.storage.repository import Repository

logger = logging.getLogger(__name__)


class SqliteChunkStore(ChunkStore):
    """Single-file store. Calls run on the event-loop thread; SQLite work is
    short and local, so no executor hop is made.

    Use :meth:`open` for a file path, or pass an already-migrated connection
    (tests do this with the ``tmp_db`` fixture).
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._repo = Repository(conn)

    @classmethod
    def open(cls, db_path: Path | str) -> SqliteChunkStore:
        """Connect to *db_path*, apply pending migrations and return a store."""
        path = Path(db_path)
        conn = Database(path).connect()
        run_migrations(conn)
        logger.debug("Opened chunk store at %s", path)
        return cls(conn)

    def close(self) -> None:
        self._conn.close()

    def _require_project(self, project_id: str) -> None:
        if not self._repo.project_exists(project_id):
            raise StorageError(f"Unknown project: {project_id}")

    # -- projects ---------------------------------------------------------

    async def create_project(self, project_id: str, name: str = "") -> None:
        if self._repo.project_exists(project_id):
            raise ProjectExistsError(project_id)
        self._repo.add_project(project_id, name)

    async def project_exists(self, project_id: str) -> bool:
        return self._repo.project_exists(project_id)

    async def list_projects(self) -> list[tuple[str, str]]:
        return self._repo.list_projects()

    async def delete_project(self, project_id: str) -> None:
        self._repo.delete_project(project_id)

    # -- manifests --------------------------------------------------------

    async def load_manifest(self, project_id: str) -> ProjectManifest | None:
        return self._repo.get_manifest(project_id)

    async def save_manifest(self, manifest: ProjectManifest) -> None:
        self._require_project(manifest.project_id)
        self._repo.save_manifest(manifest)

    # -- chunks -----------------------------------------------------------

    async def save_chunks(self, project_id: str, chunks: Sequence[Chunk]) -> None:
        self._require_project(project_id)
        foreign = [c.id for c in chunks if c.project_id != project_id]
        if foreign:
            raise StorageError(f"Chunks {foreign[:3]} do not belong to project {project_id}")
        self._repo.upsert_chunks(chunks)

    async def load_chunk(self, project_id: str, chunk_id: str) -> Chunk | None:
        return self._repo.get_chunk(project_id, chunk_id)

    async def load_chunks(self, project_id: str, chunk_ids: Sequence[str]) -> list[Chunk]:
        return self._repo.get_chunks(project_id, chunk_ids)

    async def load_all_chunks(self, project_id: str) -> list[Chunk]:
        return self._repo.list_chunks(project_id)

    async def delete_chunks(self, project_id: str, chunk_ids: Sequence[str]) -> int:
        return self._repo.delete_chunks(project_id, chunk_ids)

    async def chunk_exists(self, project_id: str, chunk_id: str) -> bool:
        return self._repo.chunk_exists(project_id, chunk_id)

    # -- indices ----------------------------------------------------------

    async def load_index(self, project_id: str, name: str) -> Any:
        data = self._repo.get_index(project_id, name)
        return {} if data is None else data

    async def save_index(self, project_id: str, name: str, data: Any) -> None:
        self._require_project(project_id)
        self._repo.save_index(project_id, name, data)

    # -- size -------------------------------------------------------------

    async def project_size(self, project_id: str) -> int:
        return self._repo.project_size(project_id)
