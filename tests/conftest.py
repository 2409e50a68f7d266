"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from bimcontext.models import Chunk, ChunkMetadata, Entity
from bimcontext.storage.connection import Database
from bimcontext.storage.migrations import run_migrations


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with migrations applied, closed after test."""
    db = Database(tmp_path / ".bimcontext.db")
    conn = db.connect()
    run_migrations(conn)
    yield conn
    conn.close()


@pytest.fixture
def make_entity():
    """Factory: make_entity(id, type="IFCWALL", name=None, **properties)."""

    def _make(express_id: int, type: str = "IFCWALL", name: str | None = None, **properties) -> Entity:
        return Entity(express_id=express_id, type=type, name=name, properties=properties)

    return _make


@pytest.fixture
def make_chunk():
    """Factory for stored-looking chunks with explicit metadata."""

    def _make(
        id: str,
        content: str = "IFCWALL (ID: 1)\nName: Wall",
        kind: str = "element-type",
        project_id: str = "p1",
        created_at: float | None = None,
        **metadata,
    ) -> Chunk:
        return Chunk.create(
            id=id,
            project_id=project_id,
            kind=kind,
            content=content,
            summary=f"summary of {id}",
            metadata=ChunkMetadata(**metadata),
            created_at=created_at,
        )

    return _make
