"""Tests for bimcontext validate and rebuild."""

from __future__ import annotations

import asyncio
from pathlib import Path

from typer.testing import CliRunner

from bimcontext.cli.main import app
from bimcontext.storage.sqlite_store import SqliteChunkStore

runner = CliRunner()


def _drop_first_chunk(db_path: Path) -> str:
    store = SqliteChunkStore.open(db_path)
    try:

        async def _drop() -> str:
            manifest = await store.load_manifest("tower")
            chunk_id = manifest.chunk_ids()[0]
            await store.delete_chunks("tower", [chunk_id])
            return chunk_id

        return asyncio.run(_drop())
    finally:
        store.close()


# ---------------------------------------------------------------------------
# validate
# ---------------------------------------------------------------------------


def test_validate_fresh_project(stored_project: Path) -> None:
    result = runner.invoke(app, ["validate", "tower", "--db", str(stored_project)])
    assert result.exit_code == 0, result.output
    assert "is valid" in result.output


def test_validate_reports_missing_chunk(stored_project: Path) -> None:
    chunk_id = _drop_first_chunk(stored_project)
    result = runner.invoke(app, ["validate", "tower", "--db", str(stored_project)])
    assert result.exit_code == 1
    assert f"Chunk file missing: {chunk_id}" in result.output
    assert "bimcontext rebuild tower" in result.output


def test_validate_unknown_project(stored_project: Path) -> None:
    result = runner.invoke(app, ["validate", "ghost", "--db", str(stored_project)])
    assert result.exit_code == 1
    assert "Project not found: ghost" in result.output


def test_validate_missing_db(tmp_path: Path) -> None:
    result = runner.invoke(app, ["validate", "tower", "--db", str(tmp_path / "none.db")])
    assert result.exit_code == 1
    assert "No database found" in result.output


# ---------------------------------------------------------------------------
# rebuild
# ---------------------------------------------------------------------------


def test_rebuild_repairs_manifest(stored_project: Path) -> None:
    _drop_first_chunk(stored_project)

    result = runner.invoke(app, ["rebuild", "tower", "--db", str(stored_project)])
    assert result.exit_code == 0, result.output
    assert "Rebuilt manifest for" in result.output

    again = runner.invoke(app, ["validate", "tower", "--db", str(stored_project)])
    assert again.exit_code == 0, again.output


def test_rebuild_unknown_project(stored_project: Path) -> None:
    result = runner.invoke(app, ["rebuild", "ghost", "--db", str(stored_project)])
    assert result.exit_code == 1
    assert "Project 'ghost' not found" in result.output


def test_rebuild_missing_db(tmp_path: Path) -> None:
    result = runner.invoke(app, ["rebuild", "tower", "--db", str(tmp_path / "none.db")])
    assert result.exit_code == 1
    assert "No database found" in result.output
