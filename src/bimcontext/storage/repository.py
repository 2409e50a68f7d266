"""Repository for every chunk-store database operation.

Single synchronous interface for projects, manifests, chunks and the
separately persisted indices. Payload columns hold JSON; rows that no
longer decode raise :class:`CorruptedDataError`.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable, Sequence
from typing import Any

from bimcontext.exceptions import CorruptedDataError
from bimcontext.models import Chunk, ProjectManifest

# Stay well under SQLite's host-parameter limit.
_ID_BATCH = 500


class Repository:
    """Data access layer over an open, migrated sqlite3.Connection.

    The connection is owned by the caller and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def add_project(self, project_id: str, name: str = "") -> None:
        """Insert a project row. Raises sqlite3.IntegrityError if it exists."""
        self._conn.execute(
            "INSERT INTO projects (id, name) VALUES (?, ?)", (project_id, name)
        )
        self._conn.commit()

    def project_exists(self, project_id: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM projects WHERE id = ?", (project_id,)
        ).fetchone()
        return row is not None

    def list_projects(self) -> list[tuple[str, str]]:
        """Return [(id, name), ...] ordered by creation time."""
        rows = self._conn.execute(
            "SELECT id, name FROM projects ORDER BY created_at, id"
        ).fetchall()
        return [(r["id"], r["name"]) for r in rows]

    def delete_project(self, project_id: str) -> None:
        """Delete a project; manifests, chunks and indices cascade."""
        self._conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        self._conn.commit()

    # ------------------------------------------------------------------
    # Manifests
    # ------------------------------------------------------------------

    def save_manifest(self, manifest: ProjectManifest) -> None:
        """Upsert the manifest for its project. Last write wins."""
        self._conn.execute(
            """
            INSERT INTO manifests (project_id, payload)
            VALUES (?, ?)
            ON CONFLICT(project_id) DO UPDATE SET
                payload = excluded.payload,
                updated_at = datetime('now')
            """,
            (manifest.project_id, json.dumps(manifest.to_dict())),
        )
        self._conn.commit()

    def get_manifest(self, project_id: str) -> ProjectManifest | None:
        row = self._conn.execute(
            "SELECT payload FROM manifests WHERE project_id = ?", (project_id,)
        ).fetchone()
        if row is None:
            return None
        data = _decode(row["payload"], f"manifest {project_id}")
        if not isinstance(data, dict):
            raise CorruptedDataError(f"Malformed stored manifest {project_id}: not an object")
        try:
            return ProjectManifest.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise CorruptedDataError(f"Malformed stored manifest {project_id}: {exc}") from exc

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def upsert_chunks(self, chunks: Iterable[Chunk]) -> int:
        """Insert or replace chunks in one transaction. Returns the row count."""
        rows = [
            (c.project_id, c.id, c.kind, c.token_count, json.dumps(c.to_dict()))
            for c in chunks
        ]
        self._conn.executemany(
            """
            INSERT INTO chunks (project_id, id, kind, token_count, payload)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(project_id, id) DO UPDATE SET
                kind = excluded.kind,
                token_count = excluded.token_count,
                payload = excluded.payload
            """,
            rows,
        )
        self._conn.commit()
        return len(rows)

    def get_chunk(self, project_id: str, chunk_id: str) -> Chunk | None:
        row = self._conn.execute(
            "SELECT id, payload FROM chunks WHERE project_id = ? AND id = ?",
            (project_id, chunk_id),
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def get_chunks(self, project_id: str, chunk_ids: Sequence[str]) -> list[Chunk]:
        """Return the chunks for *chunk_ids* in request order; missing ids are skipped."""
        found: dict[str, Chunk] = {}
        for start in range(0, len(chunk_ids), _ID_BATCH):
            batch = list(chunk_ids[start:start + _ID_BATCH])
            placeholders = ",".join("?" * len(batch))
            rows = self._conn.execute(
                f"SELECT id, payload FROM chunks WHERE project_id = ? AND id IN ({placeholders})",
                (project_id, *batch),
            ).fetchall()
            for row in rows:
                found[row["id"]] = _row_to_chunk(row)
        return [found[i] for i in chunk_ids if i in found]

    def list_chunks(self, project_id: str) -> list[Chunk]:
        """Return every chunk of a project in insertion order."""
        rows = self._conn.execute(
            "SELECT id, payload FROM chunks WHERE project_id = ? ORDER BY rowid",
            (project_id,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def chunk_exists(self, project_id: str, chunk_id: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM chunks WHERE project_id = ? AND id = ?", (project_id, chunk_id)
        ).fetchone()
        return row is not None

    def delete_chunks(self, project_id: str, chunk_ids: Sequence[str]) -> int:
        """Delete the given chunks. Returns the number of rows removed."""
        deleted = 0
        for start in range(0, len(chunk_ids), _ID_BATCH):
            batch = list(chunk_ids[start:start + _ID_BATCH])
            placeholders = ",".join("?" * len(batch))
            cur = self._conn.execute(
                f"DELETE FROM chunks WHERE project_id = ? AND id IN ({placeholders})",
                (project_id, *batch),
            )
            deleted += cur.rowcount
        self._conn.commit()
        return deleted

    # ------------------------------------------------------------------
    # Indices
    # ------------------------------------------------------------------

    def save_index(self, project_id: str, name: str, data: Any) -> None:
        """Upsert one named index as JSON."""
        self._conn.execute(
            """
            INSERT INTO indices (project_id, name, payload)
            VALUES (?, ?, ?)
            ON CONFLICT(project_id, name) DO UPDATE SET payload = excluded.payload
            """,
            (project_id, name, json.dumps(data)),
        )
        self._conn.commit()

    def get_index(self, project_id: str, name: str) -> Any | None:
        row = self._conn.execute(
            "SELECT payload FROM indices WHERE project_id = ? AND name = ?",
            (project_id, name),
        ).fetchone()
        if row is None:
            return None
        return _decode(row["payload"], f"index {name} of {project_id}")

    # ------------------------------------------------------------------
    # Size
    # ------------------------------------------------------------------

    def project_size(self, project_id: str) -> int:
        """Approximate stored bytes: summed payload lengths across tables."""
        total = 0
        for table in ("manifests", "chunks", "indices"):
            row = self._conn.execute(
                f"SELECT COALESCE(SUM(LENGTH(payload)), 0) FROM {table} WHERE project_id = ?",  # noqa: S608
                (project_id,),
            ).fetchone()
            total += row[0]
        return total


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _decode(payload: str, what: str) -> Any:
    try:
        return json.loads(payload)
    except json.JSONDecodeError as exc:
        raise CorruptedDataError(f"Cannot decode stored {what}: {exc}") from exc


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    data = _decode(row["payload"], f"chunk {row['id']}")
    if not isinstance(data, dict):
        raise CorruptedDataError(f"Malformed stored chunk {row['id']}: not an object")
    try:
        return Chunk.from_dict(data)
    except (KeyError, TypeError, ValueError) as exc:
        raise CorruptedDataError(f"Malformed stored chunk {row['id']}: {exc}") from exc
