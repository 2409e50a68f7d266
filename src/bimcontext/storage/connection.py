"""SQLite connection setup for the chunk store."""

from __future__ import annotations

import sqlite3
from pathlib import Path

MEMORY = ":memory:"

# Applied to every new connection, in order.
_PRAGMAS: tuple[str, ...] = (
    "PRAGMA foreign_keys = ON",
    "PRAGMA journal_mode = WAL",
    "PRAGMA busy_timeout = 5000",
)


class Database:
    """Location of the single-file store shared by all projects.

    Args:
        db_path: Database file; missing parent directories are created on
            connect. ``":memory:"`` opens a private in-memory database.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = db_path if db_path == MEMORY else Path(db_path)

    def connect(self) -> sqlite3.Connection:
        """Return a new connection with Row factory and store pragmas applied."""
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        for pragma in _PRAGMAS:
            conn.execute(pragma)
        return conn
