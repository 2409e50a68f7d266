"""Exception hierarchy for bimcontext.

Per-entity data defects never surface here: they are skipped where they
occur. These types cover failures a caller must be able to tell apart.
"""

from __future__ import annotations


class BimContextError(Exception):
    """Base class for all bimcontext errors."""


class ChunkingError(BimContextError):
    """A whole-model chunking run failed (message prefix: ``Chunking failed:``)."""


class StorageError(BimContextError):
    """The persistence layer could not complete an operation."""


class CorruptedDataError(StorageError):
    """A stored manifest, chunk or index could not be decoded."""


class ProjectExistsError(StorageError):
    """create_project() was called for a project that already exists."""

    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project already exists: {project_id}")
        self.project_id = project_id


class ProjectNotFoundError(BimContextError):
    """No manifest / chunk set exists for the requested project."""

    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id
