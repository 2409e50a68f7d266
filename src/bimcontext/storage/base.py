"""Asynchronous persistence contract consumed by chunking and selection."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from bimcontext.models import Chunk, ProjectManifest


class ChunkStore(ABC):
    """Storage for per-project manifests, chunks and named indices.

    All operations are coroutines. Saving chunks, manifests or indices for
    a project that was never created raises :class:`StorageError`. Manifest
    saves are last-write-wins.
    """

    # -- projects ---------------------------------------------------------

    @abstractmethod
    async def create_project(self, project_id: str, name: str = "") -> None:
        """Register a project. Raises ProjectExistsError if it already exists."""

    @abstractmethod
    async def project_exists(self, project_id: str) -> bool: ...

    @abstractmethod
    async def list_projects(self) -> list[tuple[str, str]]:
        """Return ``(project_id, name)`` pairs."""

    @abstractmethod
    async def delete_project(self, project_id: str) -> None:
        """Remove a project and everything stored under it. No-op if missing."""

    # -- manifests --------------------------------------------------------

    @abstractmethod
    async def load_manifest(self, project_id: str) -> ProjectManifest | None: ...

    @abstractmethod
    async def save_manifest(self, manifest: ProjectManifest) -> None: ...

    # -- chunks -----------------------------------------------------------

    async def save_chunk(self, chunk: Chunk) -> None:
        await self.save_chunks(chunk.project_id, [chunk])

    @abstractmethod
    async def save_chunks(self, project_id: str, chunks: Sequence[Chunk]) -> None: ...

    @abstractmethod
    async def load_chunk(self, project_id: str, chunk_id: str) -> Chunk | None: ...

    @abstractmethod
    async def load_chunks(self, project_id: str, chunk_ids: Sequence[str]) -> list[Chunk]:
        """Load chunks in request order, skipping ids that do not exist."""

    @abstractmethod
    async def load_all_chunks(self, project_id: str) -> list[Chunk]: ...

    @abstractmethod
    async def delete_chunks(self, project_id: str, chunk_ids: Sequence[str]) -> int:
        """Delete chunks; returns how many existed."""

    @abstractmethod
    async def chunk_exists(self, project_id: str, chunk_id: str) -> bool: ...

    # -- indices ----------------------------------------------------------

    @abstractmethod
    async def load_index(self, project_id: str, name: str) -> Any:
        """Return the stored JSON data for index *name*, or ``{}`` if absent."""

    @abstractmethod
    async def save_index(self, project_id: str, name: str, data: Any) -> None: ...

    # -- size -------------------------------------------------------------

    @abstractmethod
    async def project_size(self, project_id: str) -> int:
        """Approximate number of stored bytes for the project."""
