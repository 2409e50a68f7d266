"""Dict-backed ChunkStore for tests and short-lived runs.

Records are kept in their serialised form so callers never share mutable
state with the store, mirroring what a round trip through SQLite gives.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from bimcontext.exceptions import ProjectExistsError, StorageError
from bimcontext.models import Chunk, ProjectManifest
from bimcontext.storage.base import ChunkStore


@dataclass
class _Project:
    name: str
    manifest: str | None = None
    chunks: dict[str, str] = field(default_factory=dict)
    indices: dict[str, str] = field(default_factory=dict)


class InMemoryChunkStore(ChunkStore):
    def __init__(self) -> None:
        self._projects: dict[str, _Project] = {}

    def _get(self, project_id: str) -> _Project:
        project = self._projects.get(project_id)
        if project is None:
            raise StorageError(f"Unknown project: {project_id}")
        return project

    # -- projects ---------------------------------------------------------

    async def create_project(self, project_id: str, name: str = "") -> None:
        if project_id in self._projects:
            raise ProjectExistsError(project_id)
        self._projects[project_id] = _Project(name=name)

    async def project_exists(self, project_id: str) -> bool:
        return project_id in self._projects

    async def list_projects(self) -> list[tuple[str, str]]:
        return [(pid, p.name) for pid, p in self._projects.items()]

    async def delete_project(self, project_id: str) -> None:
        self._projects.pop(project_id, None)

    # -- manifests --------------------------------------------------------

    async def load_manifest(self, project_id: str) -> ProjectManifest | None:
        project = self._projects.get(project_id)
        if project is None or project.manifest is None:
            return None
        return ProjectManifest.from_dict(json.loads(project.manifest))

    async def save_manifest(self, manifest: ProjectManifest) -> None:
        self._get(manifest.project_id).manifest = json.dumps(manifest.to_dict())

    # -- chunks -----------------------------------------------------------

    async def save_chunks(self, project_id: str, chunks: Sequence[Chunk]) -> None:
        project = self._get(project_id)
        for chunk in chunks:
            if chunk.project_id != project_id:
                raise StorageError(f"Chunk {chunk.id} does not belong to project {project_id}")
            project.chunks[chunk.id] = json.dumps(chunk.to_dict())

    async def load_chunk(self, project_id: str, chunk_id: str) -> Chunk | None:
        project = self._projects.get(project_id)
        if project is None or chunk_id not in project.chunks:
            return None
        return Chunk.from_dict(json.loads(project.chunks[chunk_id]))

    async def load_chunks(self, project_id: str, chunk_ids: Sequence[str]) -> list[Chunk]:
        project = self._projects.get(project_id)
        if project is None:
            return []
        return [Chunk.from_dict(json.loads(project.chunks[i])) for i in chunk_ids if i in project.chunks]

    async def load_all_chunks(self, project_id: str) -> list[Chunk]:
        project = self._projects.get(project_id)
        if project is None:
            return []
        return [Chunk.from_dict(json.loads(data)) for data in project.chunks.values()]

    async def delete_chunks(self, project_id: str, chunk_ids: Sequence[str]) -> int:
        project = self._projects.get(project_id)
        if project is None:
            return 0
        return sum(1 for i in chunk_ids if project.chunks.pop(i, None) is not None)

    async def chunk_exists(self, project_id: str, chunk_id: str) -> bool:
        project = self._projects.get(project_id)
        return project is not None and chunk_id in project.chunks

    # -- indices ----------------------------------------------------------

    async def load_index(self, project_id: str, name: str) -> Any:
        project = self._projects.get(project_id)
        if project is None or name not in project.indices:
            return {}
        return json.loads(project.indices[name])

    async def save_index(self, project_id: str, name: str, data: Any) -> None:
        self._get(project_id).indices[name] = json.dumps(data)

    # -- size -------------------------------------------------------------

    async def project_size(self, project_id: str) -> int:
        project = self._projects.get(project_id)
        if project is None:
            return 0
        size = sum(len(c) for c in project.chunks.values())
        size += sum(len(s) for s in project.indices.values())
        if project.manifest is not None:
            size += len(project.manifest)
        return size
