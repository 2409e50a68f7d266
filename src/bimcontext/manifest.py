"""Project manifest: chunk summaries, totals and the five lookup indices.

Index construction is a pure function of the chunk list, so a manifest can
always be rebuilt from the stored chunks alone. ``ManifestManager`` adds
the storage-backed operations: incremental update, integrity validation,
rebuild and statistics.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from bimcontext.exceptions import CorruptedDataError, ProjectNotFoundError
from bimcontext.models import (
    INDEX_NAMES,
    Chunk,
    ChunkIndex,
    ChunkSummary,
    ProjectManifest,
    SpatialIndexEntry,
    index_from_json,
    index_to_json,
)
from bimcontext.storage.base import ChunkStore
from bimcontext.tokens import tokenize_words

logger = logging.getLogger(__name__)

MANIFEST_VERSION = "1.0.0"
TERM_FREQUENCY_LIMIT = 500
SUMMARY_KEYWORDS = 10


# ---------------------------------------------------------------------------
# Pure builders
# ---------------------------------------------------------------------------


def extract_keywords(chunk: Chunk) -> list[str]:
    """Entity types, system, ``floorN``/``levelN`` tags and up to 10 summary words."""
    meta = chunk.metadata
    keywords = [t.lower() for t in meta.entity_types]
    if meta.system:
        keywords.append(meta.system.lower())
    if meta.floor is not None:
        keywords.extend([f"floor{meta.floor}", f"level{meta.floor}"])
    words = [w for w in chunk.summary.lower().split() if len(w) > 3]
    keywords.extend(words[:SUMMARY_KEYWORDS])
    return list(dict.fromkeys(keywords))


def summarize_chunk(chunk: Chunk) -> ChunkSummary:
    return ChunkSummary(
        id=chunk.id,
        kind=chunk.kind,
        token_count=chunk.token_count,
        entity_count=chunk.metadata.entity_count,
        keywords=extract_keywords(chunk),
    )


def _index_ids(name: str, index: Any) -> Iterable[str]:
    """Chunk ids referenced by one decoded named index."""
    if name == "spatial":
        return [entry.chunk_id for entry in index]
    return [chunk_id for ids in index.values() for chunk_id in ids]


def build_index(chunks: Iterable[Chunk]) -> ChunkIndex:
    """Build all five indices in one pass over *chunks*."""
    index = ChunkIndex()
    for chunk in chunks:
        meta = chunk.metadata
        index.by_type.setdefault(chunk.kind, []).append(chunk.id)
        for entity_type in meta.entity_types:
            index.by_entity_type.setdefault(entity_type, []).append(chunk.id)
        if meta.floor is not None:
            index.by_floor.setdefault(meta.floor, []).append(chunk.id)
        if meta.system:
            index.by_system.setdefault(meta.system, []).append(chunk.id)
        if meta.bbox is not None:
            index.spatial.append(SpatialIndexEntry(chunk_id=chunk.id, bbox=meta.bbox, zone=meta.zone))
    return index


def term_frequency(chunks: Iterable[Chunk], limit: int = TERM_FREQUENCY_LIMIT) -> dict[str, int]:
    """Document frequency of content tokens, keeping the *limit* most common."""
    counts: Counter[str] = Counter()
    for chunk in chunks:
        counts.update(set(tokenize_words(chunk.content)))
    return dict(counts.most_common(limit))


def build_manifest(
    project_id: str,
    name: str,
    chunks: Sequence[Chunk],
    file_metadata: Mapping[str, Any] | None = None,
    *,
    created_at: float | None = None,
) -> ProjectManifest:
    """Create a manifest for *chunks*.

    Args:
        project_id: Owning project.
        name: Display name.
        chunks: The final chunk set.
        file_metadata: Optional ``file_name`` / ``file_size`` /
            ``processing_time_ms`` overrides.
        created_at: Creation time to keep (rebuilds); defaults to now.
    """
    now = time.time()
    metadata: dict[str, Any] = {
        "file_name": name,
        "file_size": 0,
        "processing_time_ms": 0,
        "version": MANIFEST_VERSION,
    }
    if file_metadata:
        metadata.update(file_metadata)
    metadata["term_frequency"] = term_frequency(chunks)

    return ProjectManifest(
        project_id=project_id,
        name=name,
        total_chunks=len(chunks),
        total_entities=sum(c.metadata.entity_count for c in chunks),
        total_tokens=sum(c.token_count for c in chunks),
        created_at=created_at if created_at is not None else now,
        updated_at=now,
        chunks=[summarize_chunk(c) for c in chunks],
        index=build_index(chunks),
        metadata=metadata,
    )


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


@dataclass
class ManifestStats:
    project_id: str
    name: str
    total_chunks: int
    total_entities: int
    total_tokens: int
    avg_tokens_per_chunk: float
    avg_entities_per_chunk: float
    chunks_by_kind: dict[str, int]
    index_sizes: dict[str, int]
    size_distribution: dict[str, int]
    storage_bytes: int
    created_at: float | None
    updated_at: float | None


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class ManifestManager:
    """Storage-backed manifest operations for one :class:`ChunkStore`."""

    def __init__(self, store: ChunkStore) -> None:
        self.store = store

    async def save(self, manifest: ProjectManifest) -> None:
        """Persist the manifest and each of its indices separately."""
        await self.store.save_manifest(manifest)
        await self.save_indices(manifest.project_id, manifest.index)

    async def save_indices(self, project_id: str, index: ChunkIndex) -> None:
        for name in INDEX_NAMES:
            await self.store.save_index(project_id, name, index_to_json(name, index.get(name)))

    async def load_index(self, project_id: str, names: Iterable[str] = INDEX_NAMES) -> dict[str, Any]:
        """Load the requested named indices, decoded (byFloor keys as ints)."""
        return {
            name: index_from_json(name, await self.store.load_index(project_id, name))
            for name in names
        }

    async def update(self, project_id: str, new_chunks: Sequence[Chunk]) -> ProjectManifest:
        """Persist *new_chunks* and fold them into the project's manifest.

        Summaries for re-saved ids are replaced. Totals are recomputed and
        the whole index is rebuilt from every stored chunk.

        Raises:
            ProjectNotFoundError: If the project has no manifest.
        """
        manifest = await self.store.load_manifest(project_id)
        if manifest is None:
            raise ProjectNotFoundError(project_id)

        await self.store.save_chunks(project_id, new_chunks)

        summaries = {s.id: s for s in manifest.chunks}
        for chunk in new_chunks:
            summaries[chunk.id] = summarize_chunk(chunk)

        all_chunks = await self.store.load_all_chunks(project_id)
        metadata = dict(manifest.metadata)
        metadata["term_frequency"] = term_frequency(all_chunks)

        updated = ProjectManifest(
            project_id=project_id,
            name=manifest.name,
            total_chunks=len(summaries),
            total_entities=sum(s.entity_count for s in summaries.values()),
            total_tokens=sum(s.token_count for s in summaries.values()),
            created_at=manifest.created_at,
            updated_at=time.time(),
            chunks=list(summaries.values()),
            index=build_index(all_chunks),
            metadata=metadata,
        )
        await self.save(updated)
        logger.info("Added %d chunks to %s", len(new_chunks), project_id)
        return updated

    async def validate(self, project_id: str) -> ValidationResult:
        """Check manifest integrity and report every inconsistency found."""
        errors: list[str] = []
        try:
            manifest = await self.store.load_manifest(project_id)
        except CorruptedDataError as exc:
            return ValidationResult(valid=False, errors=[str(exc)])
        if manifest is None:
            return ValidationResult(valid=False, errors=[f"Project not found: {project_id}"])

        if not manifest.project_id:
            errors.append("Missing projectId")
        if not manifest.name:
            errors.append("Missing project name")

        summary_ids = manifest.chunk_ids()
        duplicates = [cid for cid, n in Counter(summary_ids).items() if n > 1]
        for chunk_id in duplicates:
            errors.append(f"Duplicate chunk summary: {chunk_id}")

        known = set(summary_ids)
        reported: set[str] = set()
        for _, chunk_id in manifest.index.referenced_ids():
            if chunk_id not in known and chunk_id not in reported:
                reported.add(chunk_id)
                errors.append(f"Chunk {chunk_id} in index but not in manifest")

        for summary in manifest.chunks:
            try:
                chunk = await self.store.load_chunk(project_id, summary.id)
            except CorruptedDataError as exc:
                errors.append(str(exc))
                continue
            if chunk is None:
                errors.append(f"Chunk file missing: {summary.id}")
            elif chunk.token_count != summary.token_count:
                errors.append(f"Token count mismatch for chunk {summary.id}")

        errors.extend(await self._check_stored_indices(manifest, known))

        actual_tokens = sum(s.token_count for s in manifest.chunks)
        if manifest.total_tokens != actual_tokens:
            errors.append(f"Total tokens mismatch: {manifest.total_tokens} vs {actual_tokens}")
        if manifest.total_chunks != len(manifest.chunks):
            errors.append(f"Total chunks mismatch: {manifest.total_chunks} vs {len(manifest.chunks)}")

        return ValidationResult(valid=not errors, errors=errors)

    async def _check_stored_indices(self, manifest: ProjectManifest, known: set[str]) -> list[str]:
        """Compare each separately stored index with the manifest's copy."""
        errors: list[str] = []
        for name in INDEX_NAMES:
            try:
                stored = index_from_json(name, await self.store.load_index(manifest.project_id, name))
            except CorruptedDataError as exc:
                errors.append(str(exc))
                continue
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                errors.append(f"Malformed stored index {name}: {exc}")
                continue

            orphans = [cid for cid in dict.fromkeys(_index_ids(name, stored)) if cid not in known]
            for chunk_id in orphans:
                errors.append(f"Chunk {chunk_id} in stored index {name} but not in manifest")
            if index_to_json(name, stored) != index_to_json(name, manifest.index.get(name)):
                errors.append(f"Stored index {name} differs from manifest")
        return errors

    async def rebuild(self, project_id: str) -> ProjectManifest:
        """Regenerate the manifest from stored chunks, keeping name and creation time.

        Raises:
            ProjectNotFoundError: If the project has no stored chunks.
        """
        chunks = await self.store.load_all_chunks(project_id)
        if not chunks:
            raise ProjectNotFoundError(project_id)

        existing = await self.store.load_manifest(project_id)
        file_metadata: dict[str, Any] = {}
        if existing is not None:
            file_metadata = {k: v for k, v in existing.metadata.items() if k != "term_frequency"}

        manifest = build_manifest(
            project_id,
            existing.name if existing is not None else "Rebuilt Project",
            chunks,
            file_metadata,
            created_at=existing.created_at if existing is not None else None,
        )
        await self.save(manifest)
        logger.info("Rebuilt manifest for %s from %d chunks", project_id, len(chunks))
        return manifest

    async def stats(self, project_id: str) -> ManifestStats:
        manifest = await self.store.load_manifest(project_id)
        if manifest is None:
            raise ProjectNotFoundError(project_id)

        distribution = {"small": 0, "medium": 0, "large": 0}
        for summary in manifest.chunks:
            if summary.token_count < 1000:
                distribution["small"] += 1
            elif summary.token_count <= 3000:
                distribution["medium"] += 1
            else:
                distribution["large"] += 1

        divisor = max(manifest.total_chunks, 1)
        return ManifestStats(
            project_id=manifest.project_id,
            name=manifest.name,
            total_chunks=manifest.total_chunks,
            total_entities=manifest.total_entities,
            total_tokens=manifest.total_tokens,
            avg_tokens_per_chunk=manifest.total_tokens / divisor,
            avg_entities_per_chunk=manifest.total_entities / divisor,
            chunks_by_kind=dict(Counter(s.kind for s in manifest.chunks)),
            index_sizes={name: len(manifest.index.get(name)) for name in INDEX_NAMES},
            size_distribution=distribution,
            storage_bytes=await self.store.project_size(project_id),
            created_at=manifest.created_at,
            updated_at=manifest.updated_at,
        )
