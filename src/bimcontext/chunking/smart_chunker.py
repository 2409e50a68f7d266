"""Chunking orchestrator: runs every strategy, then dedups and splits.

A failing strategy costs its own output only; its error becomes a warning
and the remaining strategies still run. Only a failure outside the
strategies (manifest construction, splitting) aborts the run, as a
:class:`ChunkingError`.
"""

from __future__ import annotations

import copy
import hashlib
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from bimcontext.chunking.base import MAX_ENTITY_IDS, ChunkStrategy, SizeOptions, unique_types
from bimcontext.chunking.element_type import ElementTypeStrategy, EnhancedElementTypeStrategy
from bimcontext.chunking.query_adaptive import QueryAdaptiveStrategy
from bimcontext.chunking.spatial import SpatialStrategy
from bimcontext.chunking.system import SystemStrategy
from bimcontext.entity_text import create_summary, entities_to_text
from bimcontext.exceptions import ChunkingError
from bimcontext.extraction import AttributeExtractor
from bimcontext.manifest import build_manifest
from bimcontext.models import Chunk, ChunkMetadata, Entity, ModelInput, ProjectManifest
from bimcontext.tokens import split_by_token_limit

logger = logging.getLogger(__name__)

StrategyFactory = Callable[[AttributeExtractor], Sequence[ChunkStrategy]]


def default_strategies(extractor: AttributeExtractor) -> list[ChunkStrategy]:
    """Spatial, system, element-type (basic then enhanced), query-adaptive."""
    return [
        SpatialStrategy(),
        SystemStrategy(),
        ElementTypeStrategy(),
        EnhancedElementTypeStrategy(extractor),
        QueryAdaptiveStrategy(extractor),
    ]


@dataclass
class ProcessingResult:
    manifest: ProjectManifest
    chunks: list[Chunk]
    processing_time_ms: float
    warnings: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Post-processing
# ---------------------------------------------------------------------------


def content_digest(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def deduplicate(chunks: Sequence[Chunk]) -> list[Chunk]:
    """Drop chunks whose content is identical to an earlier chunk's."""
    seen: set[str] = set()
    unique: list[Chunk] = []
    for chunk in chunks:
        digest = content_digest(chunk.content)
        if digest in seen:
            logger.debug("Dropping duplicate chunk %s", chunk.id)
            continue
        seen.add(digest)
        unique.append(chunk)
    return unique


def split_oversized(chunks: Sequence[Chunk], options: SizeOptions) -> list[Chunk]:
    """Replace every chunk over ``max_token_size`` with sentence-aligned parts.

    Parts are re-split at ``target_token_size`` and carry up to
    ``overlap_tokens`` of trailing context from the previous part.
    """
    result: list[Chunk] = []
    for chunk in chunks:
        if chunk.token_count <= options.max_token_size:
            result.append(chunk)
            continue

        pieces = split_by_token_limit(
            chunk.content, options.target_token_size, options.overlap_tokens
        )
        logger.debug("Splitting chunk %s into %d parts", chunk.id, len(pieces))
        for i, piece in enumerate(pieces):
            result.append(
                Chunk.create(
                    id=f"{chunk.id}-split-{i}",
                    project_id=chunk.project_id,
                    kind=chunk.kind,
                    content=piece,
                    summary=f"{chunk.summary} (Part {i + 1}/{len(pieces)})",
                    metadata=copy.deepcopy(chunk.metadata),
                    created_at=chunk.created_at,
                    version=chunk.version,
                )
            )
    return result


def fallback_chunk(entities: Sequence[Entity], project_id: str) -> Chunk:
    """One element-type chunk listing every entity, used when no strategy produced output."""
    ts = ChunkStrategy.timestamp_ms()
    return Chunk.create(
        id=ChunkStrategy.make_id(project_id, "fallback", 0, ts),
        project_id=project_id,
        kind="element-type",
        content=entities_to_text(entities, include_properties=False, max_per_type=50),
        summary=create_summary(entities),
        metadata=ChunkMetadata(
            entity_types=unique_types(entities),
            entity_count=len(entities),
            entity_ids=[e.express_id for e in entities][:MAX_ENTITY_IDS],
        ),
    )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class SmartChunker:
    """Run the chunking strategies over one model and build its manifest.

    Args:
        options: Size targets; defaults to :class:`SizeOptions` defaults.
        strategies: Factory returning the strategies for one run. It is
            called with a fresh :class:`AttributeExtractor` per run so no
            attribute cache outlives a ``process_model`` call.
    """

    def __init__(
        self,
        options: SizeOptions | None = None,
        strategies: StrategyFactory | None = None,
    ) -> None:
        self.options = options or SizeOptions()
        self._strategies = strategies or default_strategies

    async def process_model(
        self,
        project_id: str,
        model: ModelInput,
        project_name: str,
        file_metadata: Mapping[str, Any] | None = None,
    ) -> ProcessingResult:
        """Chunk *model* and return the chunks with a freshly built manifest.

        An empty model yields an empty manifest and the warning
        ``"No entities found in model"``.

        Raises:
            ChunkingError: If post-processing or manifest construction fails.
        """
        start = time.perf_counter()
        warnings: list[str] = []

        try:
            entities = model.entities
            if not entities:
                warnings.append("No entities found in model")
                manifest = build_manifest(project_id, project_name, [], file_metadata)
                return ProcessingResult(manifest, [], _elapsed_ms(start), warnings)

            extractor = AttributeExtractor()
            chunks: list[Chunk] = []
            for strategy in self._strategies(extractor):
                try:
                    if not strategy.can_process(entities):
                        logger.debug("Skipping strategy %s", strategy.name)
                        continue
                    produced = await strategy.process(entities, project_id, self.options)
                except Exception as exc:
                    message = f"Strategy {strategy.name} failed: {exc}"
                    logger.warning(message)
                    warnings.append(message)
                    continue
                logger.info("Strategy %s produced %d chunks", strategy.name, len(produced))
                chunks.extend(produced)

            if not chunks:
                warnings.append("No chunks produced by any strategy; using fallback chunk")
                chunks.append(fallback_chunk(entities, project_id))

            deduped = deduplicate(chunks)
            if len(deduped) < len(chunks):
                logger.info("Removed %d duplicate chunks", len(chunks) - len(deduped))
            final = split_oversized(deduped, self.options)

            elapsed = _elapsed_ms(start)
            meta: dict[str, Any] = {"processing_time_ms": round(elapsed)}
            if file_metadata:
                meta.update(file_metadata)
            manifest = build_manifest(project_id, project_name, final, meta)
        except Exception as exc:
            raise ChunkingError(f"Chunking failed: {exc}") from exc

        return ProcessingResult(manifest, final, elapsed, warnings)


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
