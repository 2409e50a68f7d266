"""Query-time pipeline: intent → plan → candidates → ranking → budget → context.

Typical usage:

    store = SqliteChunkStore.open(".bimcontext.db")
    selector = ContextSelector(store, load_config().selection)
    result = await selector.select_chunks("tower-a", "Wie viele Türen gibt es im 2. OG?")
    prompt_context = result.context.render()
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, NamedTuple

from bimcontext.config import CacheCfg, SelectionCfg
from bimcontext.exceptions import ProjectNotFoundError
from bimcontext.models import (
    INDEX_NAMES,
    Chunk,
    ProjectManifest,
    SpatialIndexEntry,
    index_from_json,
)
from bimcontext.selection.assembler import AssembledContext, ContextAssembler, FormattingOptions
from bimcontext.selection.budget import TokenBudgetManager
from bimcontext.selection.optimizer import (
    IndexQueryOptimizer,
    QueryPlan,
    combine_index_results,
    create_loading_plan,
)
from bimcontext.selection.query_analyzer import WILDCARD, QueryAnalyzer, QueryIntent
from bimcontext.selection.scorer import RankedChunk, RelevanceScorer
from bimcontext.storage.base import ChunkStore
from bimcontext.storage.cache import LRUCache

logger = logging.getLogger(__name__)

_DIGITS_RE = re.compile(r"\d+")
MAIN_CHUNK_KINDS = 4


class QueryCacheKey(NamedTuple):
    project_id: str
    query: str
    max_tokens: int
    manifest_updated_at: float | None


@dataclass
class SelectionMetrics:
    coverage: int
    relevance_score: float
    diversity_score: float
    token_efficiency: float


@dataclass
class SelectionResult:
    chunks: list[Chunk]
    total_tokens: int
    relevance_scores: dict[str, float]
    intent: QueryIntent
    metrics: SelectionMetrics
    context: AssembledContext
    reason: str
    plan: QueryPlan | None = None
    candidate_count: int = 0
    processing_time_ms: float = 0.0
    warnings: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Candidate collection
# ---------------------------------------------------------------------------


def indices_for_plan(plan: QueryPlan) -> list[str]:
    """Index names to load for *plan*; spatial lookups also need byFloor."""
    names = {"byType"}
    for index in plan.index_names:
        names.add(index)
        if index == "spatial":
            names.add("byFloor")
    return [n for n in INDEX_NAMES if n in names]


def collect_candidates(
    intent: QueryIntent, indices: Mapping[str, Any], all_ids: Sequence[str]
) -> list[str]:
    """Candidate chunk ids: AND of the entity, spatial and system sets that are non-empty.

    Args:
        intent: Analysed query.
        indices: Decoded indices by name; missing names are skipped.
        all_ids: Every chunk id in the manifest (wildcard and no-filter result).
    """
    sets: list[list[str]] = []

    by_entity_type: Mapping[str, list[str]] | None = indices.get("byEntityType")
    if intent.entity_types and by_entity_type is not None:
        found: list[str] = []
        for entity_type in intent.entity_types:
            if entity_type == WILDCARD:
                found.extend(all_ids)
            else:
                found.extend(by_entity_type.get(entity_type, []))
        if found:
            sets.append(list(dict.fromkeys(found)))

    if intent.spatial_terms:
        by_floor: Mapping[int, list[str]] = indices.get("byFloor") or {}
        spatial: Sequence[SpatialIndexEntry] = indices.get("spatial") or []
        found = []
        for term in intent.spatial_terms:
            lowered = term.lower()
            digits = _DIGITS_RE.search(term)
            if digits:
                found.extend(by_floor.get(int(digits.group(0)), []))
            found.extend(e.chunk_id for e in spatial if e.zone and e.zone.lower() in lowered)
        if found:
            sets.append(list(dict.fromkeys(found)))

    by_system: Mapping[str, list[str]] | None = indices.get("bySystem")
    if intent.system_terms and by_system is not None:
        found = [cid for term in intent.system_terms for cid in by_system.get(term, [])]
        if found:
            sets.append(list(dict.fromkeys(found)))

    if not sets:
        return list(all_ids)
    return combine_index_results(sets, "AND")


# ---------------------------------------------------------------------------
# Selector
# ---------------------------------------------------------------------------


class ContextSelector:
    """Picks, ranks and assembles the chunks that answer one query.

    Args:
        store: Where manifests, indices and chunks are read from.
        config: Selection settings; defaults to :class:`SelectionCfg`.
        cache_config: Sizing of the query-result cache.
    """

    def __init__(
        self,
        store: ChunkStore,
        config: SelectionCfg | None = None,
        cache_config: CacheCfg | None = None,
    ) -> None:
        self.store = store
        self.config = config or SelectionCfg()
        cache_config = cache_config or CacheCfg()
        self.analyzer = QueryAnalyzer()
        self.budget_manager = TokenBudgetManager()
        self.assembler = ContextAssembler()
        self._results = LRUCache(cache_config.capacity, cache_config.ttl_seconds)

    def clear_cache(self) -> None:
        self._results.clear()

    async def select_chunks(
        self,
        project_id: str,
        query: str,
        max_tokens: int | None = None,
        options: FormattingOptions | None = None,
    ) -> SelectionResult:
        """Run the full selection pipeline for *query*.

        Results are cached per (project, query, token limit) when no custom
        formatting *options* are given. The key carries the manifest's
        ``updated_at``, so a reprocessed or updated project misses.

        Raises:
            ProjectNotFoundError: If *project_id* has no manifest.
        """
        limit = max_tokens if max_tokens is not None else self.config.max_context_tokens
        manifest = await self.store.load_manifest(project_id)
        if manifest is None:
            raise ProjectNotFoundError(project_id)

        key = QueryCacheKey(project_id, query, limit, manifest.updated_at)
        if options is None:
            cached = self._results.get(key)
            if cached is not None:
                logger.debug("Query cache hit for %r", query)
                return cached

        result = await self._select(manifest, query, limit, options)
        if options is None:
            self._results.set(key, result)
        return result

    async def _select(
        self,
        manifest: ProjectManifest,
        query: str,
        limit: int,
        options: FormattingOptions | None,
    ) -> SelectionResult:
        start = time.perf_counter()
        project_id = manifest.project_id

        scorer = RelevanceScorer()
        scorer.initialize_from_manifest(manifest)

        intent = self.analyzer.analyze_intent(query)

        optimizer = IndexQueryOptimizer()
        optimizer.initialize(manifest)
        plan = optimizer.optimize_query(intent, INDEX_NAMES)
        logger.debug("Query plan: %s, cost %.2f", plan.strategy, plan.estimated_cost)

        indices = await self._load_indices(project_id, indices_for_plan(plan))
        candidate_ids = collect_candidates(intent, indices, manifest.chunk_ids())

        candidates, ranked = await self._load_and_rank(project_id, candidate_ids, intent, scorer, limit)

        allocation = self.budget_manager.allocate_budget(limit, intent.confidence)
        selected = self.budget_manager.select_within_budget(ranked, allocation)

        score_by_id = {r.chunk.id: r.score for r in ranked}
        selected_scores = {c.id: score_by_id[c.id] for c in selected}

        if options is None:
            options = FormattingOptions(
                compact_mode=len(selected) > self.config.compact_threshold,
                language=self.config.language,
            )
        context = self.assembler.assemble_context(selected, intent, allocation, options, selected_scores)

        return SelectionResult(
            chunks=selected,
            total_tokens=self.budget_manager.calculate_token_stats(selected).total_tokens,
            relevance_scores=selected_scores,
            intent=intent,
            metrics=selection_metrics(selected, candidates, selected_scores),
            context=context,
            reason=selection_reason(self.analyzer, query, intent, selected_scores),
            plan=plan,
            candidate_count=len(candidate_ids),
            processing_time_ms=(time.perf_counter() - start) * 1000,
        )

    async def _load_indices(self, project_id: str, names: Sequence[str]) -> dict[str, Any]:
        raw = await asyncio.gather(*(self.store.load_index(project_id, n) for n in names))
        return {name: index_from_json(name, data) for name, data in zip(names, raw)}

    async def _load_and_rank(
        self,
        project_id: str,
        candidate_ids: Sequence[str],
        intent: QueryIntent,
        scorer: RelevanceScorer,
        limit: int,
    ) -> tuple[list[Chunk], list[RankedChunk]]:
        """Load and score candidates batch by batch, stopping once enough are good.

        Loading stops when the chunks scoring above ``high_quality_score``
        hold more than ``early_stop_factor`` × *limit* tokens and number
        more than ``early_stop_min_chunks``.
        """
        cfg = self.config
        plan = create_loading_plan(candidate_ids, cfg.high_quality_score, cfg.batch_size)
        candidates: list[Chunk] = []
        ranked: list[RankedChunk] = []

        for number, batch in enumerate(plan.batches, start=1):
            chunks = await self.store.load_chunks(project_id, batch)
            candidates.extend(chunks)
            ranked.extend(scorer.rank_chunks(chunks, intent))
            ranked.sort(key=lambda r: r.score, reverse=True)

            good = [r for r in ranked if r.score > plan.score_threshold]
            good_tokens = sum(r.chunk.token_count for r in good)
            if good_tokens > limit * cfg.early_stop_factor and len(good) > cfg.early_stop_min_chunks:
                logger.info(
                    "Stopping after batch %d/%d: %d high-quality chunks",
                    number,
                    len(plan.batches),
                    len(good),
                )
                break

        return candidates, ranked


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


def selection_metrics(
    selected: Sequence[Chunk], candidates: Sequence[Chunk], scores: Mapping[str, float]
) -> SelectionMetrics:
    selected_types = {t for c in selected for t in c.metadata.entity_types}
    candidate_types = {t for c in candidates for t in c.metadata.entity_types}
    coverage = len(selected_types) / len(candidate_types) if candidate_types else 1.0

    relevance = sum(scores.get(c.id, 0.5) for c in selected) / len(selected) if selected else 0.0
    total_tokens = sum(c.token_count for c in selected)

    return SelectionMetrics(
        coverage=round(coverage * 100),
        relevance_score=relevance,
        diversity_score=len({c.kind for c in selected}) / MAIN_CHUNK_KINDS,
        token_efficiency=len(selected) / (total_tokens / 1000) if total_tokens else 0.0,
    )


def selection_reason(
    analyzer: QueryAnalyzer, query: str, intent: QueryIntent, scores: Mapping[str, float]
) -> str:
    """Human-readable account of what was selected and which filters applied."""
    if not scores:
        return "No relevant chunks found for the query"

    reasons = [f"Selected {len(scores)} chunks"]
    if intent.entity_types:
        reasons.append(f"Filtered by entity types: {', '.join(intent.entity_types)}")
    floor = analyzer.extract_floor(query)
    if floor is not None:
        reasons.append(f"Filtered by floor: {floor}")
    system = analyzer.extract_system(query)
    if system:
        reasons.append(f"Filtered by system: {system}")
    average = sum(scores.values()) / len(scores)
    reasons.append(f"Average relevance score: {average:.2f}")
    return ". ".join(reasons)
