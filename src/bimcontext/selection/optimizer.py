"""Index query planning: which manifest indices to probe, in what order.

Plans are advisory. The selector executes the lookups itself; costs and
result estimates only order the steps and describe the plan.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Literal

from bimcontext.models import INDEX_NAMES, ProjectManifest
from bimcontext.selection.query_analyzer import QueryIntent

PlanStrategy = Literal["single-index", "multi-index", "full-scan"]
Combine = Literal["AND", "OR"]

# Without statistics, assumed fraction of chunks each index returns.
DEFAULT_SELECTIVITY: dict[str, float] = {
    "byEntityType": 0.1,
    "spatial": 0.2,
    "bySystem": 0.15,
    "byFloor": 0.25,
}
FALLBACK_SELECTIVITY = 0.5

ASSUMED_TOTAL_CHUNKS = 1000
FULL_SCAN_COST = 10.0
KEY_COST = 0.1
DEFAULT_BATCH_SIZE = 50
PARALLEL_BATCH_THRESHOLD = 3


@dataclass
class IndexStatistics:
    total_docs: int
    unique_keys: int


@dataclass
class QueryStep:
    index: str
    operation: Literal["lookup", "scan"]
    keys: list[str] = field(default_factory=list)
    estimated_results: int = 0
    cost: float = 0.0


@dataclass
class QueryPlan:
    steps: list[QueryStep]
    estimated_cost: float
    strategy: PlanStrategy
    parallelizable: bool

    @property
    def index_names(self) -> list[str]:
        return [s.index for s in self.steps if s.operation == "lookup"]


@dataclass
class LoadingPlan:
    batches: list[list[str]]
    strategy: Literal["parallel", "sequential"]
    score_threshold: float


def statistics_from_manifest(manifest: ProjectManifest) -> dict[str, IndexStatistics]:
    """Per-index document and distinct-key counts for selectivity estimates."""
    stats: dict[str, IndexStatistics] = {}
    for name in INDEX_NAMES:
        index = manifest.index.get(name)
        if name == "spatial":
            unique = len({entry.zone or entry.chunk_id for entry in index})
        else:
            unique = len(index)
        stats[name] = IndexStatistics(total_docs=manifest.total_chunks, unique_keys=unique)
    return stats


class IndexQueryOptimizer:
    """Builds :class:`QueryPlan` objects from a query intent.

    Statistics are optional; :meth:`initialize` feeds them from a manifest.
    """

    def __init__(self, statistics: Mapping[str, IndexStatistics] | None = None) -> None:
        self.statistics: dict[str, IndexStatistics] = dict(statistics or {})

    def initialize(self, manifest: ProjectManifest) -> None:
        self.statistics = statistics_from_manifest(manifest)

    def optimize_query(self, intent: QueryIntent, available_indices: Iterable[str]) -> QueryPlan:
        """Plan the lookups for *intent*.

        One active filter (entity type, spatial, system) gives a single
        lookup; several give one lookup each, most selective first, each
        later step costed higher; none gives a full manifest scan.
        """
        available = set(available_indices)
        filters = self._filters(intent, available)

        if len(filters) == 1:
            strategy: PlanStrategy = "single-index"
            index, keys = filters[0]
            steps = [
                QueryStep(
                    index=index,
                    operation="lookup",
                    keys=keys,
                    estimated_results=self._estimate_results(index, keys),
                    cost=len(keys) * KEY_COST,
                )
            ]
        elif filters:
            strategy = "multi-index"
            ordered = sorted(filters, key=lambda f: self.selectivity(f[0], f[1]))
            steps = [
                QueryStep(
                    index=index,
                    operation="lookup",
                    keys=keys,
                    estimated_results=round(self.selectivity(index, keys) * ASSUMED_TOTAL_CHUNKS),
                    cost=len(keys) * KEY_COST * (position + 1),
                )
                for position, (index, keys) in enumerate(ordered)
            ]
        else:
            strategy = "full-scan"
            steps = [full_scan_step()]

        return QueryPlan(
            steps=steps,
            estimated_cost=sum(s.cost for s in steps),
            strategy=strategy,
            parallelizable=strategy == "multi-index" and all(s.operation == "lookup" for s in steps),
        )

    def selectivity(self, index: str, keys: Sequence[str]) -> float:
        """Expected fraction of chunks a lookup of *keys* returns, at most 1."""
        stats = self.statistics.get(index)
        if stats is None or stats.total_docs == 0:
            return DEFAULT_SELECTIVITY.get(index, FALLBACK_SELECTIVITY)
        avg_docs_per_key = stats.total_docs / (stats.unique_keys or 10)
        return min(1.0, len(keys) * avg_docs_per_key / stats.total_docs)

    def _estimate_results(self, index: str, keys: Sequence[str]) -> int:
        stats = self.statistics.get(index)
        if stats is None:
            return len(keys) * 10
        return round(len(keys) * stats.total_docs / (stats.unique_keys or 1))

    @staticmethod
    def _filters(intent: QueryIntent, available: set[str]) -> list[tuple[str, list[str]]]:
        filters: list[tuple[str, list[str]]] = []
        if intent.entity_types and "byEntityType" in available:
            filters.append(("byEntityType", list(intent.entity_types)))
        if intent.spatial_terms and "spatial" in available:
            filters.append(("spatial", list(intent.spatial_terms)))
        if intent.system_terms and "bySystem" in available:
            filters.append(("bySystem", list(intent.system_terms)))
        return filters


def full_scan_step() -> QueryStep:
    return QueryStep(
        index="manifest",
        operation="scan",
        estimated_results=ASSUMED_TOTAL_CHUNKS,
        cost=FULL_SCAN_COST,
    )


def combine_index_results(results: Sequence[Sequence[str]], operation: Combine = "AND") -> list[str]:
    """Intersect (AND) or union (OR) chunk-id lists, keeping first-list order."""
    if not results:
        return []
    if len(results) == 1:
        return list(dict.fromkeys(results[0]))

    if operation == "AND":
        common = set(results[0])
        for ids in results[1:]:
            common &= set(ids)
        return [i for i in dict.fromkeys(results[0]) if i in common]

    merged: dict[str, None] = {}
    for ids in results:
        merged.update(dict.fromkeys(ids))
    return list(merged)


def create_loading_plan(
    chunk_ids: Sequence[str],
    score_threshold: float,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> LoadingPlan:
    """Split *chunk_ids* into batches; more than three batches is marked parallel."""
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    batches = [list(chunk_ids[i : i + batch_size]) for i in range(0, len(chunk_ids), batch_size)]
    return LoadingPlan(
        batches=batches,
        strategy="parallel" if len(batches) > PARALLEL_BATCH_THRESHOLD else "sequential",
        score_threshold=score_threshold,
    )
