"""Multi-factor relevance scoring of chunks against a query intent.

Each factor lies in [0, 1]; the final score is their weighted mean.

  text_match         keyword hits plus TF-IDF over the chunk's words
  entity_match       requested entity types (exact, else parent category)
  spatial_relevance  floor / zone / building named by the spatial terms
  recency            linear decay over 30 days from ``created_at``
  type_alignment     how well the chunk kind suits the intent kind
"""

from __future__ import annotations

import math
import time
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from dataclasses import asdict, dataclass

from bimcontext.models import Chunk, ProjectManifest
from bimcontext.selection.query_analyzer import QueryIntent
from bimcontext.tokens import tokenize_words

NEUTRAL = 0.5
RECENCY_WINDOW_DAYS = 30
UNLISTED_KIND_SCORE = 0.3
_SECONDS_PER_DAY = 86_400

_BUILDING_PARENTS = ("IFCBUILDINGELEMENT", "IFCELEMENT")
_FLOW_PARENTS = ("IFCDISTRIBUTIONFLOWELEMENT", "IFCDISTRIBUTIONELEMENT")

TYPE_HIERARCHY: dict[str, tuple[str, ...]] = {
    "IFCWALL": _BUILDING_PARENTS,
    "IFCDOOR": _BUILDING_PARENTS,
    "IFCWINDOW": _BUILDING_PARENTS,
    "IFCSLAB": _BUILDING_PARENTS,
    "IFCBEAM": _BUILDING_PARENTS,
    "IFCCOLUMN": _BUILDING_PARENTS,
    "IFCFLOWSEGMENT": _FLOW_PARENTS,
    "IFCFLOWTERMINAL": _FLOW_PARENTS,
    "IFCFLOWFITTING": _FLOW_PARENTS,
}
DEFAULT_PARENTS: tuple[str, ...] = ("IFCELEMENT",)

# Preferred chunk kinds per intent kind, best first.
KIND_PREFERENCES: dict[str, tuple[str, ...]] = {
    "count": ("element-type", "system", "spatial"),
    "find": ("element-type", "spatial"),
    "spatial": ("spatial", "element-type"),
    "system": ("system", "element-type"),
    "general": ("element-type", "spatial", "system"),
}


@dataclass(frozen=True)
class ScoringWeights:
    text_match: float = 0.30
    entity_match: float = 0.30
    spatial_relevance: float = 0.20
    recency: float = 0.05
    type_alignment: float = 0.15


@dataclass(frozen=True)
class ScoringFactors:
    text_match: float
    entity_match: float
    spatial_relevance: float
    recency: float
    type_alignment: float


@dataclass
class RankedChunk:
    chunk: Chunk
    score: float
    factors: ScoringFactors


def parent_types(entity_type: str) -> tuple[str, ...]:
    return TYPE_HIERARCHY.get(entity_type, DEFAULT_PARENTS)


def weighted_sum(factors: ScoringFactors, weights: ScoringWeights) -> float:
    """Weighted mean of the factors, normalised by the total weight."""
    values = asdict(factors)
    weight_map = asdict(weights)
    total_weight = sum(weight_map[name] for name in values)
    if total_weight <= 0:
        return 0.0
    total = sum(values[name] * weight_map[name] for name in values)
    return max(0.0, min(1.0, total / total_weight))


class RelevanceScorer:
    """Scores chunks; call :meth:`initialize` to enable corpus-aware IDF.

    Args:
        clock: Returns the current time in epoch seconds (for recency).
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self.total_documents = 0
        self.term_frequency: dict[str, int] = {}

    def initialize(self, total_documents: int, term_frequency: Mapping[str, int] | None = None) -> None:
        self.total_documents = total_documents
        self.term_frequency = dict(term_frequency or {})

    def initialize_from_manifest(self, manifest: ProjectManifest) -> None:
        self.initialize(manifest.total_chunks, manifest.metadata.get("term_frequency"))

    # -- public API -------------------------------------------------------

    def factors(self, chunk: Chunk, intent: QueryIntent) -> ScoringFactors:
        return ScoringFactors(
            text_match=self.text_match(chunk, intent.keywords),
            entity_match=entity_match(chunk, intent.entity_types),
            spatial_relevance=spatial_relevance(chunk, intent.spatial_terms),
            recency=self.recency(chunk),
            type_alignment=type_alignment(chunk, intent.kind),
        )

    def score_chunk(
        self, chunk: Chunk, intent: QueryIntent, weights: ScoringWeights | None = None
    ) -> float:
        """Return the relevance of *chunk* for *intent*, in [0, 1]."""
        return weighted_sum(self.factors(chunk, intent), weights or ScoringWeights())

    def rank_chunks(
        self,
        chunks: Iterable[Chunk],
        intent: QueryIntent,
        weights: ScoringWeights | None = None,
    ) -> list[RankedChunk]:
        """Score every chunk and return them best first."""
        weights = weights or ScoringWeights()
        ranked = []
        for chunk in chunks:
            factors = self.factors(chunk, intent)
            ranked.append(RankedChunk(chunk, weighted_sum(factors, weights), factors))
        ranked.sort(key=lambda r: r.score, reverse=True)
        return ranked

    # -- corpus-dependent factors -----------------------------------------

    def text_match(self, chunk: Chunk, keywords: list[str]) -> float:
        if not keywords:
            return 0.0
        tokens = tokenize_words(chunk.content)
        if not tokens:
            return 0.0

        counts = Counter(tokens)
        matched = 0
        tfidf = 0.0
        for keyword in keywords:
            keyword = keyword.lower()
            if keyword not in counts:
                continue
            matched += 1
            tf = counts[keyword] / len(tokens)
            df = self.term_frequency.get(keyword) or 1
            idf = max(0.0, math.log((self.total_documents + 1) / (df + 1)))
            tfidf += tf * idf

        return min(1.0, 0.5 * matched / len(keywords) + 0.5 * min(1.0, tfidf))

    def recency(self, chunk: Chunk) -> float:
        if chunk.created_at is None:
            return NEUTRAL
        age_days = (self._clock() - chunk.created_at) / _SECONDS_PER_DAY
        return max(0.0, min(1.0, 1 - age_days / RECENCY_WINDOW_DAYS))


# ---------------------------------------------------------------------------
# Corpus-independent factors
# ---------------------------------------------------------------------------


def entity_match(chunk: Chunk, requested: list[str]) -> float:
    if not requested:
        return NEUTRAL
    chunk_types = set(chunk.metadata.entity_types)
    if "*" in requested:
        return 1.0 if chunk_types else 0.0

    exact = 0
    hierarchy = 0
    for entity_type in requested:
        if entity_type in chunk_types:
            exact += 1
        elif chunk_types.intersection(parent_types(entity_type)):
            hierarchy += 1

    return min(1.0, exact / len(requested) + 0.5 * hierarchy / len(requested))


def spatial_relevance(chunk: Chunk, spatial_terms: list[str]) -> float:
    if not spatial_terms:
        return NEUTRAL
    meta = chunk.metadata
    if not meta.has_spatial_info:
        return 0.0

    total = 0.0
    for term in spatial_terms:
        term = term.lower()
        if meta.floor is not None and str(meta.floor) in term:
            total += 1
        if meta.zone and meta.zone.lower() in term:
            total += 1
        if meta.building and meta.building.lower() in term:
            total += 0.5

    return min(1.0, total / len(spatial_terms))


def type_alignment(chunk: Chunk, intent_kind: str) -> float:
    preferred = KIND_PREFERENCES.get(intent_kind, ())
    if chunk.kind not in preferred:
        return UNLISTED_KIND_SCORE
    return 1 - 0.2 * preferred.index(chunk.kind)
