"""Token budget allocation and budget-bounded chunk selection.

Three selection strategies share one guarantee: the summed ``token_count``
of the selection never exceeds ``available_for_context``. The single
exception is greedy selection whose best chunk alone is over budget; that
chunk is returned on its own so the context is never empty.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Literal

from bimcontext.models import Chunk
from bimcontext.selection.scorer import RankedChunk

logger = logging.getLogger(__name__)

BudgetStrategy = Literal["greedy", "balanced", "diverse"]

SYSTEM_PROMPT_TOKENS = 500
RESPONSE_BUFFER_TOKENS = 1000
MIN_CONTEXT_TOKENS = 500

BALANCED_TOP_UP_BELOW = 0.8
BALANCED_TOP_UP_CANDIDATES = 10
DIVERSE_ALWAYS_ACCEPT_SCORE = 0.8
DIVERSE_TOP_UP_BELOW = 0.7
DIVERSE_TOP_UP_MIN_SCORE = 0.5
DIVERSE_TOP_UP_CANDIDATES = 20


@dataclass
class BudgetAllocation:
    max_tokens: int
    reserved_for_system: int
    reserved_for_response: int
    available_for_context: int
    strategy: BudgetStrategy


@dataclass
class TokenStats:
    total_tokens: int
    chunk_count: int
    average_tokens_per_chunk: float
    token_distribution: dict[str, int] = field(default_factory=dict)


def _strategy_for(complexity: float, available: int) -> BudgetStrategy:
    if complexity < 0.3 or available < 1000:
        return "greedy"
    if complexity > 0.7 and available > 3000:
        return "diverse"
    return "balanced"


class TokenBudgetManager:
    """Splits a model's token limit and picks chunks that fit the context share."""

    def allocate_budget(self, total_limit: int = 4000, query_complexity: float = 0.5) -> BudgetAllocation:
        """Reserve system and response tokens; the rest (at least 500) is context.

        ``query_complexity`` is clamped to [0, 1].
        """
        complexity = max(0.0, min(1.0, query_complexity))
        system = round(SYSTEM_PROMPT_TOKENS + complexity * 200)
        response = round(RESPONSE_BUFFER_TOKENS + complexity * 300)
        available = max(MIN_CONTEXT_TOKENS, total_limit - system - response)

        return BudgetAllocation(
            max_tokens=total_limit,
            reserved_for_system=system,
            reserved_for_response=response,
            available_for_context=available,
            strategy=_strategy_for(complexity, available),
        )

    def select_within_budget(
        self, ranked: Sequence[RankedChunk], allocation: BudgetAllocation
    ) -> list[Chunk]:
        budget = allocation.available_for_context
        if allocation.strategy == "balanced":
            selected = balanced_selection(ranked, budget)
        elif allocation.strategy == "diverse":
            selected = diverse_selection(ranked, budget)
        else:
            selected = greedy_selection(ranked, budget)
        logger.debug(
            "%s selection kept %d of %d chunks", allocation.strategy, len(selected), len(ranked)
        )
        return selected

    @staticmethod
    def calculate_token_stats(chunks: Sequence[Chunk]) -> TokenStats:
        total = sum(c.token_count for c in chunks)
        distribution: dict[str, int] = {}
        for chunk in chunks:
            distribution[chunk.kind] = distribution.get(chunk.kind, 0) + chunk.token_count
        return TokenStats(
            total_tokens=total,
            chunk_count=len(chunks),
            average_tokens_per_chunk=total / len(chunks) if chunks else 0.0,
            token_distribution=distribution,
        )


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


def greedy_selection(ranked: Sequence[RankedChunk], budget: int) -> list[Chunk]:
    """Best-first while the running total fits."""
    selected: list[Chunk] = []
    used = 0
    for item in ranked:
        tokens = item.chunk.token_count
        if used + tokens <= budget:
            selected.append(item.chunk)
            used += tokens
        elif not selected:
            selected.append(item.chunk)
            break
    return selected


def _kind_budgets(groups: Mapping[str, Sequence[RankedChunk]], budget: int) -> dict[str, int]:
    averages = {kind: sum(r.score for r in items) / len(items) for kind, items in groups.items()}
    total = sum(averages.values())
    return {
        kind: int(budget * (avg / total if total > 0 else 1 / len(groups)))
        for kind, avg in averages.items()
    }


def balanced_selection(ranked: Sequence[RankedChunk], budget: int) -> list[Chunk]:
    """Per-kind sub-budgets proportional to mean score, then a top-up pass."""
    groups: dict[str, list[RankedChunk]] = {}
    for item in ranked:
        groups.setdefault(item.chunk.kind, []).append(item)
    if not groups:
        return []

    selected: list[Chunk] = []
    chosen: set[str] = set()
    used = 0
    budgets = _kind_budgets(groups, budget)

    for kind, items in groups.items():
        kind_budget = budgets[kind]
        kind_used = 0
        for item in items:
            tokens = item.chunk.token_count
            if kind_used + tokens <= kind_budget and used + tokens <= budget:
                selected.append(item.chunk)
                chosen.add(item.chunk.id)
                kind_used += tokens
                used += tokens

    if used < budget * BALANCED_TOP_UP_BELOW:
        remaining = [r for r in ranked if r.chunk.id not in chosen][:BALANCED_TOP_UP_CANDIDATES]
        for item in remaining:
            tokens = item.chunk.token_count
            if used + tokens <= budget:
                selected.append(item.chunk)
                used += tokens

    return selected


def _spatial_key(chunk: Chunk) -> str | None:
    meta = chunk.metadata
    if not meta.has_spatial_info:
        return None
    return f"{meta.floor}-{meta.zone}"


def diverse_selection(ranked: Sequence[RankedChunk], budget: int) -> list[Chunk]:
    """Prefer chunks adding new entity types or floor/zone pairs, then top up."""
    selected: list[Chunk] = []
    chosen: set[str] = set()
    covered_types: set[str] = set()
    covered_places: set[str] = set()
    used = 0

    for item in ranked:
        chunk = item.chunk
        if used + chunk.token_count > budget:
            continue
        new_types = set(chunk.metadata.entity_types) - covered_types
        place = _spatial_key(chunk)
        new_place = place is not None and place not in covered_places

        if new_types or new_place or item.score > DIVERSE_ALWAYS_ACCEPT_SCORE:
            selected.append(chunk)
            chosen.add(chunk.id)
            used += chunk.token_count
            covered_types |= new_types
            if place is not None:
                covered_places.add(place)

    if used < budget * DIVERSE_TOP_UP_BELOW:
        remaining = [
            r for r in ranked if r.chunk.id not in chosen and r.score > DIVERSE_TOP_UP_MIN_SCORE
        ][:DIVERSE_TOP_UP_CANDIDATES]
        for item in remaining:
            if used + item.chunk.token_count <= budget:
                selected.append(item.chunk)
                used += item.chunk.token_count

    return selected
