"""Tests for token budget allocation and budget-bounded selection."""

from __future__ import annotations

import pytest

from bimcontext.selection.budget import (
    TokenBudgetManager,
    balanced_selection,
    diverse_selection,
    greedy_selection,
)
from bimcontext.selection.scorer import RankedChunk, ScoringFactors

_FACTORS = ScoringFactors(0.5, 0.5, 0.5, 0.5, 0.5)


@pytest.fixture
def manager():
    return TokenBudgetManager()


@pytest.fixture
def ranked(make_chunk):
    """Build RankedChunks from (id, words, score, kind, entity_types) tuples."""

    def _make(*specs):
        items = []
        for chunk_id, words, score, kind, types in specs:
            chunk = make_chunk(chunk_id, content="word " * words, kind=kind, entity_types=types)
            items.append(RankedChunk(chunk, score, _FACTORS))
        return items

    return _make


def _tokens(chunks):
    return sum(c.token_count for c in chunks)


# ------------------------------------------------------------------
# Allocation
# ------------------------------------------------------------------

def test_allocate_default_complexity(manager):
    allocation = manager.allocate_budget(4000, 0.5)
    assert allocation.reserved_for_system == 600
    assert allocation.reserved_for_response == 1150
    assert allocation.available_for_context == 2250
    assert allocation.strategy == "balanced"


@pytest.mark.parametrize(
    "limit, complexity, strategy",
    [(4000, 0.2, "greedy"), (8000, 0.8, "diverse"), (4000, 0.8, "balanced"), (1500, 0.5, "greedy")],
)
def test_strategy_choice(manager, limit, complexity, strategy):
    assert manager.allocate_budget(limit, complexity).strategy == strategy


def test_context_share_has_floor(manager):
    assert manager.allocate_budget(1000, 0.5).available_for_context == 500


def test_complexity_is_clamped(manager):
    assert manager.allocate_budget(4000, 3.0) == manager.allocate_budget(4000, 1.0)
    assert manager.allocate_budget(4000, -1.0) == manager.allocate_budget(4000, 0.0)


# ------------------------------------------------------------------
# Strategies
# ------------------------------------------------------------------

def test_greedy_respects_budget(ranked):
    items = ranked(
        ("a", 40, 0.9, "spatial", ["IFCWALL"]),
        ("b", 40, 0.8, "spatial", ["IFCWALL"]),
        ("c", 10, 0.7, "spatial", ["IFCWALL"]),
    )
    budget = items[0].chunk.token_count + items[2].chunk.token_count
    selected = greedy_selection(items, budget)
    assert [c.id for c in selected] == ["a", "c"]
    assert _tokens(selected) <= budget


def test_greedy_keeps_single_oversized_best(ranked):
    items = ranked(("big", 400, 0.9, "spatial", []), ("small", 5, 0.5, "spatial", []))
    assert [c.id for c in greedy_selection(items, 10)] == ["big"]


def test_balanced_never_exceeds_budget(ranked):
    items = ranked(
        ("s1", 30, 0.9, "spatial", ["IFCWALL"]),
        ("e1", 30, 0.8, "element-type", ["IFCDOOR"]),
        ("s2", 30, 0.7, "spatial", ["IFCWALL"]),
        ("y1", 30, 0.3, "system", ["IFCPUMP"]),
        ("e2", 30, 0.2, "element-type", ["IFCDOOR"]),
    )
    for budget in (20, 50, 100, 150, 1000):
        assert _tokens(balanced_selection(items, budget)) <= budget


def test_balanced_tops_up_leftover(ranked):
    items = ranked(("s1", 30, 0.9, "spatial", []), ("s2", 30, 0.9, "spatial", []))
    selected = balanced_selection(items, 1000)
    assert [c.id for c in selected] == ["s1", "s2"]


def test_diverse_prefers_new_types(ranked):
    items = ranked(
        ("a", 20, 0.7, "element-type", ["IFCWALL"]),
        ("b", 20, 0.7, "element-type", ["IFCWALL"]),
        ("c", 20, 0.6, "element-type", ["IFCDOOR"]),
    )
    budget = _tokens([items[0].chunk, items[2].chunk])
    selected = diverse_selection(items, budget)
    assert [c.id for c in selected] == ["a", "c"]


def test_diverse_never_exceeds_budget(ranked):
    items = ranked(*((f"c{i}", 25, 0.9 - i * 0.1, "spatial", [f"T{i}"]) for i in range(8)))
    for budget in (10, 60, 120, 500):
        assert _tokens(diverse_selection(items, budget)) <= budget


def test_select_within_budget_dispatches(manager, ranked):
    items = ranked(("a", 10, 0.9, "spatial", []))
    allocation = manager.allocate_budget(4000, 0.2)
    assert [c.id for c in manager.select_within_budget(items, allocation)] == ["a"]
    assert manager.select_within_budget([], allocation) == []


# ------------------------------------------------------------------
# Stats and trimming
# ------------------------------------------------------------------

def test_token_stats(manager, make_chunk):
    chunks = [make_chunk("a", kind="spatial"), make_chunk("b", kind="system", content="other")]
    stats = manager.calculate_token_stats(chunks)
    assert stats.chunk_count == 2
    assert stats.total_tokens == _tokens(chunks)
    assert stats.token_distribution == {"spatial": chunks[0].token_count, "system": chunks[1].token_count}
    assert manager.calculate_token_stats([]).average_tokens_per_chunk == 0.0
