"""Tests for multi-factor relevance scoring."""

from __future__ import annotations

import pytest

from bimcontext.models import ChunkMetadata
from bimcontext.selection.query_analyzer import QueryIntent
from bimcontext.selection.scorer import (
    RelevanceScorer,
    ScoringFactors,
    ScoringWeights,
    entity_match,
    spatial_relevance,
    type_alignment,
    weighted_sum,
)

DAY = 86_400
NOW = 1_700_000_000.0


@pytest.fixture
def scorer():
    return RelevanceScorer(clock=lambda: NOW)


# ------------------------------------------------------------------
# Factors
# ------------------------------------------------------------------

def test_entity_match(make_chunk):
    chunk = make_chunk("c1", entity_types=["IFCDOOR", "IFCBUILDINGELEMENT"])
    assert entity_match(chunk, []) == 0.5
    assert entity_match(chunk, ["IFCDOOR"]) == 1.0
    assert entity_match(chunk, ["IFCWALL"]) == 0.5
    assert entity_match(chunk, ["IFCDOOR", "IFCPUMP"]) == 0.5
    assert entity_match(chunk, ["*"]) == 1.0
    assert entity_match(make_chunk("c2"), ["*"]) == 0.0


def test_spatial_relevance(make_chunk):
    on_floor = make_chunk("c1", floor=2, zone="North")
    assert spatial_relevance(on_floor, []) == 0.5
    assert spatial_relevance(on_floor, ["2. og"]) == 1.0
    assert spatial_relevance(on_floor, ["2. og", "3. og"]) == 0.5
    assert spatial_relevance(on_floor, ["north wing 2. og"]) == 1.0
    assert spatial_relevance(make_chunk("c2"), ["2. og"]) == 0.0


def test_spatial_relevance_with_numeric_zone(make_chunk):
    zone = ChunkMetadata.from_dict({"zone": 101}).zone
    assert spatial_relevance(make_chunk("c1", zone=zone), ["raum 101"]) == 1.0


def test_type_alignment(make_chunk):
    assert type_alignment(make_chunk("a", kind="spatial"), "spatial") == 1.0
    assert type_alignment(make_chunk("b", kind="element-type"), "spatial") == pytest.approx(0.8)
    assert type_alignment(make_chunk("c", kind="system"), "spatial") == 0.3
    assert type_alignment(make_chunk("d", kind="hybrid"), "general") == 0.3


@pytest.mark.parametrize("age_days, expected", [(0, 1.0), (15, 0.5), (60, 0.0)])
def test_recency(scorer, make_chunk, age_days, expected):
    chunk = make_chunk("c1", created_at=NOW - age_days * DAY)
    assert scorer.recency(chunk) == pytest.approx(expected)


def test_text_match(scorer, make_chunk):
    chunk = make_chunk("c1", content="Fire door in the north stair core")
    assert scorer.text_match(chunk, []) == 0.0
    assert scorer.text_match(chunk, ["window"]) == 0.0
    assert scorer.text_match(chunk, ["door", "window"]) == pytest.approx(0.25)


def test_text_match_uses_idf(scorer, make_chunk):
    chunk = make_chunk("c1", content="Fire door in the north stair core")
    scorer.initialize(total_documents=100, term_frequency={"door": 1})
    assert scorer.text_match(chunk, ["door"]) > 0.5


# ------------------------------------------------------------------
# Combined score
# ------------------------------------------------------------------

def test_weighted_sum_is_weighted_mean():
    factors = ScoringFactors(1.0, 1.0, 1.0, 1.0, 1.0)
    assert weighted_sum(factors, ScoringWeights()) == pytest.approx(1.0)
    factors = ScoringFactors(0.0, 1.0, 0.0, 0.0, 0.0)
    assert weighted_sum(factors, ScoringWeights()) == pytest.approx(0.3)
    assert weighted_sum(factors, ScoringWeights(0, 0, 0, 0, 0)) == 0.0


@pytest.mark.parametrize(
    "intent",
    [
        QueryIntent(),
        QueryIntent(kind="count", entity_types=["*"], keywords=["door"]),
        QueryIntent(kind="spatial", spatial_terms=["2. og"], keywords=["wall", "floor"]),
    ],
)
def test_scores_stay_in_unit_interval(scorer, make_chunk, intent):
    chunks = [
        make_chunk("a", floor=2, entity_types=["IFCDOOR"]),
        make_chunk("b", kind="system", system="hvac", created_at=NOW - 90 * DAY),
        make_chunk("c", kind="hybrid", content="door door door"),
    ]
    for ranked in scorer.rank_chunks(chunks, intent):
        assert 0.0 <= ranked.score <= 1.0


def test_rank_chunks_best_first(scorer, make_chunk):
    intent = QueryIntent(kind="count", entity_types=["IFCDOOR"], keywords=["door"])
    doors = make_chunk("doors", content="IFCDOOR door listing", entity_types=["IFCDOOR"], created_at=NOW)
    walls = make_chunk("walls", content="IFCWALL listing", entity_types=["IFCWALL"], created_at=NOW)
    ranked = scorer.rank_chunks([walls, doors], intent)
    assert [r.chunk.id for r in ranked] == ["doors", "walls"]
    assert ranked[0].factors.entity_match == 1.0


def test_score_chunk_honours_custom_weights(scorer, make_chunk):
    chunk = make_chunk("c1", entity_types=["IFCDOOR"])
    only_entities = ScoringWeights(
        text_match=0, entity_match=1, spatial_relevance=0, recency=0, type_alignment=0
    )
    assert scorer.score_chunk(chunk, QueryIntent(entity_types=["IFCDOOR"]), only_entities) == 1.0
    assert scorer.score_chunk(chunk, QueryIntent(entity_types=["IFCWALL"]), only_entities) == 0.0

    intent = QueryIntent(kind="find", entity_types=["IFCDOOR"], keywords=["door"])
    assert scorer.score_chunk(chunk, intent) == weighted_sum(scorer.factors(chunk, intent), ScoringWeights())
