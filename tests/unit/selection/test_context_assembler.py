"""Tests for Markdown context assembly."""

from __future__ import annotations

import pytest

from bimcontext.selection.assembler import (
    ContextAssembler,
    FormattingOptions,
    context_metadata,
    create_query_type_summary,
    highlight_keywords,
    organize_chunks,
)
from bimcontext.selection.query_analyzer import QueryIntent


@pytest.fixture
def door_chunks(make_chunk):
    return [
        make_chunk("d1", content="IFCDOOR (ID: 7)\nName: Fire door", entity_types=["IFCDOOR"],
                   floor=2, zone="North"),
        make_chunk("w1", content="IFCWALL (ID: 9)\nName: Wall", kind="spatial",
                   entity_types=["IFCWALL", "IFCDOOR"]),
    ]


@pytest.fixture
def count_intent():
    return QueryIntent(kind="count", entity_types=["IFCDOOR"], keywords=["door"], spatial_terms=["2. og"])


# ------------------------------------------------------------------
# Header and sections
# ------------------------------------------------------------------

def test_german_header(door_chunks, count_intent):
    context = ContextAssembler().assemble_context(door_chunks, count_intent)
    assert context.header.splitlines()[:5] == [
        "## Kontext für Ihre Anfrage",
        "",
        "**Abfragetyp:** Zählung von Elementen",
        "**Gesuchte Elemente:** IFCDOOR",
        "**Räumlicher Kontext:** 2. og",
    ]
    assert "**Ausgewählte Chunks:** 2" in context.header


def test_english_sections_and_full_chunks(door_chunks, count_intent):
    options = FormattingOptions(language="en")
    rendered = ContextAssembler().assemble_context(door_chunks, count_intent, options=options).render()

    assert rendered.startswith("## Context for Your Query")
    assert "### Element Types (1 chunks)" in rendered
    assert "### Spatial Information (1 chunks)" in rendered
    assert "#### Chunk 1: summary of d1" in rendered
    assert "- Location: Floor 2, Zone North" in rendered
    assert "```\nIFCDOOR (ID: 7)\nName: Fire door\n```" in rendered


def test_compact_mode_shows_relevant_types(door_chunks, count_intent):
    options = FormattingOptions(compact_mode=True, language="en")
    context = ContextAssembler().assemble_context(door_chunks, count_intent, options=options)
    assert "**[1]** summary of d1 | Floor 2, Zone North" in context.content
    assert "> IFCDOOR" in context.content
    assert "```" not in context.render()


def test_compact_preview_without_metadata(door_chunks, count_intent):
    options = FormattingOptions(compact_mode=True, include_metadata=False)
    content = ContextAssembler().assemble_context(door_chunks, count_intent, options=options).content
    assert "> IFCDOOR (ID: 7)\nName: Fire door..." in content


def test_without_headers(door_chunks, count_intent):
    options = FormattingOptions(include_headers=False)
    context = ContextAssembler().assemble_context(door_chunks, count_intent, options=options)
    assert context.header == ""
    assert not any(line.startswith("###") and not line.startswith("####") for line in context.content)


def test_keywords_highlighted_in_full_mode(door_chunks, count_intent):
    options = FormattingOptions(highlight_keywords=True)
    rendered = ContextAssembler().assemble_context(door_chunks, count_intent, options=options).render()
    assert "Fire **door**" in rendered


def test_highlight_whole_words_only():
    assert highlight_keywords("The Door and doors", ["door"]) == "The **Door** and doors"


# ------------------------------------------------------------------
# Ordering and metadata
# ------------------------------------------------------------------

def test_organize_by_score_then_tokens(make_chunk):
    short = make_chunk("short", content="a")
    long = make_chunk("long", content="word " * 50)
    best = make_chunk("best", content="word " * 80)
    scores = {"best": 0.95, "long": 0.6, "short": 0.55}
    organized = organize_chunks([long, short, best], QueryIntent(), scores)
    assert [c.id for c in organized["element-type"]] == ["best", "short", "long"]


def test_spatial_ties_order_by_floor(make_chunk):
    upper = make_chunk("upper", kind="spatial", floor=3)
    lower = make_chunk("lower", kind="spatial", content="longer text here", floor=1)
    organized = organize_chunks([upper, lower], QueryIntent(kind="spatial"), {})
    assert [c.id for c in organized["spatial"]] == ["lower", "upper"]


def test_context_metadata(door_chunks):
    meta = context_metadata(door_chunks)
    assert meta.total_chunks == 2
    assert meta.total_tokens == sum(c.token_count for c in door_chunks)
    assert meta.coverage == 10
    assert meta.chunk_kinds == {"element-type": 1, "spatial": 1}
    assert meta.format_version == "1.0"


# ------------------------------------------------------------------
# Query-type summaries
# ------------------------------------------------------------------

def test_count_summary_adds_entity_counts(make_chunk):
    chunks = [
        make_chunk("a", content="Entity Count: IFCDOOR = 3"),
        make_chunk("b", content="Entity Count: IFCDOOR = 2\nEntity Count: IFCWALL = 4"),
    ]
    assert create_query_type_summary(chunks, QueryIntent(kind="count")) == [
        "**Gefundene Anzahlen:**",
        "- IFCDOOR: 5",
        "- IFCWALL: 4",
    ]


def test_spatial_summary_by_floor(make_chunk):
    chunks = [make_chunk("a", floor=2), make_chunk("b", floor=1), make_chunk("c", floor=2)]
    assert create_query_type_summary(chunks, QueryIntent(kind="spatial"), "en") == [
        "**Distribution by Floor:**",
        "- Floor 1: 1 chunks",
        "- Floor 2: 2 chunks",
    ]


def test_find_and_system_summaries(make_chunk):
    chunks = [make_chunk("a", floor=2, system="hvac"), make_chunk("b", floor=2)]
    assert create_query_type_summary(chunks, QueryIntent(kind="find")) == ["**Gefunden in:** Etage 2"]
    assert create_query_type_summary(chunks, QueryIntent(kind="system"), "en") == ["**Found Systems:** hvac"]


def test_general_summary(make_chunk):
    assert create_query_type_summary([make_chunk("a")], QueryIntent(), "en") == [
        "**Overview:** Found 1 relevant sections"
    ]
