"""Tests for the element-type strategies."""

from __future__ import annotations

import pytest

from bimcontext.chunking.base import SizeOptions, common_properties, pack_greedy
from bimcontext.chunking.element_type import (
    ElementTypeStrategy,
    EnhancedElementTypeStrategy,
    aggregate_statistics,
    element_statistics,
)
from bimcontext.entity_text import entity_to_text
from bimcontext.extraction.attributes import AttributeExtractor
from bimcontext.models import Entity
from bimcontext.tokens import estimate_tokens


def _wall(i: int) -> Entity:
    # ~150 estimated tokens once rendered
    return Entity(i, "IFCWALL", name=f"Wall {i}", properties={"Comment": "x" * 520})


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def test_pack_greedy_never_splits_an_item():
    assert pack_greedy([3, 3, 3, 10, 1], lambda n: n, 6) == [[3, 3], [3], [10], [1]]


def test_pack_greedy_empty():
    assert pack_greedy([], lambda n: n, 6) == []


def test_common_properties_half_threshold():
    maps = [["Length", "FireRating"], ["Length"], ["Length", "Material"], ["Material"]]
    assert common_properties(maps) == ["Length", "Material"]


def test_element_statistics_omits_empty_keys(make_entity):
    assert element_statistics([make_entity(1)]) == {}
    stats = element_statistics(
        [Entity(1, "IFCDOOR", name="D1", object_type="T30"), Entity(2, "IFCDOOR", description="x")]
    )
    assert stats == {"Named elements": "1/2", "Object types": "T30", "With descriptions": 1}


# ------------------------------------------------------------------
# Basic strategy
# ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_twelve_walls_at_target_500_give_four_chunks():
    walls = [_wall(i) for i in range(1, 13)]
    for wall in walls:
        assert 126 <= estimate_tokens(entity_to_text(wall)) <= 166

    options = SizeOptions(target_token_size=500, max_token_size=1000, overlap_tokens=0)
    chunks = await ElementTypeStrategy().process(walls, "p1", options)

    assert len(chunks) == 4
    assert [c.metadata.entity_count for c in chunks] == [3, 3, 3, 3]
    assert all(c.token_count <= options.max_token_size for c in chunks)


@pytest.mark.asyncio
async def test_basic_chunk_content_and_metadata(make_entity):
    entities = [
        make_entity(1, name="W1", Length=4, Material="Beton"),
        make_entity(2, Length=3),
        make_entity(3, "IFCDOOR", name="D1"),
    ]
    chunks = await ElementTypeStrategy().process(entities, "p1", SizeOptions())

    assert len(chunks) == 2
    walls, doors = chunks
    assert walls.kind == "element-type"
    assert "Entity Count: IFCWALL = 2" in walls.content
    assert walls.metadata.entity_types == ["IFCWALL"]
    assert walls.metadata.entity_ids == [1, 2]
    assert walls.metadata.common_properties == ["Length", "Material"]
    assert walls.summary == "IFCWALL: 2 elements (1 named, 2 with properties)"
    assert doors.metadata.entity_types == ["IFCDOOR"]
    assert walls.version == 1


@pytest.mark.asyncio
async def test_basic_chunk_ids_unique(make_entity):
    entities = [make_entity(i, t) for i, t in enumerate(["IFCWALL", "IFCDOOR", "IFCSLAB"], start=1)]
    chunks = await ElementTypeStrategy().process(entities, "p1", SizeOptions())
    assert len({c.id for c in chunks}) == 3
    assert all(c.id.startswith("p1-element-") for c in chunks)


@pytest.mark.asyncio
async def test_basic_content_is_deterministic(make_entity):
    entities = [make_entity(i, name=f"W{i}", Length=i) for i in range(1, 6)]
    first = await ElementTypeStrategy().process(entities, "p1", SizeOptions())
    second = await ElementTypeStrategy().process(entities, "p1", SizeOptions())
    assert [c.content for c in first] == [c.content for c in second]


def test_basic_can_process():
    assert not ElementTypeStrategy().can_process([])
    assert ElementTypeStrategy().can_process([Entity(1, "IFCWALL")])


# ------------------------------------------------------------------
# Enhanced strategy
# ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_enhanced_chunk_has_aggregates(make_entity):
    entities = [
        make_entity(1, name="W1", Volume=3, Area=10, Material="Concrete"),
        make_entity(2, name="W2", Volume=1, Material="Holz"),
    ]
    (chunk,) = await EnhancedElementTypeStrategy().process(entities, "p1", SizeOptions())

    assert chunk.version == 2
    assert "p1-enhanced-ifcwall-0-" in chunk.id
    agg = chunk.metadata.aggregates
    assert agg["total_volume"] == pytest.approx(4.0)
    assert agg["total_area"] == pytest.approx(10.0)
    assert agg["total_weight"] == pytest.approx(3 * 2400 + 600)
    assert agg["volume_by_material"] == {"Concrete": 3.0, "Holz": 1.0}
    assert "Material: Concrete" in chunk.content
    assert "- Total Volume: 4.00 m³" in chunk.content
    assert {"Area", "Material", "Volume", "Weight"} <= set(chunk.metadata.common_properties)


@pytest.mark.asyncio
async def test_enhanced_uses_injected_extractor(make_entity):
    extractor = AttributeExtractor()
    await EnhancedElementTypeStrategy(extractor).process([make_entity(1, Volume=1)], "p1", SizeOptions())
    assert extractor.cache_size == 1


@pytest.mark.asyncio
async def test_aggregate_material_breakdown_sorted(make_entity):
    items = await AttributeExtractor().extract_many(
        [
            make_entity(1, Volume=1, Material="Holz"),
            make_entity(2, Volume=3, Material="Stahl"),
            make_entity(3, Volume=2),
        ]
    )
    stats = aggregate_statistics(items)
    assert [m["name"] for m in stats["material_breakdown"]] == ["Stahl", "Unknown", "Holz"]
    assert stats["material_breakdown"][0]["percentage"] == pytest.approx(50.0)
