"""Element-type strategies: chunks of same-typed entities, filled to a target size.

``ElementTypeStrategy`` renders entities with their raw properties.
``EnhancedElementTypeStrategy`` first runs every entity through the
attribute extractor and renders dimensions, materials and weights, plus
aggregate volume/area/weight statistics per chunk (schema version 2).
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from bimcontext.chunking.base import (
    ChunkStrategy,
    SizeOptions,
    StrategyKind,
    common_properties,
    pack_greedy,
)
from bimcontext.entity_text import entities_to_text, entity_to_text, group_by_type
from bimcontext.extraction.attributes import (
    AttributeExtractor,
    EnhancedEntity,
    ExtractionOptions,
)
from bimcontext.models import Chunk, ChunkMetadata, Entity
from bimcontext.tokens import estimate_tokens

_SKIPPED_PROPERTIES = frozenset(["Name", "Description", "ObjectType"])
_ALWAYS_COMMON = ("Area", "Material", "Volume", "Weight")


# ---------------------------------------------------------------------------
# Basic
# ---------------------------------------------------------------------------


def element_statistics(entities: Sequence[Entity]) -> dict[str, Any]:
    """Named ratio, distinct object types and description count; empty keys omitted."""
    stats: dict[str, Any] = {}

    named = sum(1 for e in entities if e.name)
    if named:
        stats["Named elements"] = f"{named}/{len(entities)}"

    object_types = list(dict.fromkeys(e.object_type for e in entities if e.object_type))
    if object_types:
        stats["Object types"] = ", ".join(object_types)

    described = sum(1 for e in entities if e.description)
    if described:
        stats["With descriptions"] = described

    return stats


class ElementTypeStrategy(ChunkStrategy):
    name = "element-type"
    kind = StrategyKind.ELEMENT_TYPE
    chunk_kind = "element-type"

    def can_process(self, entities: Sequence[Entity]) -> bool:
        return len(entities) > 0

    async def process(
        self, entities: Sequence[Entity], project_id: str, options: SizeOptions
    ) -> list[Chunk]:
        chunks: list[Chunk] = []
        ts = self.timestamp_ms()

        for entity_type, members in group_by_type(entities).items():
            batches = pack_greedy(
                members,
                lambda e: estimate_tokens(entity_to_text(e)),
                options.target_token_size,
            )
            for batch in batches:
                chunks.append(self._make_chunk(batch, entity_type, project_id, len(chunks), ts))

        return chunks

    def _make_chunk(
        self, entities: list[Entity], entity_type: str, project_id: str, index: int, ts: int
    ) -> Chunk:
        stats = element_statistics(entities)
        parts = [f"# {entity_type} Elements", "", f"Entity Count: {entity_type} = {len(entities)}", ""]
        if stats:
            parts.append("## Statistics:")
            parts.extend(f"- {key}: {value}" for key, value in stats.items())
            parts.append("")
        parts.append("## Elements:")
        parts.append(entities_to_text(entities, group_by=False, max_per_type=200))

        named = sum(1 for e in entities if e.name)
        with_props = sum(1 for e in entities if e.properties)

        return Chunk.create(
            id=self.make_id(project_id, "element", index, ts),
            project_id=project_id,
            kind="element-type",
            content="\n".join(parts),
            summary=(
                f"{entity_type}: {len(entities)} elements "
                f"({named} named, {with_props} with properties)"
            ),
            metadata=ChunkMetadata(
                entity_types=[entity_type],
                entity_count=len(entities),
                entity_ids=[e.express_id for e in entities],
                common_properties=common_properties([list(e.properties) for e in entities]),
                extra={"statistics": stats},
            ),
        )


# ---------------------------------------------------------------------------
# Attribute-enhanced
# ---------------------------------------------------------------------------


def format_enhanced_entity(item: EnhancedEntity) -> str:
    """Render one enriched entity block (``### TYPE [ID: n]`` and attribute lines)."""
    entity = item.entity
    lines = [f"### {entity.type} [ID: {entity.express_id}]"]
    if entity.name:
        lines.append(f"Name: {entity.name}")
    if entity.description:
        lines.append(f"Description: {entity.description}")

    geo = item.geometry
    if geo is not None:
        dims = []
        if geo.length:
            dims.append(f"L={geo.length:.2f}m")
        if geo.width:
            dims.append(f"W={geo.width:.2f}m")
        if geo.height:
            dims.append(f"H={geo.height:.2f}m")
        if geo.thickness:
            dims.append(f"T={geo.thickness:.3f}m")
        if dims:
            lines.append(f"Dimensions: {', '.join(dims)}")
        if geo.area:
            lines.append(f"Area: {geo.area:.2f} m²")
        if geo.volume:
            lines.append(f"Volume: {geo.volume:.3f} m³")

    material = item.primary_material
    if material is not None:
        lines.append(f"Material: {material.name}")
        if material.density:
            lines.append(f"Density: {material.density:g} kg/m³")

    weight = item.quantity("weight")
    if weight is not None:
        lines.append(f"Weight: {weight.value:.0f} {weight.unit}")

    relevant = [(k, v) for k, v in entity.properties.items() if k not in _SKIPPED_PROPERTIES][:5]
    if relevant:
        lines.append("Properties:")
        lines.extend(f"  - {k}: {v}" for k, v in relevant)

    return "\n".join(lines)


def aggregate_statistics(items: Sequence[EnhancedEntity]) -> dict[str, Any]:
    """Sum volume, area and weight; break volume down by primary material.

    ``material_breakdown`` is sorted by volume, largest first, each entry
    carrying its share of the total volume in percent.
    """
    total_volume = 0.0
    total_area = 0.0
    total_weight = 0.0
    by_material: dict[str, float] = {}

    for item in items:
        geo = item.geometry
        if geo is not None and geo.volume:
            total_volume += geo.volume
            material = item.primary_material
            name = material.name if material is not None else "Unknown"
            by_material[name] = by_material.get(name, 0.0) + geo.volume
        if geo is not None and geo.area:
            total_area += geo.area
        weight = item.quantity("weight")
        if weight is not None:
            total_weight += weight.value

    breakdown = sorted(
        (
            {
                "name": name,
                "volume": volume,
                "percentage": (volume / total_volume * 100) if total_volume > 0 else 0.0,
            }
            for name, volume in by_material.items()
        ),
        key=lambda m: m["volume"],
        reverse=True,
    )
    return {
        "total_volume": total_volume,
        "total_area": total_area,
        "total_weight": total_weight,
        "material_breakdown": breakdown,
    }


class EnhancedElementTypeStrategy(ChunkStrategy):
    """Element-type chunks enriched through an :class:`AttributeExtractor`.

    The extractor is injected so its cache is scoped to one chunking run.
    """

    name = "enhanced-element-type"
    kind = StrategyKind.ELEMENT_TYPE
    chunk_kind = "element-type"

    def __init__(self, extractor: AttributeExtractor | None = None) -> None:
        self._extractor = extractor or AttributeExtractor()

    def can_process(self, entities: Sequence[Entity]) -> bool:
        return len(entities) > 0

    async def process(
        self, entities: Sequence[Entity], project_id: str, options: SizeOptions
    ) -> list[Chunk]:
        chunks: list[Chunk] = []
        ts = self.timestamp_ms()
        wanted = ExtractionOptions(geometry=True, materials=True, quantities=True)

        for entity_type, members in group_by_type(entities).items():
            enhanced = await self._extractor.extract_many(members, wanted)
            batches = pack_greedy(
                enhanced,
                lambda item: estimate_tokens(format_enhanced_entity(item)),
                options.target_token_size,
            )
            for batch in batches:
                chunks.append(self._make_chunk(batch, entity_type, project_id, len(chunks), ts))

        return chunks

    def _make_chunk(
        self,
        items: list[EnhancedEntity],
        entity_type: str,
        project_id: str,
        index: int,
        ts: int,
    ) -> Chunk:
        stats = aggregate_statistics(items)
        parts = [
            f"# {entity_type} Elements with Full Attributes",
            "",
            f"Total elements: {len(items)}",
            "",
        ]
        if stats["total_volume"] or stats["total_area"] or stats["total_weight"]:
            parts.append("## Aggregated Data:")
            if stats["total_volume"]:
                parts.append(f"- Total Volume: {stats['total_volume']:.2f} m³")
            if stats["total_area"]:
                parts.append(f"- Total Area: {stats['total_area']:.2f} m²")
            if stats["total_weight"]:
                parts.append(f"- Total Weight: {stats['total_weight']:.0f} kg")
            if stats["material_breakdown"]:
                parts.append("- Materials:")
                for mat in stats["material_breakdown"]:
                    parts.append(
                        f"  * {mat['name']}: {mat['volume']:.2f} m³ ({mat['percentage']:.1f}%)"
                    )
            parts.append("")

        parts.append("## Elements:")
        for item in items:
            parts.append(format_enhanced_entity(item))
            parts.append("")

        summary = [f"{entity_type}: {len(items)} elements"]
        if stats["total_volume"]:
            summary.append(f"{stats['total_volume']:.1f}m³")
        if stats["total_weight"]:
            summary.append(f"{stats['total_weight'] / 1000:.1f}t")

        frequent = common_properties([list(i.entity.properties) for i in items])
        return Chunk.create(
            id=self.make_id(project_id, f"enhanced-{entity_type.lower()}", index, ts),
            project_id=project_id,
            kind="element-type",
            content="\n".join(parts),
            summary=", ".join(summary),
            metadata=ChunkMetadata(
                entity_types=[entity_type],
                entity_count=len(items),
                entity_ids=[i.entity.express_id for i in items],
                common_properties=sorted(set(frequent).union(_ALWAYS_COMMON)),
                aggregates={
                    "total_volume": stats["total_volume"],
                    "total_area": stats["total_area"],
                    "total_weight": stats["total_weight"],
                    "volume_by_material": {
                        m["name"]: m["volume"] for m in stats["material_breakdown"]
                    },
                },
            ),
            version=2,
        )
