"""Query-adaptive strategy: pre-aggregated chunks for common question patterns.

Each :class:`QueryPattern` names the attributes it needs, an optional
entity-type filter and whether spatial or system context matters. The
strategy extracts only those attribute groups, groups the entities the way
the pattern expects and renders a pattern-specific report per group.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from bimcontext.chunking.base import (
    MAX_ENTITY_IDS,
    ChunkStrategy,
    SizeOptions,
    StrategyKind,
    unique_types,
)
from bimcontext.extraction.attributes import (
    AttributeExtractor,
    EnhancedEntity,
    ExtractionOptions,
)
from bimcontext.models import Chunk, ChunkMetadata, Entity

logger = logging.getLogger(__name__)

MIN_CHUNK_TOKENS = 100
PROXIMITY_BUCKET = 100

# EUR per m³, first keyword contained in the material name wins.
COST_PER_M3: tuple[tuple[str, float], ...] = (
    ("stahlbeton", 200),
    ("concrete", 150),
    ("beton", 150),
    ("steel", 500),
    ("stahl", 500),
    ("wood", 300),
    ("holz", 300),
)
DEFAULT_COST_PER_M3 = 100.0

# Coarse building-part families, matched as substrings of the entity type.
_COMPONENT_FAMILIES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("structural", ("WALL", "SLAB", "BEAM", "COLUMN", "FOUNDATION")),
    ("envelope", ("WINDOW", "DOOR", "CURTAINWALL", "ROOF")),
    ("interior", ("FURNITURE", "STAIR", "RAILING")),
    ("mep", ("PIPE", "DUCT", "CABLE", "EQUIPMENT")),
)


@dataclass(frozen=True)
class QueryPattern:
    """A recurring question shape the chunk set should answer directly.

    ``frequency`` is a ranking hint only; nothing tunes it automatically.
    """

    id: str
    name: str
    frequency: int
    attributes: tuple[str, ...]
    entity_types: tuple[str, ...] = ()
    spatial_context: bool = False
    system_context: bool = False

    def extraction_options(self) -> ExtractionOptions:
        attrs = set(self.attributes)
        return ExtractionOptions(
            geometry=bool(attrs & {"volume", "area", "dimensions"}),
            materials=bool(attrs & {"material", "weight"}),
            quantities=bool(attrs & {"quantity", "cost", "weight"}),
            relationships=self.spatial_context or self.system_context,
            custom=False,
        )


DEFAULT_PATTERNS: tuple[QueryPattern, ...] = (
    QueryPattern(
        id="volume-by-material",
        name="Volume Analysis by Material",
        frequency=100,
        attributes=("volume", "material", "weight"),
        entity_types=("IFCWALL", "IFCSLAB", "IFCBEAM", "IFCCOLUMN"),
    ),
    QueryPattern(
        id="spatial-quantities",
        name="Spatial Quantity Analysis",
        frequency=80,
        attributes=("volume", "area", "count"),
        spatial_context=True,
    ),
    QueryPattern(
        id="cost-analysis",
        name="Cost Estimation",
        frequency=60,
        attributes=("volume", "material", "cost"),
    ),
    QueryPattern(
        id="system-components",
        name="System Component Analysis",
        frequency=50,
        attributes=("type", "count", "connections"),
        system_context=True,
    ),
)


@dataclass
class PatternUsage:
    """One observed query, as fed to :meth:`QueryAdaptiveStrategy.update_patterns`."""

    query_intent: str
    attributes: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------


def _volume(item: EnhancedEntity) -> float:
    if item.geometry is None:
        return 0.0
    return item.geometry.volume or 0.0


def _area(item: EnhancedEntity) -> float:
    if item.geometry is None:
        return 0.0
    return item.geometry.area or 0.0


def _weight(item: EnhancedEntity) -> float:
    weight = item.quantity("weight")
    return weight.value if weight is not None else 0.0


def group_for_pattern(
    items: Sequence[EnhancedEntity], pattern: QueryPattern
) -> dict[str, list[EnhancedEntity]]:
    groups: dict[str, list[EnhancedEntity]] = {}

    if pattern.id == "volume-by-material":
        for item in items:
            material = item.primary_material
            key = material.name if material is not None else "unknown"
            groups.setdefault(key, []).append(item)
    elif pattern.id == "spatial-quantities":
        # Identifier buckets stand in for real spatial proximity.
        for item in items:
            bucket = (item.entity.express_id // PROXIMITY_BUCKET) * PROXIMITY_BUCKET
            groups.setdefault(f"spatial_group_{bucket}", []).append(item)
    elif pattern.id == "system-components":
        for item in items:
            family = next(
                (
                    name
                    for name, needles in _COMPONENT_FAMILIES
                    if any(n in item.entity.type for n in needles)
                ),
                "other",
            )
            groups.setdefault(family, []).append(item)
    else:
        groups["all"] = list(items)

    return groups


def cost_per_m3(material_name: str) -> float:
    name = material_name.lower()
    for keyword, rate in COST_PER_M3:
        if keyword in name:
            return float(rate)
    return DEFAULT_COST_PER_M3


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _format_volume_by_material(items: Sequence[EnhancedEntity]) -> str:
    total_volume = sum(_volume(i) for i in items)
    total_weight = sum(_weight(i) for i in items)

    by_type: dict[str, list[float]] = {}
    for item in items:
        entry = by_type.setdefault(item.entity.type, [0, 0.0])
        entry[0] += 1
        entry[1] += _volume(item)

    lines = [
        f"Total Volume: {total_volume:.2f} m³",
        f"Total Weight: {total_weight / 1000:.2f} tons",
        f"Total Elements: {len(items)}",
        "",
        "## Breakdown by Element Type:",
    ]
    for type_name, (count, volume) in sorted(by_type.items(), key=lambda kv: kv[1][1], reverse=True):
        lines.append(f"- {type_name}: {count:.0f} elements, {volume:.2f} m³")

    lines.extend(["", "## Elements:"])
    for item in items:
        entity = item.entity
        lines.append(f"- {entity.type} [{entity.express_id}]: {entity.name or 'Unnamed'}")
        if _volume(item):
            lines.append(f"  Volume: {_volume(item):.3f} m³")
        weight = item.quantity("weight")
        if weight is not None:
            lines.append(f"  Weight: {weight.value:.0f} kg")

    return "\n".join(lines)


def _format_spatial_quantities(items: Sequence[EnhancedEntity]) -> str:
    by_type: dict[str, dict[str, float]] = {}
    for item in items:
        entry = by_type.setdefault(item.entity.type, {"count": 0, "volume": 0.0, "area": 0.0})
        entry["count"] += 1
        entry["volume"] += _volume(item)
        entry["area"] += _area(item)

    lines = ["## Spatial Quantities Summary:", ""]
    for type_name, data in sorted(by_type.items(), key=lambda kv: kv[1]["volume"], reverse=True):
        lines.append(f"### {type_name}")
        lines.append(f"- Count: {data['count']:.0f}")
        if data["volume"] > 0:
            lines.append(f"- Total Volume: {data['volume']:.2f} m³")
        if data["area"] > 0:
            lines.append(f"- Total Area: {data['area']:.2f} m²")
        lines.append("")

    return "\n".join(lines)


def _format_cost_analysis(items: Sequence[EnhancedEntity]) -> str:
    total = 0.0
    by_type: dict[str, float] = {}
    for item in items:
        material = item.primary_material
        rate = cost_per_m3(material.name) if material is not None else DEFAULT_COST_PER_M3
        cost = _volume(item) * rate
        total += cost
        by_type[item.entity.type] = by_type.get(item.entity.type, 0.0) + cost

    lines = [
        "## Cost Analysis (Estimated):",
        "",
        f"Total Estimated Cost: €{total:.0f}",
        "",
        "Cost by Element Type:",
    ]
    for type_name, cost in sorted(by_type.items(), key=lambda kv: kv[1], reverse=True):
        lines.append(f"- {type_name}: €{cost:.0f}")

    return "\n".join(lines)


def _format_generic(items: Sequence[EnhancedEntity]) -> str:
    counts: dict[str, int] = {}
    for item in items:
        counts[item.entity.type] = counts.get(item.entity.type, 0) + 1

    lines = [f"Total Elements: {len(items)}", "", "Elements by Type:"]
    for type_name, count in sorted(counts.items(), key=lambda kv: kv[1], reverse=True):
        lines.append(f"- {type_name}: {count}")
    return "\n".join(lines)


def format_pattern_content(
    items: Sequence[EnhancedEntity], pattern: QueryPattern, group_key: str
) -> str:
    if pattern.id == "volume-by-material":
        title, body = f"# Material Group: {group_key}", _format_volume_by_material(items)
    elif pattern.id == "spatial-quantities":
        title, body = f"# Spatial Group: {group_key}", _format_spatial_quantities(items)
    elif pattern.id == "cost-analysis":
        title, body = "# Cost Analysis", _format_cost_analysis(items)
    else:
        title, body = f"# {pattern.name}", _format_generic(items)
    return "\n".join([title, "", body])


# ---------------------------------------------------------------------------
# Strategy
# ---------------------------------------------------------------------------


class QueryAdaptiveStrategy(ChunkStrategy):
    name = "query-adaptive"
    kind = StrategyKind.QUERY_ADAPTIVE
    chunk_kind = "hybrid"

    def __init__(
        self,
        extractor: AttributeExtractor | None = None,
        patterns: Iterable[QueryPattern] | None = None,
    ) -> None:
        self._extractor = extractor or AttributeExtractor()
        self.patterns: list[QueryPattern] = list(patterns if patterns is not None else DEFAULT_PATTERNS)

    def can_process(self, entities: Sequence[Entity]) -> bool:
        return len(entities) > 0

    async def process(
        self, entities: Sequence[Entity], project_id: str, options: SizeOptions
    ) -> list[Chunk]:
        chunks: list[Chunk] = []
        ts = self.timestamp_ms()

        for pattern in self.patterns:
            produced = await self._process_pattern(entities, pattern, project_id, ts)
            logger.debug("Pattern %s produced %d chunks", pattern.id, len(produced))
            chunks.extend(produced)

        return chunks

    async def _process_pattern(
        self, entities: Sequence[Entity], pattern: QueryPattern, project_id: str, ts: int
    ) -> list[Chunk]:
        relevant = list(entities)
        if pattern.entity_types:
            relevant = [e for e in relevant if e.type in pattern.entity_types]
        if not relevant:
            return []

        items = await self._extractor.extract_many(relevant, pattern.extraction_options())

        chunks: list[Chunk] = []
        for index, (group_key, members) in enumerate(group_for_pattern(items, pattern).items()):
            member_entities = [m.entity for m in members]
            aggregates = None
            if "volume" in pattern.attributes:
                aggregates = {"total_volume": sum(_volume(m) for m in members)}

            chunk = Chunk.create(
                id=self.make_id(project_id, f"adaptive-{pattern.id}", index, ts),
                project_id=project_id,
                kind="hybrid",
                content=format_pattern_content(members, pattern, group_key),
                summary=f"{pattern.name} - {group_key}: {len(members)} elements",
                metadata=ChunkMetadata(
                    entity_types=unique_types(member_entities),
                    entity_count=len(members),
                    entity_ids=[e.express_id for e in member_entities][:MAX_ENTITY_IDS],
                    query_pattern=pattern.id,
                    aggregates=aggregates,
                    extra={"group_key": group_key},
                ),
                version=2,
            )
            if chunk.token_count >= MIN_CHUNK_TOKENS:
                chunks.append(chunk)

        return chunks

    def update_patterns(self, usage: Iterable[PatternUsage]) -> None:
        """Hook for re-ranking patterns from observed usage; currently a no-op."""
        return None
