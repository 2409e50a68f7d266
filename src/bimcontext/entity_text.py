"""Render entities as readable text blocks for chunk bodies."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from bimcontext.models import Entity


def group_by_type(entities: Iterable[Entity]) -> dict[str, list[Entity]]:
    """Group *entities* by ``type``, keeping first-seen type order."""
    groups: dict[str, list[Entity]] = {}
    for entity in entities:
        groups.setdefault(entity.type, []).append(entity)
    return groups


def entity_to_text(entity: Entity) -> str:
    """Render one entity: type/id line, identity fields, then properties."""
    parts = [f"{entity.type} (ID: {entity.express_id})"]

    if entity.name:
        parts.append(f"Name: {entity.name}")
    if entity.description:
        parts.append(f"Description: {entity.description}")
    if entity.object_type:
        parts.append(f"Object Type: {entity.object_type}")
    if entity.tag:
        parts.append(f"Tag: {entity.tag}")

    props = [f"  {k}: {v}" for k, v in entity.properties.items() if v is not None]
    if props:
        parts.append("Properties:")
        parts.extend(props)

    return "\n".join(parts)


def entities_to_text(
    entities: Iterable[Entity],
    *,
    include_properties: bool = True,
    group_by: bool = True,
    max_per_type: int = 100,
) -> str:
    """Render many entities, grouped under ``## TYPE (n entities)`` headings.

    At most *max_per_type* entities are shown per type; the remainder is
    summarised as ``... and k more``. With ``group_by=False`` the first
    *max_per_type* entities are rendered in input order.
    """
    items = list(entities)
    if not group_by:
        return "\n\n".join(entity_to_text(e) for e in items[:max_per_type])

    parts: list[str] = []
    for type_name, members in group_by_type(items).items():
        parts.append(f"\n## {type_name} ({len(members)} entities)")
        for entity in members[:max_per_type]:
            if include_properties:
                parts.append("\n" + entity_to_text(entity))
            else:
                parts.append(f"- {entity.name or 'Unnamed'} (ID: {entity.express_id})")
        if len(members) > max_per_type:
            parts.append(f"... and {len(members) - max_per_type} more")

    return "\n".join(parts)


def create_summary(entities: Iterable[Entity]) -> str:
    """Return a count breakdown by type, most frequent first.

    Floors and positioned-entity counts from :func:`extract_spatial_info`
    are listed when the entities carry them.
    """
    items = list(entities)
    grouped = group_by_type(items)
    spatial = extract_spatial_info(items)

    lines = [f"Total entities: {len(items)}", f"Entity types: {len(grouped)}"]
    if spatial.floors:
        lines.append(f"Floors: {', '.join(str(f) for f in sorted(spatial.floors))}")
    if spatial.with_position:
        lines.append(f"Positioned entities: {spatial.with_position}")
    lines.append("\nBreakdown by type:")
    for type_name, members in sorted(grouped.items(), key=lambda kv: len(kv[1]), reverse=True):
        lines.append(f"- {type_name}: {len(members)}")
    return "\n".join(lines)


@dataclass
class SpatialInfo:
    floors: set[int] = field(default_factory=set)
    with_position: int = 0


def extract_spatial_info(entities: Iterable[Entity]) -> SpatialInfo:
    """Collect floor numbers and positioned-entity counts from properties.

    Reads ``properties["floor"]`` and the x/y/z property triple; malformed
    floor values are skipped.
    """
    info = SpatialInfo()
    for entity in entities:
        props = entity.properties
        floor = props.get("floor")
        if floor is not None:
            try:
                info.floors.add(int(float(floor)))
            except (TypeError, ValueError):
                pass
        if entity.position is not None or all(props.get(k) is not None for k in ("x", "y", "z")):
            info.with_position += 1
    return info
