"""Spatial strategy: one chunk per storey, space or zone.

The model input carries no containment relationships, so grouping relies
on a placeholder heuristic: entities whose identifier lies near a storey's
identifier are assumed to sit on that storey. The grouper is pluggable so
real spatial-hierarchy data can replace it without touching the strategy.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from bimcontext.chunking.base import (
    MAX_ENTITY_IDS,
    ChunkStrategy,
    SizeOptions,
    StrategyKind,
    unique_types,
)
from bimcontext.entity_text import entities_to_text
from bimcontext.models import Chunk, ChunkMetadata, Entity, union_boxes
from bimcontext.tokens import estimate_tokens

logger = logging.getLogger(__name__)

SPATIAL_TYPES = frozenset(
    ["IFCBUILDINGSTOREY", "IFCSPACE", "IFCZONE", "IFCSITE", "IFCBUILDING"]
)

STOREY_WINDOW = 1000
SPACE_WINDOW = 500

MIN_GROUP_ENTITIES = 5
MIN_GROUP_TOKENS = 100

_FIRST_INT = re.compile(r"-?\d+")


@dataclass
class SpatialGroup:
    """Entities assigned to one spatial context."""

    context: str
    entities: list[Entity] = field(default_factory=list)
    floor: int | None = None
    zone: str | None = None


SpatialGrouper = Callable[[Sequence[Entity]], list[SpatialGroup]]


# ---------------------------------------------------------------------------
# Identifier-proximity grouping
# ---------------------------------------------------------------------------


def _floor_from_name(name: str | None, ordinal: int) -> int:
    if name:
        match = _FIRST_INT.search(name)
        if match:
            return int(match.group())
    return ordinal


def _assign_nearest(
    entities: Sequence[Entity], anchors: Sequence[Entity], window: int
) -> dict[int, list[Entity]]:
    """Map anchor id → entities whose nearest anchor lies within *window*.

    Ties go to the anchor with the lower identifier; entities farther than
    *window* from every anchor are left out.
    """
    ordered = sorted(anchors, key=lambda a: a.express_id)
    members: dict[int, list[Entity]] = {a.express_id: [] for a in ordered}

    for entity in entities:
        best: Entity | None = None
        best_distance = window
        for anchor in ordered:
            distance = abs(entity.express_id - anchor.express_id)
            if distance < best_distance:
                best, best_distance = anchor, distance
        if best is not None:
            members[best.express_id].append(entity)

    return members


def group_by_identifier_proximity(entities: Sequence[Entity]) -> list[SpatialGroup]:
    """Default grouper; a placeholder for real containment data.

    Assumes entities with identifiers close to a storey's identifier are
    located on that storey (window 1000). Without storeys, spaces and zones
    anchor groups with a tighter window (500). Without either, every entity
    lands in a single ``General`` group.
    """
    storeys = sorted(
        (e for e in entities if e.type == "IFCBUILDINGSTOREY"), key=lambda e: e.express_id
    )
    if storeys:
        members = _assign_nearest(entities, storeys, STOREY_WINDOW)
        return [
            SpatialGroup(
                context=storey.name or f"Floor_{storey.express_id}",
                entities=members[storey.express_id],
                floor=_floor_from_name(storey.name, ordinal),
            )
            for ordinal, storey in enumerate(storeys)
        ]

    spaces = sorted(
        (e for e in entities if e.type in ("IFCSPACE", "IFCZONE")), key=lambda e: e.express_id
    )
    if spaces:
        members = _assign_nearest(entities, spaces, SPACE_WINDOW)
        groups = []
        for space in spaces:
            context = space.name or f"Space_{space.express_id}"
            groups.append(
                SpatialGroup(context=context, entities=members[space.express_id], zone=context)
            )
        return groups

    return [SpatialGroup(context="General", entities=list(entities))]


# ---------------------------------------------------------------------------
# Strategy
# ---------------------------------------------------------------------------


class SpatialStrategy(ChunkStrategy):
    """Groups entities by spatial parent and renders one chunk per group."""

    name = "spatial"
    kind = StrategyKind.SPATIAL
    chunk_kind = "spatial"

    def __init__(self, grouper: SpatialGrouper | None = None) -> None:
        self._grouper = grouper or group_by_identifier_proximity

    def can_process(self, entities: Sequence[Entity]) -> bool:
        return any(e.type in SPATIAL_TYPES for e in entities)

    async def process(
        self, entities: Sequence[Entity], project_id: str, options: SizeOptions
    ) -> list[Chunk]:
        chunks: list[Chunk] = []
        ts = self.timestamp_ms()

        for group in self._grouper(entities):
            members = group.entities
            content = entities_to_text(members, include_properties=True, max_per_type=100)

            if len(members) < MIN_GROUP_ENTITIES or estimate_tokens(content) < MIN_GROUP_TOKENS:
                logger.debug("Skipping spatial group %r (%d entities)", group.context, len(members))
                continue

            metadata = ChunkMetadata(
                entity_types=unique_types(members),
                entity_count=len(members),
                entity_ids=[e.express_id for e in members][:MAX_ENTITY_IDS],
                floor=group.floor,
                zone=group.zone or group.context,
                bbox=union_boxes(e.bounding_box for e in members),
            )
            chunks.append(
                Chunk.create(
                    id=self.make_id(project_id, "spatial", len(chunks), ts),
                    project_id=project_id,
                    kind="spatial",
                    content=content,
                    summary=f"Spatial group: {group.context} with {len(members)} entities",
                    metadata=metadata,
                )
            )

        return chunks
