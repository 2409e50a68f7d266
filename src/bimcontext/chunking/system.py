"""System strategy: one chunk per building-services discipline."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence

from bimcontext.chunking.base import (
    MAX_ENTITY_IDS,
    ChunkStrategy,
    SizeOptions,
    StrategyKind,
    unique_types,
)
from bimcontext.entity_text import create_summary, entities_to_text
from bimcontext.models import Chunk, ChunkMetadata, Entity
from bimcontext.tokens import estimate_tokens

logger = logging.getLogger(__name__)

# Checked in order; a type listed under several disciplines belongs to the first.
SYSTEM_TYPES: dict[str, tuple[str, ...]] = {
    "hvac": (
        "IFCAIRTERMININAL", "IFCAIRTERMINALBOX", "IFCCOIL", "IFCDAMPER",
        "IFCDUCT", "IFCDUCTSEGMENT", "IFCFAN", "IFCFILTER",
        "IFCHEATEXCHANGER", "IFCHUMIDIFIER", "IFCPIPESEGMENT", "IFCPUMP",
        "IFCVALVE", "IFCBOILER", "IFCCHILLER", "IFCCOOLINGTOWER",
    ),
    "electrical": (
        "IFCCABLECARRIERFITTING", "IFCCABLECARRIERSEGMENT", "IFCCABLESEGMENT",
        "IFCELECTRICAPPLIANCE", "IFCELECTRICDISTRIBUTIONBOARD",
        "IFCELECTRICFLOWSTORAGEDEVICE", "IFCELECTRICGENERATOR", "IFCELECTRICMOTOR",
        "IFCLAMP", "IFCLIGHTFIXTURE", "IFCMOTORCONNECTION", "IFCOUTLET",
        "IFCSWITCHINGDEVICE", "IFCTRANSFORMER",
    ),
    "plumbing": (
        "IFCPIPESEGMENT", "IFCPIPEFITTING", "IFCFLOWMETER", "IFCPUMP",
        "IFCSANITARYTERMINAL", "IFCTANK", "IFCVALVE", "IFCWASTETERMINAL",
        "IFCFIRESUPPRESSIONTERMINAL", "IFCINTERCEPTOR",
    ),
    "structural": (
        "IFCBEAM", "IFCCOLUMN", "IFCFOOTING", "IFCMEMBER", "IFCPILE",
        "IFCPLATE", "IFCRAILING", "IFCRAMP", "IFCRAMPFLIGHT", "IFCREINFORCINGELEMENT",
        "IFCSLAB", "IFCSTAIR", "IFCSTAIRFLIGHT", "IFCWALL", "IFCWALLSTANDARDCASE",
    ),
}

SYSTEMS: tuple[str, ...] = (*SYSTEM_TYPES, "other")

MIN_GROUP_ENTITIES = 3
MIN_GROUP_TOKENS = 50

_ALL_SYSTEM_TYPES = frozenset(t for types in SYSTEM_TYPES.values() for t in types)


def classify_system(entity_type: str) -> str | None:
    """Return the discipline for *entity_type*, ``"other"`` for generic
    distribution/flow types, or None when the type belongs to no system."""
    for system, types in SYSTEM_TYPES.items():
        if entity_type in types:
            return system
    if "DISTRIBUTION" in entity_type or "FLOW" in entity_type:
        return "other"
    return None


def group_by_system(entities: Sequence[Entity]) -> dict[str, list[Entity]]:
    groups: dict[str, list[Entity]] = {system: [] for system in SYSTEMS}
    for entity in entities:
        system = classify_system(entity.type)
        if system is not None:
            groups[system].append(entity)
    return groups


def system_summary(system: str, entities: Sequence[Entity]) -> str:
    """``"HVAC system with 12 components: IFCDUCTSEGMENT (8), ..."`` (top 3 types)."""
    top = Counter(e.type for e in entities).most_common(3)
    listed = ", ".join(f"{t} ({n})" for t, n in top)
    return f"{system.upper()} system with {len(entities)} components: {listed}"


class SystemStrategy(ChunkStrategy):
    name = "system"
    kind = StrategyKind.SYSTEM
    chunk_kind = "system"

    def can_process(self, entities: Sequence[Entity]) -> bool:
        return any(e.type in _ALL_SYSTEM_TYPES for e in entities)

    async def process(
        self, entities: Sequence[Entity], project_id: str, options: SizeOptions
    ) -> list[Chunk]:
        chunks: list[Chunk] = []
        ts = self.timestamp_ms()

        for system, members in group_by_system(entities).items():
            if not members:
                continue

            content = "\n".join(
                [
                    f"# {system.upper()} System Components",
                    "",
                    create_summary(members),
                    "",
                    "## Components:",
                    entities_to_text(members, include_properties=True, max_per_type=50),
                ]
            )
            if len(members) < MIN_GROUP_ENTITIES or estimate_tokens(content) < MIN_GROUP_TOKENS:
                logger.debug("Skipping %s system group (%d entities)", system, len(members))
                continue

            chunks.append(
                Chunk.create(
                    id=self.make_id(project_id, "system", len(chunks), ts),
                    project_id=project_id,
                    kind="system",
                    content=content,
                    summary=system_summary(system, members),
                    metadata=ChunkMetadata(
                        entity_types=unique_types(members),
                        entity_count=len(members),
                        entity_ids=[e.express_id for e in members][:MAX_ENTITY_IDS],
                        system=system,
                    ),
                )
            )

        return chunks
