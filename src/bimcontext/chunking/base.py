"""Chunking strategy interface shared by all four strategy kinds."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, TypeVar

from bimcontext.models import Chunk, ChunkKind, Entity

T = TypeVar("T")

# Entity-id lists stored on a chunk are capped at this length.
MAX_ENTITY_IDS = 1000


class StrategyKind(Enum):
    """The closed set of strategy variants the orchestrator dispatches over."""

    SPATIAL = "spatial"
    SYSTEM = "system"
    ELEMENT_TYPE = "element-type"
    QUERY_ADAPTIVE = "query-adaptive"


@dataclass(frozen=True)
class SizeOptions:
    """Chunk size targets, in estimated tokens.

    Attributes:
        target_token_size: Fill target used when packing entities into a chunk.
        max_token_size: Hard ceiling; larger chunks are split by the orchestrator.
        overlap_tokens: Trailing context repeated between split pieces.
    """

    target_token_size: int = 3000
    max_token_size: int = 4000
    overlap_tokens: int = 200

    def __post_init__(self) -> None:
        if self.target_token_size < 1:
            raise ValueError("target_token_size must be >= 1")
        if self.max_token_size < self.target_token_size:
            raise ValueError("max_token_size must be >= target_token_size")
        if not 0 <= self.overlap_tokens < self.target_token_size:
            raise ValueError("overlap_tokens must be in [0, target_token_size)")


class ChunkStrategy(ABC):
    """Abstract base for chunking strategies.

    Subclasses declare their ``kind`` (one of :class:`StrategyKind`) and the
    ``chunk_kind`` they emit, and implement ``can_process()`` and the
    asynchronous ``process()``.
    """

    name: ClassVar[str]
    kind: ClassVar[StrategyKind]
    chunk_kind: ClassVar[ChunkKind]

    @abstractmethod
    def can_process(self, entities: Sequence[Entity]) -> bool:
        """Cheap applicability check over the model's entities."""

    @abstractmethod
    async def process(
        self, entities: Sequence[Entity], project_id: str, options: SizeOptions
    ) -> list[Chunk]:
        """Turn *entities* into chunks for *project_id*.

        Args:
            entities: The model snapshot; never mutated.
            project_id: Owner project, embedded in every chunk id.
            options: Fill target and hard ceiling, in estimated tokens.

        Returns:
            Chunks in creation order; possibly empty.
        """

    @staticmethod
    def timestamp_ms() -> int:
        return int(time.time() * 1000)

    @staticmethod
    def make_id(project_id: str, tag: str, index: int, timestamp_ms: int) -> str:
        """Chunk id convention: ``{project}-{tag}-{index}-{timestamp}``."""
        return f"{project_id}-{tag}-{index}-{timestamp_ms}"


def pack_greedy(
    items: Sequence[T], size_of: Callable[[T], int], target: int
) -> list[list[T]]:
    """Group *items* in order so each group's summed size stays within *target*.

    A new group starts when adding the next item would exceed *target*; an
    item larger than *target* still gets a group of its own.
    """
    groups: list[list[T]] = []
    current: list[T] = []
    current_size = 0

    for item in items:
        item_size = size_of(item)
        if current and current_size + item_size > target:
            groups.append(current)
            current = []
            current_size = 0
        current.append(item)
        current_size += item_size

    if current:
        groups.append(current)

    return groups


def common_properties(property_maps: Sequence[Sequence[str]], threshold: float = 0.5) -> list[str]:
    """Return property names present in at least *threshold* of the maps, sorted."""
    if not property_maps:
        return []
    counts: dict[str, int] = {}
    for keys in property_maps:
        for key in keys:
            counts[key] = counts.get(key, 0) + 1
    minimum = len(property_maps) * threshold
    return sorted(k for k, n in counts.items() if n >= minimum)


def unique_types(entities: Sequence[Entity]) -> list[str]:
    """Distinct entity types in first-seen order."""
    return list(dict.fromkeys(e.type for e in entities))
