"""Domain models: input entities, chunks and the per-project manifest.

Serialisation helpers (``to_dict`` / ``from_dict``) define the JSON shape
used by the storage layer. Entities are read-only inputs; chunks are
immutable once created.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from bimcontext.tokens import estimate_tokens

logger = logging.getLogger(__name__)

ChunkKind = Literal["spatial", "system", "element-type", "hybrid"]
CHUNK_KINDS: tuple[str, ...] = ("spatial", "system", "element-type", "hybrid")

Point3 = tuple[float, float, float]


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


def _text(raw: Any) -> str | None:
    return None if raw is None else str(raw)


def _point(raw: Any) -> Point3:
    if isinstance(raw, Mapping):
        return (float(raw.get("x", 0.0)), float(raw.get("y", 0.0)), float(raw.get("z", 0.0)))
    x, y, z = raw
    return (float(x), float(y), float(z))


@dataclass(frozen=True)
class BoundingBox:
    min: Point3
    max: Point3

    @property
    def center(self) -> Point3:
        return (
            (self.min[0] + self.max[0]) / 2,
            (self.min[1] + self.max[1]) / 2,
            (self.min[2] + self.max[2]) / 2,
        )

    def union(self, other: BoundingBox) -> BoundingBox:
        return BoundingBox(
            min=(
                min(self.min[0], other.min[0]),
                min(self.min[1], other.min[1]),
                min(self.min[2], other.min[2]),
            ),
            max=(
                max(self.max[0], other.max[0]),
                max(self.max[1], other.max[1]),
                max(self.max[2], other.max[2]),
            ),
        )

    def to_dict(self) -> dict[str, list[float]]:
        return {"min": list(self.min), "max": list(self.max)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BoundingBox:
        return cls(min=_point(data["min"]), max=_point(data["max"]))


def union_boxes(boxes: Iterable[BoundingBox | None]) -> BoundingBox | None:
    """Return the union of all non-None boxes, or None if there are none."""
    result: BoundingBox | None = None
    for box in boxes:
        if box is None:
            continue
        result = box if result is None else result.union(box)
    return result


# ---------------------------------------------------------------------------
# Entity (external input)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Entity:
    """One building-model element as supplied by the extraction collaborator.

    Attributes:
        express_id: Identifier, unique within a model.
        type: IFC type tag, e.g. ``IFCWALL``.
        properties: Free-form property map (string → scalar).
        position: Optional insertion point.
        bounding_box: Optional world-space bounds.
    """

    express_id: int
    type: str
    name: str | None = None
    description: str | None = None
    object_type: str | None = None
    tag: str | None = None
    global_id: str | None = None
    properties: Mapping[str, Any] = field(default_factory=dict)
    position: Point3 | None = None
    bounding_box: BoundingBox | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Entity:
        """Build an Entity from camelCase (collaborator) or snake_case keys."""

        def pick(*keys: str) -> Any:
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        express_id = pick("expressID", "expressId", "express_id", "id")
        if express_id is None:
            raise ValueError("entity is missing 'expressID'")

        position = pick("position")
        bbox = pick("boundingBox", "bounding_box")
        return cls(
            express_id=int(express_id),
            type=str(pick("type") or "UNKNOWN").upper(),
            name=_text(pick("name")),
            description=_text(pick("description")),
            object_type=_text(pick("objectType", "object_type")),
            tag=_text(pick("tag")),
            global_id=_text(pick("globalId", "global_id")),
            properties=dict(pick("properties") or {}),
            position=_point(position) if position is not None else None,
            bounding_box=BoundingBox.from_dict(bbox) if bbox is not None else None,
        )


# ---------------------------------------------------------------------------
# Chunk
# ---------------------------------------------------------------------------


@dataclass
class ChunkMetadata:
    """Indexable metadata attached to a chunk.

    ``extra`` carries strategy-specific statistics (element statistics,
    query-adaptive group keys) that are stored but not indexed.
    """

    entity_types: list[str] = field(default_factory=list)
    entity_count: int = 0
    entity_ids: list[int] = field(default_factory=list)
    floor: int | None = None
    zone: str | None = None
    building: str | None = None
    system: str | None = None
    bbox: BoundingBox | None = None
    aggregates: dict[str, Any] | None = None
    query_pattern: str | None = None
    common_properties: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def has_spatial_info(self) -> bool:
        return self.floor is not None or bool(self.zone) or bool(self.building)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_types": list(self.entity_types),
            "entity_count": self.entity_count,
            "entity_ids": list(self.entity_ids),
            "floor": self.floor,
            "zone": self.zone,
            "building": self.building,
            "system": self.system,
            "bbox": self.bbox.to_dict() if self.bbox else None,
            "aggregates": self.aggregates,
            "query_pattern": self.query_pattern,
            "common_properties": list(self.common_properties),
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ChunkMetadata:
        bbox = data.get("bbox")
        floor = data.get("floor")
        return cls(
            entity_types=list(data.get("entity_types", [])),
            entity_count=int(data.get("entity_count", 0)),
            entity_ids=[int(i) for i in data.get("entity_ids", [])],
            floor=int(floor) if floor is not None else None,
            zone=_text(data.get("zone")),
            building=_text(data.get("building")),
            system=_text(data.get("system")),
            bbox=BoundingBox.from_dict(bbox) if bbox else None,
            aggregates=data.get("aggregates"),
            query_pattern=data.get("query_pattern"),
            common_properties=list(data.get("common_properties", [])),
            extra=dict(data.get("extra", {})),
        )


@dataclass(frozen=True)
class Chunk:
    """The unit of retrieval. Never mutated after creation.

    ``token_count`` always equals ``estimate_tokens(content)``; use
    :meth:`create` rather than the constructor so the two cannot drift.
    """

    id: str
    project_id: str
    kind: ChunkKind
    content: str
    summary: str
    metadata: ChunkMetadata
    token_count: int
    created_at: float | None = None
    version: int = 1

    @classmethod
    def create(
        cls,
        *,
        id: str,
        project_id: str,
        kind: ChunkKind,
        content: str,
        summary: str,
        metadata: ChunkMetadata,
        created_at: float | None = None,
        version: int = 1,
    ) -> Chunk:
        return cls(
            id=id,
            project_id=project_id,
            kind=kind,
            content=content,
            summary=summary,
            metadata=metadata,
            token_count=estimate_tokens(content),
            created_at=created_at if created_at is not None else time.time(),
            version=version,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "kind": self.kind,
            "content": self.content,
            "summary": self.summary,
            "metadata": self.metadata.to_dict(),
            "token_count": self.token_count,
            "created_at": self.created_at,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Chunk:
        return cls(
            id=str(data["id"]),
            project_id=str(data["project_id"]),
            kind=data["kind"],
            content=str(data["content"]),
            summary=str(data.get("summary", "")),
            metadata=ChunkMetadata.from_dict(data.get("metadata", {})),
            token_count=int(data["token_count"]),
            created_at=data.get("created_at"),
            version=int(data.get("version", 1)),
        )


# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------


@dataclass
class ChunkSummary:
    id: str
    kind: ChunkKind
    token_count: int
    entity_count: int
    keywords: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "token_count": self.token_count,
            "entity_count": self.entity_count,
            "keywords": list(self.keywords),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ChunkSummary:
        return cls(
            id=str(data["id"]),
            kind=data["kind"],
            token_count=int(data["token_count"]),
            entity_count=int(data.get("entity_count", 0)),
            keywords=list(data.get("keywords", [])),
        )


@dataclass
class SpatialIndexEntry:
    chunk_id: str
    bbox: BoundingBox
    zone: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"chunk_id": self.chunk_id, "bbox": self.bbox.to_dict(), "zone": self.zone}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SpatialIndexEntry:
        return cls(
            chunk_id=str(data["chunk_id"]),
            bbox=BoundingBox.from_dict(data["bbox"]),
            zone=_text(data.get("zone")),
        )


# Persisted index names, in the order the manifest stores them.
INDEX_NAMES: tuple[str, ...] = ("byType", "byEntityType", "byFloor", "bySystem", "spatial")


@dataclass
class ChunkIndex:
    """The five lookup indices: index key → chunk-id list."""

    by_type: dict[str, list[str]] = field(default_factory=dict)
    by_entity_type: dict[str, list[str]] = field(default_factory=dict)
    by_floor: dict[int, list[str]] = field(default_factory=dict)
    by_system: dict[str, list[str]] = field(default_factory=dict)
    spatial: list[SpatialIndexEntry] = field(default_factory=list)

    def referenced_ids(self) -> Iterable[tuple[str, str]]:
        """Yield ``(index_name, chunk_id)`` for every id any index references."""
        for name, mapping in (
            ("byType", self.by_type),
            ("byEntityType", self.by_entity_type),
            ("byFloor", self.by_floor),
            ("bySystem", self.by_system),
        ):
            for ids in mapping.values():
                for chunk_id in ids:
                    yield name, chunk_id
        for entry in self.spatial:
            yield "spatial", entry.chunk_id

    def get(self, name: str) -> Any:
        """Return the index called *name* (one of INDEX_NAMES)."""
        return {
            "byType": self.by_type,
            "byEntityType": self.by_entity_type,
            "byFloor": self.by_floor,
            "bySystem": self.by_system,
            "spatial": self.spatial,
        }[name]

    def to_dict(self) -> dict[str, Any]:
        return {name: index_to_json(name, self.get(name)) for name in INDEX_NAMES}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ChunkIndex:
        return cls(
            by_type=index_from_json("byType", data.get("byType", {})),
            by_entity_type=index_from_json("byEntityType", data.get("byEntityType", {})),
            by_floor=index_from_json("byFloor", data.get("byFloor", {})),
            by_system=index_from_json("bySystem", data.get("bySystem", {})),
            spatial=index_from_json("spatial", data.get("spatial", [])),
        )


def index_to_json(name: str, index: Any) -> Any:
    """Encode one named index into JSON-compatible data."""
    if name == "spatial":
        return [entry.to_dict() for entry in index]
    return {str(k): list(v) for k, v in index.items()}


def index_from_json(name: str, data: Any) -> Any:
    """Decode one named index; byFloor keys are restored to ints."""
    if name == "spatial":
        return [SpatialIndexEntry.from_dict(e) for e in data or []]
    if name == "byFloor":
        return {int(k): list(v) for k, v in (data or {}).items()}
    return {str(k): list(v) for k, v in (data or {}).items()}


@dataclass
class ProjectManifest:
    """Per-project summary record plus the lookup indices over its chunks."""

    project_id: str
    name: str = ""
    total_chunks: int = 0
    total_entities: int = 0
    total_tokens: int = 0
    created_at: float | None = None
    updated_at: float | None = None
    chunks: list[ChunkSummary] = field(default_factory=list)
    index: ChunkIndex = field(default_factory=ChunkIndex)
    metadata: dict[str, Any] = field(default_factory=dict)

    def chunk_ids(self) -> list[str]:
        return [c.id for c in self.chunks]

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "name": self.name,
            "total_chunks": self.total_chunks,
            "total_entities": self.total_entities,
            "total_tokens": self.total_tokens,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "chunks": [c.to_dict() for c in self.chunks],
            "index": self.index.to_dict(),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProjectManifest:
        return cls(
            project_id=str(data.get("project_id", "")),
            name=str(data.get("name", "")),
            total_chunks=int(data.get("total_chunks", 0)),
            total_entities=int(data.get("total_entities", 0)),
            total_tokens=int(data.get("total_tokens", 0)),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            chunks=[ChunkSummary.from_dict(c) for c in data.get("chunks", [])],
            index=ChunkIndex.from_dict(data.get("index", {})),
            metadata=dict(data.get("metadata", {})),
        )


# ---------------------------------------------------------------------------
# Model input
# ---------------------------------------------------------------------------


@dataclass
class ModelInput:
    """Immutable snapshot handed to one ``process_model`` call."""

    entities: list[Entity] = field(default_factory=list)
    entity_index: dict[str, list[int]] = field(default_factory=dict)

    @classmethod
    def from_entities(cls, entities: Iterable[Entity]) -> ModelInput:
        items = list(entities)
        index: dict[str, list[int]] = {}
        for entity in items:
            index.setdefault(entity.type, []).append(entity.express_id)
        return cls(entities=items, entity_index=index)


def load_model_file(path: str | Path) -> ModelInput:
    """Read an extracted model from JSON.

    Accepts ``{"entities": [...], "entityIndex": {...}}`` or a bare list of
    entity objects (the index is then derived from entity types). Malformed
    entities are skipped with a warning and dropped from the index.

    Raises:
        ValueError: If the document has neither shape.
    """
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(raw, list):
        return ModelInput.from_entities(_parse_entities(raw, path))
    if not isinstance(raw, dict) or "entities" not in raw:
        raise ValueError(f"'{path}' is not an entity list or an object with 'entities'")

    entities = _parse_entities(raw["entities"], path)
    raw_index = raw.get("entityIndex") or raw.get("entity_index")
    if not raw_index:
        return ModelInput.from_entities(entities)
    loaded = {e.express_id for e in entities}
    index = {
        str(k).upper(): [int(i) for i in v if int(i) in loaded] for k, v in raw_index.items()
    }
    return ModelInput(entities=entities, entity_index=index)


def _parse_entities(raw_entities: Iterable[Any], path: str | Path) -> list[Entity]:
    entities: list[Entity] = []
    for position, data in enumerate(raw_entities):
        try:
            entities.append(Entity.from_dict(data))
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping entity #%d in '%s': %s", position, path, exc)
    return entities
