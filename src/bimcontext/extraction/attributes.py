"""Attribute extractor: geometry, materials and quantities from raw properties.

Results are memoised per entity identifier. A cached result is returned
only when it already covers every attribute group the caller asks for;
otherwise the entity is extracted again from scratch and the cache entry is
replaced. One extractor instance belongs to one chunking run, so cached
state never leaks between runs.

Extraction is declared ``async`` so an I/O-backed implementation (e.g.
reading property sets from a model server) can slot in later; today every
call completes without suspending.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from bimcontext.models import BoundingBox, Entity

GEOMETRY = "geometry"
MATERIALS = "materials"
QUANTITIES = "quantities"
RELATIONSHIPS = "relationships"
CUSTOM = "custom"

# Property-name aliases, first present positive number wins.
_LENGTH_KEYS = ("Length", "NetLength", "OverallLength")
_WIDTH_KEYS = ("Width", "NetWidth", "OverallWidth")
_HEIGHT_KEYS = ("Height", "NetHeight", "OverallHeight")
_THICKNESS_KEYS = ("Thickness", "Width")
_AREA_KEYS = ("Area", "NetArea", "GrossArea", "NetSideArea")
_VOLUME_KEYS = ("Volume", "NetVolume", "GrossVolume")
_MATERIAL_KEYS = ("Material", "MaterialName", "MaterialType")

# kg/m³, matched as substrings of the lower-cased material name. Longer
# keys come first so "stahlbeton" is not read as "beton".
_DEFAULT_DENSITIES: tuple[tuple[str, float], ...] = (
    ("stahlbeton", 2500),
    ("gipskarton", 900),
    ("mauerwerk", 1800),
    ("insulation", 50),
    ("aluminium", 2700),
    ("aluminum", 2700),
    ("concrete", 2400),
    ("dämmung", 50),
    ("gypsum", 900),
    ("ziegel", 1800),
    ("beton", 2400),
    ("steel", 7850),
    ("stahl", 7850),
    ("glass", 2500),
    ("brick", 1800),
    ("glas", 2500),
    ("wood", 600),
    ("holz", 600),
)
FALLBACK_DENSITY = 1000.0

_STANDARD_PROPERTIES = frozenset(
    [
        "Name", "Description", "ObjectType", "Tag",
        "Length", "Width", "Height", "Thickness",
        "Area", "Volume", "Material",
    ]
)


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExtractionOptions:
    """Which attribute groups to load. Geometry, materials and quantities
    default on; relationships and custom attributes default off."""

    geometry: bool = True
    materials: bool = True
    quantities: bool = True
    relationships: bool = False
    custom: bool = False

    def groups(self) -> frozenset[str]:
        flags = {
            GEOMETRY: self.geometry,
            MATERIALS: self.materials,
            QUANTITIES: self.quantities,
            RELATIONSHIPS: self.relationships,
            CUSTOM: self.custom,
        }
        return frozenset(name for name, on in flags.items() if on)


@dataclass
class Geometry:
    length: float | None = None
    width: float | None = None
    height: float | None = None
    thickness: float | None = None
    area: float | None = None
    volume: float | None = None
    bounding_box: BoundingBox | None = None


@dataclass(frozen=True)
class Material:
    name: str
    density: float | None = None


@dataclass(frozen=True)
class Quantity:
    name: str
    value: float
    unit: str
    kind: str  # volume | area | length | weight


@dataclass
class Relationships:
    """Relationship data. Always empty until relationship input exists."""

    contained_in: int | None = None
    connected_to: list[int] = field(default_factory=list)
    aggregates: list[int] = field(default_factory=list)


@dataclass
class EnhancedEntity:
    entity: Entity
    geometry: Geometry | None = None
    materials: list[Material] = field(default_factory=list)
    quantities: list[Quantity] = field(default_factory=list)
    relationships: Relationships | None = None
    custom_attributes: dict[str, Any] = field(default_factory=dict)
    loaded: frozenset[str] = frozenset()

    @property
    def primary_material(self) -> Material | None:
        return self.materials[0] if self.materials else None

    def quantity(self, kind: str) -> Quantity | None:
        """Return the first quantity of *kind*, or None."""
        for q in self.quantities:
            if q.kind == kind:
                return q
        return None

    def covers(self, groups: Iterable[str]) -> bool:
        return all(g in self.loaded for g in groups)


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class AttributeExtractor:
    """Derives EnhancedEntity records from entity properties, with memoisation."""

    def __init__(self) -> None:
        self._cache: dict[int, EnhancedEntity] = {}

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    async def extract_attributes(
        self, entity: Entity, options: ExtractionOptions | None = None
    ) -> EnhancedEntity:
        """Return *entity* enriched with the requested attribute groups.

        A cache hit is returned only if it covers every requested group;
        partial coverage triggers a full recompute that overwrites the entry.
        """
        opts = options or ExtractionOptions()
        requested = opts.groups()

        cached = self._cache.get(entity.express_id)
        if cached is not None and cached.covers(requested):
            return cached

        enhanced = EnhancedEntity(entity=entity, loaded=requested)
        if opts.geometry:
            enhanced.geometry = extract_geometry(entity)
        if opts.materials:
            enhanced.materials = extract_materials(entity)
        if opts.quantities:
            enhanced.quantities = extract_quantities(entity)
        if opts.relationships:
            enhanced.relationships = Relationships()
        if opts.custom:
            enhanced.custom_attributes = extract_custom_attributes(entity)

        self._cache[entity.express_id] = enhanced
        return enhanced

    async def extract_many(
        self, entities: Iterable[Entity], options: ExtractionOptions | None = None
    ) -> list[EnhancedEntity]:
        """Extract every entity concurrently; result order matches input order."""
        return list(
            await asyncio.gather(*(self.extract_attributes(e, options) for e in entities))
        )

    def clear_cache(self) -> None:
        """Drop all memoised results. Safe on an empty cache."""
        self._cache.clear()


# ---------------------------------------------------------------------------
# Extraction rules
# ---------------------------------------------------------------------------


def _positive_number(props: Mapping[str, Any], keys: Iterable[str]) -> float | None:
    for key in keys:
        raw = props.get(key)
        if raw is None or isinstance(raw, bool):
            continue
        try:
            value = float(raw)
        except (TypeError, ValueError):
            continue
        if math.isfinite(value) and value > 0:
            return value
    return None


def _is_wall_like(entity_type: str) -> bool:
    return entity_type.startswith("IFCWALL")


def extract_geometry(entity: Entity) -> Geometry:
    """Read dimensions from property aliases and derive volume / bounds.

    Volume falls back to length × width × height, then (wall types only)
    thickness × area. The bounding box is anchored at the origin and sized
    by the known dimensions; it is not a world-space box.
    """
    props = entity.properties
    geo = Geometry(
        length=_positive_number(props, _LENGTH_KEYS),
        width=_positive_number(props, _WIDTH_KEYS),
        height=_positive_number(props, _HEIGHT_KEYS),
        thickness=_positive_number(props, _THICKNESS_KEYS),
        area=_positive_number(props, _AREA_KEYS),
        volume=_positive_number(props, _VOLUME_KEYS),
    )

    if geo.volume is None and geo.length and geo.width and geo.height:
        geo.volume = geo.length * geo.width * geo.height

    if geo.volume is None and _is_wall_like(entity.type) and geo.thickness and geo.area:
        geo.volume = geo.thickness * geo.area

    if geo.length or geo.width or geo.height:
        geo.bounding_box = BoundingBox(
            min=(0.0, 0.0, 0.0),
            max=(geo.length or 0.0, geo.width or 0.0, geo.height or 0.0),
        )

    return geo


def default_density(material_name: str) -> float:
    """Look up a construction-material density by name keyword."""
    name = material_name.lower()
    for keyword, density in _DEFAULT_DENSITIES:
        if keyword in name:
            return float(density)
    return FALLBACK_DENSITY


def extract_materials(entity: Entity) -> list[Material]:
    props = entity.properties
    name = next((props[k] for k in _MATERIAL_KEYS if props.get(k)), None)
    if name is None:
        return []

    density = _positive_number(props, ("MaterialDensity",))
    if density is None:
        density = default_density(str(name))
    return [Material(name=str(name), density=density)]


def extract_quantities(entity: Entity) -> list[Quantity]:
    """Synthesise volume/area/length quantities plus weight = volume × density."""
    geo = extract_geometry(entity)
    quantities: list[Quantity] = []

    if geo.volume:
        quantities.append(Quantity("NetVolume", geo.volume, "m³", "volume"))
    if geo.area:
        quantities.append(Quantity("NetArea", geo.area, "m²", "area"))
    if geo.length:
        quantities.append(Quantity("Length", geo.length, "m", "length"))

    materials = extract_materials(entity)
    if geo.volume and materials and materials[0].density:
        weight = geo.volume * materials[0].density
        quantities.append(Quantity("Weight", weight, "kg", "weight"))

    return quantities


def extract_custom_attributes(entity: Entity) -> dict[str, Any]:
    return {k: v for k, v in entity.properties.items() if k not in _STANDARD_PROPERTIES}
