"""Attribute extraction for building-model entities."""

from bimcontext.extraction.attributes import (
    AttributeExtractor,
    EnhancedEntity,
    ExtractionOptions,
    Geometry,
    Material,
    Quantity,
)

__all__ = [
    "AttributeExtractor",
    "EnhancedEntity",
    "ExtractionOptions",
    "Geometry",
    "Material",
    "Quantity",
]
