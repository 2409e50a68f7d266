"""Chunking strategies and the orchestrator that runs them."""

from bimcontext.chunking.base import ChunkStrategy, SizeOptions, StrategyKind
from bimcontext.chunking.element_type import ElementTypeStrategy, EnhancedElementTypeStrategy
from bimcontext.chunking.query_adaptive import DEFAULT_PATTERNS, QueryAdaptiveStrategy, QueryPattern
from bimcontext.chunking.smart_chunker import ProcessingResult, SmartChunker, default_strategies
from bimcontext.chunking.spatial import SpatialGroup, SpatialStrategy, group_by_identifier_proximity
from bimcontext.chunking.system import SystemStrategy, classify_system

__all__ = [
    "DEFAULT_PATTERNS",
    "ChunkStrategy",
    "ElementTypeStrategy",
    "EnhancedElementTypeStrategy",
    "ProcessingResult",
    "QueryAdaptiveStrategy",
    "QueryPattern",
    "SizeOptions",
    "SmartChunker",
    "SpatialGroup",
    "SpatialStrategy",
    "StrategyKind",
    "SystemStrategy",
    "classify_system",
    "default_strategies",
    "group_by_identifier_proximity",
]
