"""Query-time context selection: analysis, planning, scoring, budgeting, assembly."""

from bimcontext.selection.assembler import (
    AssembledContext,
    ContextAssembler,
    FormattingOptions,
    create_query_type_summary,
)
from bimcontext.selection.budget import BudgetAllocation, TokenBudgetManager, TokenStats
from bimcontext.selection.optimizer import (
    IndexQueryOptimizer,
    LoadingPlan,
    QueryPlan,
    QueryStep,
    combine_index_results,
    create_loading_plan,
)
from bimcontext.selection.query_analyzer import QueryAnalyzer, QueryIntent
from bimcontext.selection.scorer import RankedChunk, RelevanceScorer, ScoringFactors, ScoringWeights
from bimcontext.selection.selector import (
    ContextSelector,
    QueryCacheKey,
    SelectionMetrics,
    SelectionResult,
    collect_candidates,
)

__all__ = [
    "AssembledContext",
    "BudgetAllocation",
    "ContextAssembler",
    "ContextSelector",
    "FormattingOptions",
    "IndexQueryOptimizer",
    "LoadingPlan",
    "QueryAnalyzer",
    "QueryCacheKey",
    "QueryIntent",
    "QueryPlan",
    "QueryStep",
    "RankedChunk",
    "RelevanceScorer",
    "ScoringFactors",
    "ScoringWeights",
    "SelectionMetrics",
    "SelectionResult",
    "TokenBudgetManager",
    "TokenStats",
    "collect_candidates",
    "combine_index_results",
    "create_loading_plan",
    "create_query_type_summary",
]
