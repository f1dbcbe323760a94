"""Retrieval nodes: score fusion, deduplication, result-set merging and stage skipping."""

from __future__ import annotations

from tool_retriever.nodes.retrieval.deduplication import (
    DeduplicationConfig,
    DedupStrategy,
    MergeStats,
    ResultDeduplicator,
    as_search_results,
    merge_results,
    multi_vector_dedup_config,
)
from tool_retriever.nodes.retrieval.models import (
    ComplexityAnalysis,
    QueryComplexity,
    RiskLevel,
    RoutingDecision,
    SkipperOutcome,
    StageSkippingDecision,
)
from tool_retriever.nodes.retrieval.result_merger import merge_result_sets
from tool_retriever.nodes.retrieval.score_fusion import (
    reciprocal_rank_fusion,
    rrf_merge,
)
from tool_retriever.nodes.retrieval.stage_skipper import StageSkipper

__all__ = [
    "ComplexityAnalysis",
    "DedupStrategy",
    "DeduplicationConfig",
    "MergeStats",
    "QueryComplexity",
    "ResultDeduplicator",
    "RiskLevel",
    "RoutingDecision",
    "SkipperOutcome",
    "StageSkipper",
    "StageSkippingDecision",
    "as_search_results",
    "merge_result_sets",
    "merge_results",
    "multi_vector_dedup_config",
    "reciprocal_rank_fusion",
    "rrf_merge",
]
