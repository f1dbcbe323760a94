"""Default step functions and the registry that wires them up."""

from __future__ import annotations

from typing import TYPE_CHECKING

from tool_retriever.config import (
    OPTIONAL_STAGES,
    STAGE_DETAILED_LOGGING,
    STAGE_PERFORMANCE_MONITORING,
)
from tool_retriever.nodes.execution.registry import StepFunction, StepRegistry
from tool_retriever.nodes.steps.filters import (
    exclude_tools,
    filter_by_category,
    filter_by_deployment,
    filter_by_functionality,
    filter_by_interface,
    filter_by_price,
    filter_by_user_type,
    pass_through,
    rank_by_relevance,
)
from tool_retriever.nodes.steps.search import SearchSteps

if TYPE_CHECKING:
    from tool_retriever.config import FusionConfig, MergerConfig
    from tool_retriever.memory.protocols import (
        EmbeddingProvider,
        RecordStore,
        VectorIndexClient,
    )
    from tool_retriever.nodes.retrieval.deduplication import DeduplicationConfig

FILTER_STEPS: dict[str, StepFunction] = {
    "filter-by-category": filter_by_category,
    "filter-by-functionality": filter_by_functionality,
    "filter-by-user-type": filter_by_user_type,
    "filter-by-interface": filter_by_interface,
    "filter-by-deployment": filter_by_deployment,
    "filter-by-price": filter_by_price,
    "exclude-tools": exclude_tools,
    "rank-by-relevance": rank_by_relevance,
}


def build_default_registry(
    embedder: EmbeddingProvider,
    index: VectorIndexClient,
    records: RecordStore,
    dedup_config: DeduplicationConfig | None = None,
    fusion: FusionConfig | None = None,
    merger: MergerConfig | None = None,
) -> StepRegistry:
    """Registry with every built-in step bound to the given collaborators.

    Optional pipeline stages are registered as pass-throughs so a plan the
    stage skipper left untouched still executes.
    """
    search = SearchSteps(embedder, index, records, dedup_config, fusion, merger)
    steps: dict[str, StepFunction] = {
        "semantic-search": search.semantic_search,
        "multi-vector-search": search.multi_vector_search,
        "lookup-by-name": search.lookup_by_name,
        "find-similar-by-features": search.find_similar_by_features,
        "merge-and-dedupe": search.merge_and_dedupe,
        **FILTER_STEPS,
    }
    for stage in (*OPTIONAL_STAGES, STAGE_PERFORMANCE_MONITORING, STAGE_DETAILED_LOGGING):
        steps.setdefault(stage, pass_through)
    return StepRegistry(steps)


__all__ = [
    "FILTER_STEPS",
    "SearchSteps",
    "build_default_registry",
    "exclude_tools",
    "filter_by_category",
    "filter_by_deployment",
    "filter_by_functionality",
    "filter_by_interface",
    "filter_by_price",
    "filter_by_user_type",
    "pass_through",
    "rank_by_relevance",
]
