"""Consolidate result sets from already-executed strategies."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from tool_retriever.config import FUSION_CONFIG, MERGER_CONFIG, FusionConfig, MergerConfig
from tool_retriever.entities.plans import MergeStrategy
from tool_retriever.entities.results import (
    MergedResult,
    SearchResult,
    SourceAttribution,
    StrategyOutcome,
)
from tool_retriever.nodes.retrieval.score_fusion import (
    FusionAccumulator,
    ranking_key,
    rrf_contribution,
)

logger = logging.getLogger(__name__)


def _relevance(result: SearchResult, config: MergerConfig) -> float:
    return result.score if result.score > 0 else config.default_relevance


def _attribution(
    result: SearchResult, weight: float, strategy_index: int
) -> SourceAttribution:
    return SourceAttribution(
        source_type=result.source_type,
        score=result.score,
        rank=result.rank,
        weight=weight,
        strategy_index=strategy_index,
    )


def merge_weighted(
    result_sets: Sequence[Sequence[SearchResult]],
    weights: Sequence[float],
    fusion: FusionConfig = FUSION_CONFIG,
) -> list[MergedResult]:
    """RRF-style weighted average across strategies.

    Weights are normalized to sum to one, so ``weighted_score`` is the
    weight-averaged reciprocal rank with absent strategies counting zero.
    """
    total = sum(weights)
    normalized = (
        [w / total for w in weights] if total > 0 else [1.0 / len(weights)] * len(weights)
    )
    by_id: dict[str, FusionAccumulator] = {}
    for index, results in enumerate(result_sets):
        weight = normalized[index]
        for result in results:
            acc = by_id.get(result.id)
            if acc is None:
                acc = FusionAccumulator.start(result)
                by_id[result.id] = acc
            acc.add(result, fusion.rrf_k, weight, strategy_index=index)
    entries = sorted(by_id.values(), key=ranking_key)
    return [entry.to_merged() for entry in entries]


def merge_best(
    result_sets: Sequence[Sequence[SearchResult]],
    weights: Sequence[float],
    fusion: FusionConfig = FUSION_CONFIG,
    config: MergerConfig = MERGER_CONFIG,
) -> list[MergedResult]:
    """Keep the single highest weighted occurrence of every id."""
    best: dict[str, tuple[float, int, SearchResult]] = {}
    for index, results in enumerate(result_sets):
        weight = weights[index]
        for result in results:
            weighted = _relevance(result, config) * weight
            current = best.get(result.id)
            if current is None or weighted > current[0]:
                best[result.id] = (weighted, index, result)

    merged = [
        MergedResult(
            id=result_id,
            item=dict(result.payload),
            rrf_score=rrf_contribution(result.rank, fusion.rrf_k),
            weighted_score=weighted,
            sources=[_attribution(result, weights[index], index)],
            merged_from_count=1,
            source_type=result.source_type,
            score=result.score,
        )
        for result_id, (weighted, index, result) in best.items()
    ]
    merged.sort(key=ranking_key)
    return merged


def _primary_tag(payload: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value.lower()
        if isinstance(value, list | tuple) and value:
            return str(value[0]).lower()
    return "other"


def merge_diverse(
    result_sets: Sequence[Sequence[SearchResult]],
    weights: Sequence[float],
    fusion: FusionConfig = FUSION_CONFIG,
    config: MergerConfig = MERGER_CONFIG,
) -> list[MergedResult]:
    """Greedy selection by score that favours unseen categories and functionality.

    The first ``config.min_diverse_results`` items are accepted on score
    alone; after that an item must introduce a new category or a new
    primary functionality tag.
    """
    pool: list[tuple[int, SearchResult]] = [
        (index, result) for index, results in enumerate(result_sets) for result in results
    ]
    pool.sort(key=lambda pair: (-pair[1].score, pair[1].id, pair[0]))

    selected: dict[str, MergedResult] = {}
    categories: set[str] = set()
    functionality: set[str] = set()

    for index, result in pool:
        existing = selected.get(result.id)
        if existing is not None:
            existing.sources.append(_attribution(result, weights[index], index))
            existing.merged_from_count += 1
            continue

        category = _primary_tag(result.payload, "category", "categories")
        function_tag = _primary_tag(result.payload, "functionality")
        if (
            len(selected) < config.min_diverse_results
            or category not in categories
            or function_tag not in functionality
        ):
            selected[result.id] = MergedResult(
                id=result.id,
                item=dict(result.payload),
                rrf_score=rrf_contribution(result.rank, fusion.rrf_k),
                weighted_score=result.score,
                sources=[_attribution(result, weights[index], index)],
                merged_from_count=1,
                source_type=result.source_type,
                score=result.score,
            )
            categories.add(category)
            functionality.add(function_tag)

    return list(selected.values())


def merge_ranked_sets(
    result_sets: Sequence[Sequence[SearchResult]],
    weights: Sequence[float] | None = None,
    strategy: MergeStrategy = MergeStrategy.WEIGHTED,
    fusion: FusionConfig = FUSION_CONFIG,
    config: MergerConfig = MERGER_CONFIG,
) -> list[MergedResult]:
    """Fuse ranked result lists with *strategy*; weights default to uniform."""
    if not result_sets:
        return []
    if weights is None:
        weights = [1.0 / len(result_sets)] * len(result_sets)
    if len(weights) != len(result_sets):
        msg = f"Got {len(weights)} weights for {len(result_sets)} result sets"
        raise ValueError(msg)

    if strategy == MergeStrategy.BEST:
        return merge_best(result_sets, weights, fusion, config)
    if strategy == MergeStrategy.DIVERSE:
        return merge_diverse(result_sets, weights, fusion, config)
    return merge_weighted(result_sets, weights, fusion)


def merge_result_sets(
    outcomes: Sequence[StrategyOutcome],
    strategy: MergeStrategy = MergeStrategy.WEIGHTED,
    fusion: FusionConfig = FUSION_CONFIG,
    config: MergerConfig = MERGER_CONFIG,
) -> list[MergedResult]:
    """Fuse the result sets of successful strategies with *strategy*.

    Failed strategies are ignored. The strategy index recorded in each
    attribution refers to the position in the original plan.
    """
    successful = [outcome for outcome in outcomes if outcome.success]
    if not successful:
        return []

    # Pad so attribution keeps original plan indices
    size = max(outcome.strategy_index for outcome in successful) + 1
    result_sets: list[list[SearchResult]] = [[] for _ in range(size)]
    weights: list[float] = [0.0] * size
    for outcome in successful:
        result_sets[outcome.strategy_index] = outcome.results
        weights[outcome.strategy_index] = outcome.weight

    merged = merge_ranked_sets(result_sets, weights, strategy, fusion, config)
    logger.info(
        "Merged %d strategy result sets into %d results (%s)",
        len(successful),
        len(merged),
        strategy.value,
    )
    return merged
