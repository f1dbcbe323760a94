"""RRF score fusion with per-source weighting and attribution."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from tool_retriever.config import FUSION_CONFIG, FusionConfig
from tool_retriever.entities.results import MergedResult, SearchResult, SourceAttribution

logger = logging.getLogger(__name__)

RRF_K = 60  # Empirically validated default from Elasticsearch/Milvus


def rrf_contribution(rank: int, k: int = RRF_K) -> float:
    """Score contributed by one appearance at 1-based *rank*."""
    return 1.0 / (k + rank)


def reciprocal_rank_fusion(
    ranked_lists: list[list[str]], k: int = RRF_K
) -> list[tuple[str, float]]:
    """Fuse multiple ranked lists of ids using Reciprocal Rank Fusion.

    For each ranked list, compute 1/(k + rank) score for each item (rank starts at 1).
    Sum scores across all lists for each item.
    Return sorted list of (item_id, rrf_score) tuples, descending by score,
    ties broken by id for determinism.
    """
    scores: dict[str, float] = {}

    for ranked_list in ranked_lists:
        for rank, item_id in enumerate(ranked_list, start=1):
            scores[item_id] = scores.get(item_id, 0.0) + rrf_contribution(rank, k)

    return sorted(scores.items(), key=lambda x: (-x[1], x[0]))


@dataclass
class FusionAccumulator:
    """Mutable per-id state while contributions are being summed."""

    id: str
    item: dict[str, Any]
    source_type: str
    score: float
    rrf_score: float = 0.0
    weighted_score: float = 0.0
    sources: list[SourceAttribution] = field(default_factory=list)

    def add(
        self,
        result: SearchResult,
        k: int,
        weight: float,
        strategy_index: int | None = None,
    ) -> None:
        contribution = rrf_contribution(result.rank, k)
        self.rrf_score += contribution
        self.weighted_score += contribution * weight
        self.sources.append(
            SourceAttribution(
                source_type=result.source_type,
                score=result.score,
                rank=result.rank,
                weight=weight,
                strategy_index=strategy_index,
            )
        )
        # Highest raw score supplies the payload; ties keep the first seen
        if result.score > self.score:
            self.item = dict(result.payload)
            self.source_type = result.source_type
            self.score = result.score

    def absorb(self, other: FusionAccumulator, merge_scores: bool = True) -> None:
        """Fold a near-duplicate accumulator into this one."""
        self.sources.extend(other.sources)
        if merge_scores:
            self.rrf_score = max(self.rrf_score, other.rrf_score)
            self.weighted_score = max(self.weighted_score, other.weighted_score)

    def to_merged(self) -> MergedResult:
        return MergedResult(
            id=self.id,
            item=self.item,
            rrf_score=self.rrf_score,
            weighted_score=self.weighted_score,
            sources=list(self.sources),
            merged_from_count=len(self.sources),
            source_type=self.source_type,
            score=self.score,
        )

    @classmethod
    def start(cls, result: SearchResult) -> FusionAccumulator:
        return cls(
            id=result.id,
            item=dict(result.payload),
            source_type=result.source_type,
            score=result.score,
        )


def source_weight(result: SearchResult, config: FusionConfig = FUSION_CONFIG) -> float:
    """Fusion weight for *result*: its pinned weight, else its source type's."""
    if result.weight is not None:
        return result.weight
    return config.weight_for(result.source_type)


def ranking_key(entry: FusionAccumulator | MergedResult) -> tuple[float, float, str]:
    """Descending weighted score, then RRF score, then ascending id."""
    return (-entry.weighted_score, -entry.rrf_score, entry.id)


def iter_results(
    results_by_source: Mapping[str, Iterable[SearchResult]],
) -> Iterable[SearchResult]:
    """Flatten source lists in insertion order, each list in its given order."""
    for results in results_by_source.values():
        yield from results


def accumulate_rrf(
    results: Iterable[SearchResult],
    config: FusionConfig = FUSION_CONFIG,
    k: int | None = None,
) -> list[FusionAccumulator]:
    """Sum RRF contributions per id, keeping first-seen id order."""
    k_value = config.rrf_k if k is None else k
    by_id: dict[str, FusionAccumulator] = {}
    for result in results:
        acc = by_id.get(result.id)
        if acc is None:
            acc = FusionAccumulator.start(result)
            by_id[result.id] = acc
        acc.add(result, k_value, source_weight(result, config))
    return list(by_id.values())


def rrf_merge(
    results_by_source: Mapping[str, Iterable[SearchResult]],
    config: FusionConfig = FUSION_CONFIG,
) -> list[MergedResult]:
    """Fuse per-source result lists into one ranked, id-deduplicated list.

    Each appearance contributes ``1/(k + rank)`` to ``rrf_score`` and that
    value times the source-type weight to ``weighted_score``.
    """
    accumulators = accumulate_rrf(iter_results(results_by_source), config)
    accumulators.sort(key=ranking_key)
    logger.debug(
        "RRF merged %d sources into %d results (k=%d)",
        len(results_by_source),
        len(accumulators),
        config.rrf_k,
    )
    return [acc.to_merged() for acc in accumulators]
