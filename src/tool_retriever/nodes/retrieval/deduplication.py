"""Result fusion engine: deduplicate and merge ranked lists from many sources.

Four strategies are supported:

- ``id_based``: exact id equality, first occurrence wins.
- ``content_based``: records sharing a content fingerprint collapse when
  their weighted field similarity reaches ``similarity_threshold``.
- ``hybrid``: ``id_based`` then ``content_based`` on the survivors.
- ``rrf_enhanced``: full RRF fusion, then a content pass using
  per-source-type thresholds.

Every strategy returns ``MergedResult`` objects ordered by weighted score,
then RRF score, then id.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from tool_retriever.config import FusionConfig
from tool_retriever.entities.results import MergedResult, SearchResult
from tool_retriever.nodes.retrieval.score_fusion import (
    FusionAccumulator,
    accumulate_rrf,
    iter_results,
    ranking_key,
    source_weight,
)
from tool_retriever.nodes.retrieval.similarity import (
    field_profile,
    profile_fingerprint,
    profile_similarity,
)

logger = logging.getLogger(__name__)


class DedupStrategy(StrEnum):
    """Deduplication strategy selector."""

    ID_BASED = "id_based"
    CONTENT_BASED = "content_based"
    HYBRID = "hybrid"
    RRF_ENHANCED = "rrf_enhanced"


class DeduplicationConfig(BaseModel):
    """Configuration for the result fusion engine."""

    model_config = ConfigDict(frozen=True)

    strategy: DedupStrategy = Field(default=DedupStrategy.HYBRID)
    similarity_threshold: float = Field(default=0.9, ge=0.0, le=1.0)
    fields: list[str] = Field(default_factory=lambda: ["name", "description", "category"])
    field_weights: dict[str, float] = Field(
        default_factory=lambda: {"name": 0.7, "description": 0.2, "category": 0.1}
    )
    fusion: FusionConfig = Field(default_factory=FusionConfig)
    enable_score_merging: bool = Field(
        default=True, description="Keep the max fused scores when near-duplicates collapse"
    )
    vector_type_thresholds: dict[str, float] = Field(
        default_factory=lambda: {
            "semantic": 0.8,
            "categories": 0.9,
            "functionality": 0.7,
            "aliases": 0.6,
            "composites": 0.5,
        },
        description="Duplicate tolerance per source type, used by rrf_enhanced",
    )
    batch_size: int = Field(default=100, ge=1)
    enable_parallel_processing: bool = Field(
        default=False, description="Process content comparisons in sequential batches"
    )

    def threshold_for(self, source_type: str) -> float:
        return self.vector_type_thresholds.get(source_type, self.similarity_threshold)


def multi_vector_dedup_config(**overrides: object) -> DeduplicationConfig:
    """Preset for fusing several vector facets with ``rrf_enhanced``."""
    values: dict[str, object] = {
        "strategy": DedupStrategy.RRF_ENHANCED,
        "similarity_threshold": 0.8,
    }
    values.update(overrides)
    return DeduplicationConfig.model_validate(values)


@dataclass
class MergeStats:
    """Counters describing one merge call."""

    strategy: str
    total_processed: int = 0
    unique_results: int = 0
    duplicates_removed: int = 0
    processing_time_ms: float = 0.0
    batch_count: int = 0
    anomalies: int = 0
    average_merged_score: float = 0.0
    source_attribution_summary: dict[str, int] = field(default_factory=dict)


@dataclass
class _Candidate:
    """An accumulator plus its precomputed content profile."""

    acc: FusionAccumulator
    profile: dict[str, str] = field(default_factory=dict)
    fingerprint: str = ""
    comparable: bool = True


@dataclass
class _Survivors:
    """Kept candidates plus the pools later candidates are compared against."""

    kept: list[_Candidate] = field(default_factory=list)
    groups: dict[str, list[_Candidate]] = field(default_factory=dict)
    pool: list[_Candidate] = field(default_factory=list)


class ResultDeduplicator:
    """Deduplicates and fuses search results using the configured strategy."""

    def __init__(self, config: DeduplicationConfig | None = None) -> None:
        self._config = config or DeduplicationConfig()

    @property
    def config(self) -> DeduplicationConfig:
        return self._config

    def merge(
        self, results_by_source: Mapping[str, Iterable[SearchResult]]
    ) -> tuple[list[MergedResult], MergeStats]:
        """Merge per-source result lists into one ranked, deduplicated list."""
        start = time.perf_counter()
        config = self._config
        results = list(iter_results(results_by_source))
        stats = MergeStats(strategy=config.strategy.value, total_processed=len(results))
        k = config.fusion.rrf_k

        if config.strategy == DedupStrategy.RRF_ENHANCED:
            entries = accumulate_rrf(results, config.fusion)
            entries.sort(key=ranking_key)
            entries = self._content_pass(entries, stats, grouped=False, per_type=True)
        elif config.strategy == DedupStrategy.ID_BASED:
            entries = self._first_by_id(results, k)
        elif config.strategy == DedupStrategy.CONTENT_BASED:
            entries = [self._single(result, k) for result in results]
            entries = self._content_pass(entries, stats, grouped=True, per_type=False)
        else:
            entries = self._first_by_id(results, k)
            entries = self._content_pass(entries, stats, grouped=True, per_type=False)

        entries.sort(key=ranking_key)
        merged = [entry.to_merged() for entry in entries]

        stats.unique_results = len(merged)
        stats.duplicates_removed = stats.total_processed - len(merged)
        stats.processing_time_ms = (time.perf_counter() - start) * 1000
        if merged:
            stats.average_merged_score = sum(m.weighted_score for m in merged) / len(merged)
        summary: Counter[str] = Counter(
            source.source_type for m in merged for source in m.sources
        )
        stats.source_attribution_summary = dict(summary)

        logger.debug(
            "Merged %d results into %d using %s (%d anomalies, %.1fms)",
            stats.total_processed,
            stats.unique_results,
            stats.strategy,
            stats.anomalies,
            stats.processing_time_ms,
        )
        return merged, stats

    # ------------------------------------------------------------------
    # Strategy building blocks
    # ------------------------------------------------------------------

    def _single(self, result: SearchResult, k: int) -> FusionAccumulator:
        acc = FusionAccumulator.start(result)
        acc.add(result, k, source_weight(result, self._config.fusion))
        return acc

    def _first_by_id(self, results: list[SearchResult], k: int) -> list[FusionAccumulator]:
        seen: set[str] = set()
        kept: list[FusionAccumulator] = []
        for result in results:
            if result.id in seen:
                continue
            seen.add(result.id)
            kept.append(self._single(result, k))
        return kept

    def _prepare(self, acc: FusionAccumulator, stats: MergeStats) -> _Candidate:
        fields = self._config.fields
        try:
            profile = field_profile(acc.item, fields)
        except (TypeError, ValueError, AttributeError) as exc:
            stats.anomalies += 1
            logger.warning("Passing %s through unmerged: malformed payload (%s)", acc.id, exc)
            return _Candidate(acc=acc, comparable=False)
        return _Candidate(acc=acc, profile=profile, fingerprint=profile_fingerprint(profile, fields))

    def _pair_threshold(self, a: _Candidate, b: _Candidate, per_type: bool) -> float:
        if not per_type:
            return self._config.similarity_threshold
        # The stricter tolerance wins so the outcome does not depend on order
        return max(
            self._config.threshold_for(a.acc.source_type),
            self._config.threshold_for(b.acc.source_type),
        )

    def _find_duplicate(
        self, candidate: _Candidate, pool: list[_Candidate], per_type: bool
    ) -> _Candidate | None:
        config = self._config
        for existing in pool:
            similarity = profile_similarity(
                candidate.profile, existing.profile, config.fields, config.field_weights
            )
            if similarity >= self._pair_threshold(candidate, existing, per_type):
                return existing
        return None

    def _collapse(
        self,
        candidates: list[_Candidate],
        survivors: _Survivors,
        grouped: bool,
        per_type: bool,
    ) -> None:
        for candidate in candidates:
            if not candidate.comparable:
                survivors.kept.append(candidate)
                continue
            if grouped:
                if not candidate.fingerprint:
                    survivors.kept.append(candidate)
                    continue
                search_pool = survivors.groups.setdefault(candidate.fingerprint, [])
            else:
                search_pool = survivors.pool
            target = self._find_duplicate(candidate, search_pool, per_type)
            if target is None:
                survivors.kept.append(candidate)
                search_pool.append(candidate)
            else:
                target.acc.absorb(candidate.acc, self._config.enable_score_merging)

    def _content_pass(
        self,
        entries: list[FusionAccumulator],
        stats: MergeStats,
        grouped: bool,
        per_type: bool,
    ) -> list[FusionAccumulator]:
        config = self._config
        candidates = [self._prepare(entry, stats) for entry in entries]
        survivors = _Survivors()

        if not (config.enable_parallel_processing and len(candidates) > config.batch_size):
            stats.batch_count = 1
            self._collapse(candidates, survivors, grouped, per_type)
            return [c.acc for c in survivors.kept]

        # Batches share one survivor state, so every candidate meets the same pool
        for offset in range(0, len(candidates), config.batch_size):
            stats.batch_count += 1
            self._collapse(
                candidates[offset : offset + config.batch_size], survivors, grouped, per_type
            )
        return [c.acc for c in survivors.kept]


def merge_results(
    results_by_source: Mapping[str, Iterable[SearchResult]],
    config: DeduplicationConfig | None = None,
) -> tuple[list[MergedResult], MergeStats]:
    """Convenience wrapper around :class:`ResultDeduplicator`."""
    return ResultDeduplicator(config).merge(results_by_source)


def as_search_results(merged: Iterable[MergedResult]) -> list[SearchResult]:
    """Re-express merged results as a ranked list, e.g. for a later merge pass.

    Each result keeps its representative ``source_type`` for per-type
    duplicate thresholds, but carries a pinned fusion weight of 1.0 so a
    later merge ranks purely by position and keeps the fused order.
    """
    return [
        SearchResult(
            id=m.id,
            score=m.score,
            source_type=m.source_type,
            rank=position,
            payload=dict(m.item),
            weight=1.0,
        )
        for position, m in enumerate(merged, start=1)
    ]
