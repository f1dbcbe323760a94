"""Domain models for retrieval results, attribution and execution traces."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tool_retriever.errors import ErrorCode  # noqa: TC001


class SearchResult(BaseModel):
    """One ranked hit produced by a single retrieval step or strategy.

    The same ``id`` may recur across results from different sources.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    score: float = 0.0
    source_type: str = "unknown"
    rank: int = Field(default=1, ge=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    weight: float | None = None  # pinned fusion weight; None uses the source-type weight


class SourceAttribution(BaseModel):
    """One contribution retained on a merged result for auditing."""

    model_config = ConfigDict(frozen=True)

    source_type: str
    score: float
    rank: int
    weight: float
    strategy_index: int | None = None


class MergedResult(BaseModel):
    """A deduplicated result with fused scores and source attribution."""

    id: str
    item: dict[str, Any] = Field(default_factory=dict)
    rrf_score: float = 0.0
    weighted_score: float = 0.0
    sources: list[SourceAttribution] = Field(default_factory=list)
    merged_from_count: int = 0
    source_type: str = "unknown"  # source of the representative payload
    score: float = 0.0  # raw score of the representative payload

    @model_validator(mode="after")
    def _check_attribution(self) -> MergedResult:
        if self.merged_from_count != len(self.sources):
            msg = (
                f"merged_from_count={self.merged_from_count} does not match "
                f"{len(self.sources)} source attributions for {self.id}"
            )
            raise ValueError(msg)
        return self

    @property
    def source_types(self) -> set[str]:
        return {source.source_type for source in self.sources}


@dataclass
class StepOutput:
    """What a step function returns: an optional result list plus side-channel data."""

    results: list[SearchResult] | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class StepOutcome:
    """Telemetry for one executed (or rejected) step."""

    index: int
    name: str
    duration_ms: float
    success: bool
    result_count: int | None = None
    error: str | None = None


@dataclass
class StrategyOutcome:
    """Result of running one strategy of a multi-strategy plan."""

    strategy_index: int
    success: bool
    results: list[SearchResult]
    weight: float
    duration_ms: float
    step_outcomes: list[StepOutcome] = field(default_factory=list)
    error: str | None = None
    error_code: ErrorCode | None = None
