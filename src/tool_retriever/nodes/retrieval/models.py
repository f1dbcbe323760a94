"""Data models for query complexity analysis and stage skipping."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tool_retriever.entities.plans import AnyPlan


class QueryComplexity(StrEnum):
    """Classification of query complexity for stage skipping."""

    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class RiskLevel(StrEnum):
    """Quality risk taken on by a stage skipping decision."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RoutingDecision(StrEnum):
    """Execution route implied by complexity, or fallback on skipper failure."""

    OPTIMAL = "optimal"
    MULTI_STRATEGY = "multi-strategy"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class ComplexityFactors:
    """Normalized 0-1 factors feeding the complexity score."""

    query_length: int
    term_count: int
    term_complexity: float
    intent_complexity: float
    constraint_complexity: float
    comparative_complexity: float


@dataclass(frozen=True)
class ComplexityAnalysis:
    """Per-query complexity classification. Ephemeral, never persisted."""

    complexity: QueryComplexity
    confidence: float
    overall_score: float
    factors: ComplexityFactors
    skip_eligibility: dict[str, bool]
    reasoning: tuple[str, ...] = ()


@dataclass(frozen=True)
class StageSkippingDecision:
    """Which optional stages to drop and what that is expected to buy."""

    skipped_stages: tuple[str, ...]
    optimization_gain_estimate: float
    risk_level: RiskLevel
    reasoning: tuple[str, ...] = ()


@dataclass(frozen=True)
class QualityValidation:
    """Advisory quality check on a skipping decision."""

    quality_score: float
    risk_level: RiskLevel
    passed: bool
    recommendations: tuple[str, ...] = ()


@dataclass(frozen=True)
class SkipPerformance:
    """Estimated savings of a skipping decision."""

    stages_skipped: int
    estimated_time_saved_ms: int
    optimization_gain: float
    risk_level: RiskLevel
    processing_time_ms: float


@dataclass(frozen=True)
class SkipperOutcome:
    """Everything the stage skipper produced for one query."""

    plan: AnyPlan
    decision: StageSkippingDecision
    complexity: ComplexityAnalysis
    quality: QualityValidation
    performance: SkipPerformance
    routing_decision: RoutingDecision = RoutingDecision.OPTIMAL
