"""State and result models for retrieval orchestration.

Each orchestrator stage returns a typed, frozen update that is folded into
an immutable :class:`PipelineState`; nothing mutates state in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from tool_retriever.nodes.retrieval.models import RoutingDecision

if TYPE_CHECKING:
    from tool_retriever.entities.plans import AnyPlan
    from tool_retriever.entities.results import MergedResult, StepOutcome, StrategyOutcome
    from tool_retriever.errors import ErrorCode
    from tool_retriever.nodes.retrieval.models import (
        ComplexityAnalysis,
        QualityValidation,
        SkipPerformance,
        SkipperOutcome,
        StageSkippingDecision,
    )


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class StageError:
    """A recovered failure recorded against one pipeline stage."""

    stage: str
    error: str
    code: ErrorCode
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class StageUpdate:
    """Fields every stage reports: its name, duration and recovered errors."""

    stage: str
    duration_ms: float
    errors: tuple[StageError, ...] = ()


@dataclass(frozen=True)
class SkipUpdate(StageUpdate):
    plan: AnyPlan | None = None
    skipper: SkipperOutcome | None = None
    routing_decision: RoutingDecision = RoutingDecision.FALLBACK


@dataclass(frozen=True)
class ExecutionUpdate(StageUpdate):
    results: tuple[MergedResult, ...] = ()
    step_outcomes: tuple[StepOutcome, ...] = ()
    strategy_outcomes: tuple[StrategyOutcome, ...] = ()


@dataclass(frozen=True)
class FusionUpdate(StageUpdate):
    results: tuple[MergedResult, ...] = ()
    merge_strategy: str | None = None


_BASE_FIELDS = frozenset(f.name for f in fields(StageUpdate))


@dataclass(frozen=True)
class PipelineState:
    """Immutable snapshot of one query's progress through the pipeline."""

    query: str
    draft_plan: AnyPlan
    plan: AnyPlan | None = None
    skipper: SkipperOutcome | None = None
    routing_decision: RoutingDecision = RoutingDecision.FALLBACK
    results: tuple[MergedResult, ...] = ()
    step_outcomes: tuple[StepOutcome, ...] = ()
    strategy_outcomes: tuple[StrategyOutcome, ...] = ()
    merge_strategy: str | None = None
    errors: tuple[StageError, ...] = ()
    stage_timings: tuple[tuple[str, float], ...] = ()

    def apply(self, update: StageUpdate) -> PipelineState:
        """Return a new state with *update* folded in."""
        changes = {
            f.name: getattr(update, f.name) for f in fields(update) if f.name not in _BASE_FIELDS
        }
        return replace(
            self,
            **changes,
            errors=self.errors + update.errors,
            stage_timings=(*self.stage_timings, (update.stage, update.duration_ms)),
        )


@dataclass
class ExecutionMetadata:
    """Everything a caller needs to judge how a response was produced."""

    execution_path: list[str] = field(default_factory=list)
    stage_timings_ms: dict[str, float] = field(default_factory=dict)
    step_timings_ms: dict[str, float] = field(default_factory=dict)
    complexity: ComplexityAnalysis | None = None
    skip_decision: StageSkippingDecision | None = None
    performance: SkipPerformance | None = None
    quality_validation: QualityValidation | None = None
    routing_decision: RoutingDecision = RoutingDecision.FALLBACK
    strategies_executed: int = 0
    strategies_successful: int = 0
    merge_strategy: str | None = None
    errors: list[StageError] = field(default_factory=list)
    total_time_ms: float = 0.0

    @property
    def degraded(self) -> bool:
        """True when any stage or strategy failure was recovered from."""
        return bool(self.errors)

    @classmethod
    def from_state(cls, state: PipelineState, total_time_ms: float) -> ExecutionMetadata:
        step_timings: dict[str, float] = {}
        for outcome in state.step_outcomes:
            step_timings[f"{outcome.index}:{outcome.name}"] = outcome.duration_ms
        for strategy in state.strategy_outcomes:
            for outcome in strategy.step_outcomes:
                key = f"{strategy.strategy_index}/{outcome.index}:{outcome.name}"
                step_timings[key] = outcome.duration_ms

        skipper = state.skipper
        return cls(
            execution_path=[stage for stage, _ in state.stage_timings],
            stage_timings_ms=dict(state.stage_timings),
            step_timings_ms=step_timings,
            complexity=skipper.complexity if skipper else None,
            skip_decision=skipper.decision if skipper else None,
            performance=skipper.performance if skipper else None,
            quality_validation=skipper.quality if skipper else None,
            routing_decision=state.routing_decision,
            strategies_executed=len(state.strategy_outcomes),
            strategies_successful=sum(1 for s in state.strategy_outcomes if s.success),
            merge_strategy=state.merge_strategy,
            errors=list(state.errors),
            total_time_ms=total_time_ms,
        )


@dataclass
class OrchestratorResult:
    """Final ranked results plus execution metadata. Never partial in shape."""

    results: list[MergedResult]
    metadata: ExecutionMetadata

    @property
    def ids(self) -> list[str]:
        return [result.id for result in self.results]
