"""Entity models for the tool-retriever domain layer."""

from tool_retriever.entities.plans import (
    AnyPlan,
    IntentSignals,
    MergeStrategy,
    MultiStrategyPlan,
    Plan,
    PlanReasoning,
    Step,
)
from tool_retriever.entities.results import (
    MergedResult,
    SearchResult,
    SourceAttribution,
    StepOutcome,
    StepOutput,
    StrategyOutcome,
)

__all__ = [
    "AnyPlan",
    "IntentSignals",
    "MergeStrategy",
    "MergedResult",
    "MultiStrategyPlan",
    "Plan",
    "PlanReasoning",
    "SearchResult",
    "SourceAttribution",
    "Step",
    "StepOutcome",
    "StepOutput",
    "StrategyOutcome",
]
