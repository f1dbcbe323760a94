"""Domain models for retrieval plans.

A ``Plan`` is an ordered list of named steps resolved against a step
registry at execution time. A ``MultiStrategyPlan`` bundles several
independent plans that run concurrently and are fused afterwards.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tool_retriever.errors import PlanConfigurationError


class MergeStrategy(StrEnum):
    """How result sets from several executed strategies are consolidated."""

    WEIGHTED = "weighted"
    BEST = "best"
    DIVERSE = "diverse"


class Step(BaseModel):
    """A single named retrieval step.

    ``input_from_step`` creates a data dependency: the referenced earlier
    step's output is injected into this step's parameters under ``input``.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    input_from_step: int | None = None


class PlanReasoning(BaseModel):
    """Audit record appended by plan optimizers."""

    model_config = ConfigDict(frozen=True)

    stage: str
    decision: str
    confidence: float
    supporting_evidence: list[str] = Field(default_factory=list)


class Plan(BaseModel):
    """Ordered sequence of steps executed strictly in index order."""

    model_config = ConfigDict(frozen=True)

    steps: list[Step] = Field(default_factory=list)
    description: str = ""
    reasoning: list[PlanReasoning] = Field(default_factory=list)

    @property
    def step_names(self) -> list[str]:
        return [step.name for step in self.steps]

    def validate_dependencies(self) -> None:
        """Reject dependencies on the step itself or on a later step.

        Raises:
            PlanConfigurationError: If any ``input_from_step`` is negative,
                self-referencing or forward-referencing.
        """
        for index, step in enumerate(self.steps):
            ref = step.input_from_step
            if ref is None:
                continue
            if ref < 0 or ref >= index:
                msg = (
                    f"Step {index} ({step.name}) has invalid input_from_step={ref}; "
                    "it must reference an earlier step"
                )
                raise PlanConfigurationError(msg)


class MultiStrategyPlan(BaseModel):
    """Independent strategies run in parallel, then fused with ``merge_strategy``."""

    model_config = ConfigDict(frozen=True)

    strategies: list[Plan]
    weights: list[float] | None = None
    merge_strategy: MergeStrategy = MergeStrategy.WEIGHTED
    description: str = ""
    reasoning: list[PlanReasoning] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_weights(self) -> MultiStrategyPlan:
        if not self.strategies:
            msg = "A multi-strategy plan needs at least one strategy"
            raise ValueError(msg)
        if self.weights is not None and len(self.weights) != len(self.strategies):
            msg = (
                f"weights has {len(self.weights)} entries but there are "
                f"{len(self.strategies)} strategies"
            )
            raise ValueError(msg)
        if self.weights is not None and any(w < 0 for w in self.weights):
            msg = "strategy weights must be non-negative"
            raise ValueError(msg)
        return self

    def effective_weights(self) -> list[float]:
        """Supplied weights, or a uniform vector when none were given."""
        if self.weights is not None:
            return list(self.weights)
        return [1.0 / len(self.strategies)] * len(self.strategies)


AnyPlan = Plan | MultiStrategyPlan


class IntentSignals(BaseModel):
    """Structured intent extracted upstream from the natural-language query."""

    model_config = ConfigDict(frozen=True)

    tool_names: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    functionality: list[str] = Field(default_factory=list)
    interface: list[str] = Field(default_factory=list)
    user_types: list[str] = Field(default_factory=list)
    deployment: list[str] = Field(default_factory=list)
    price_constraints: dict[str, Any] | None = None
    is_comparative: bool = False

    def populated_fields(self) -> int:
        """Count of intent list fields that carry at least one value."""
        fields = (
            self.tool_names,
            self.categories,
            self.functionality,
            self.interface,
            self.user_types,
            self.deployment,
        )
        return sum(1 for values in fields if values)
