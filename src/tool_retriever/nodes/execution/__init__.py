"""Plan execution: step registry and executor."""

from tool_retriever.nodes.execution.executor import (
    ExecutionContext,
    PlanExecution,
    PlanExecutor,
)
from tool_retriever.nodes.execution.registry import (
    StepFunction,
    StepRegistry,
    normalize_step_output,
)

__all__ = [
    "ExecutionContext",
    "PlanExecution",
    "PlanExecutor",
    "StepFunction",
    "StepRegistry",
    "normalize_step_output",
]
