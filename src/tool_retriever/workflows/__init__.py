"""Workflows package."""

from tool_retriever.workflows.models import (
    ExecutionMetadata,
    OrchestratorResult,
    PipelineState,
    StageError,
)
from tool_retriever.workflows.pipeline import RetrievalOrchestrator, wrap_single

__all__ = [
    "ExecutionMetadata",
    "OrchestratorResult",
    "PipelineState",
    "RetrievalOrchestrator",
    "StageError",
    "wrap_single",
]
