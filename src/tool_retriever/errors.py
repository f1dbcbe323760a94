"""Error taxonomy for plan execution and result fusion."""

from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    """Distinguishes failure classes so callers can tell slow from broken."""

    CONFIGURATION = "configuration"
    EXECUTION = "execution"
    TIMEOUT = "timeout"
    MERGE_ANOMALY = "merge_anomaly"
    NO_PLAN = "no_plan"


class RetrievalError(Exception):
    """Base class for all retrieval orchestration errors."""

    code: ErrorCode = ErrorCode.EXECUTION


class PlanConfigurationError(RetrievalError):
    """Unknown step name or malformed dependency index. Fatal for the plan."""

    code = ErrorCode.CONFIGURATION


class StepExecutionError(RetrievalError):
    """A step function raised while running."""

    code = ErrorCode.EXECUTION

    def __init__(self, step_name: str, step_index: int, cause: BaseException) -> None:
        self.step_name = step_name
        self.step_index = step_index
        self.cause = cause
        super().__init__(f"Step {step_index} ({step_name}) failed: {cause}")


class StrategyTimeoutError(RetrievalError):
    """A strategy did not finish before its deadline."""

    code = ErrorCode.TIMEOUT

    def __init__(self, strategy_index: int, timeout_seconds: float) -> None:
        self.strategy_index = strategy_index
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Strategy {strategy_index} exceeded its {timeout_seconds:.3f}s deadline"
        )


class NoPlanError(RetrievalError):
    """Raised when there is nothing to execute at all."""

    code = ErrorCode.NO_PLAN


def error_code_for(exc: BaseException) -> ErrorCode:
    """Map any exception onto the taxonomy."""
    if isinstance(exc, RetrievalError):
        return exc.code
    if isinstance(exc, TimeoutError):
        return ErrorCode.TIMEOUT
    return ErrorCode.EXECUTION
