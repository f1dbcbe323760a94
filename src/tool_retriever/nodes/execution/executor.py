"""Plan executor: sequential step chains and concurrent strategy fan-out.

Steps inside one plan run strictly in index order. A multi-strategy plan
runs one asyncio task per strategy, each on its own copy of the execution
context, and waits for all of them or the overall deadline. Strategies still
running at the deadline are abandoned: the executor stops waiting and marks
them failed, but a step that cannot be interrupted (e.g. one running in a
worker thread) keeps running in the background until it returns.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from tool_retriever.config import EXECUTOR_CONFIG, ExecutorConfig
from tool_retriever.entities.plans import MultiStrategyPlan, Plan
from tool_retriever.entities.results import SearchResult, StepOutcome, StrategyOutcome
from tool_retriever.errors import (
    PlanConfigurationError,
    RetrievalError,
    StepExecutionError,
    StrategyTimeoutError,
    error_code_for,
)
from tool_retriever.nodes.execution.registry import StepRegistry, normalize_step_output

logger = logging.getLogger(__name__)

INPUT_KEY = "input"


@dataclass
class ExecutionContext:
    """Per-query state handed to the executor.

    ``variables`` are merged into every step's parameters (step parameters
    win). ``deadline`` is an absolute ``time.monotonic()`` value.
    """

    query: str = ""
    variables: dict[str, Any] = field(default_factory=dict)
    step_outputs: dict[int, Any] = field(default_factory=dict)
    deadline: float | None = None

    def copy(self) -> ExecutionContext:
        """Fresh context sharing no mutable state with this one."""
        return ExecutionContext(
            query=self.query,
            variables=dict(self.variables),
            step_outputs={},
            deadline=self.deadline,
        )

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(self.deadline - time.monotonic(), 0.0)


@dataclass
class PlanExecution:
    """Outcome of one single-plan run."""

    results: list[SearchResult] = field(default_factory=list)
    step_outcomes: list[StepOutcome] = field(default_factory=list)
    error: RetrievalError | None = None

    @property
    def success(self) -> bool:
        return self.error is None


class PlanExecutor:
    """Runs plans against a read-only step registry."""

    def __init__(
        self, registry: StepRegistry, config: ExecutorConfig | None = None
    ) -> None:
        self._registry = registry
        self._config = config or EXECUTOR_CONFIG

    @property
    def registry(self) -> StepRegistry:
        return self._registry

    def _parameters(self, plan: Plan, index: int, ctx: ExecutionContext) -> dict[str, Any]:
        step = plan.steps[index]
        params: dict[str, Any] = {"query": ctx.query, **ctx.variables, **step.parameters}
        if step.input_from_step is not None:
            upstream = ctx.step_outputs.get(step.input_from_step)
            results = normalize_step_output(upstream)
            params[INPUT_KEY] = results if results is not None else upstream
        return params

    async def _invoke(self, name: str, params: dict[str, Any]) -> Any:
        function = self._registry.lookup(name)
        if function is None:
            msg = f"Unknown step name: {name!r}"
            raise PlanConfigurationError(msg)
        if inspect.iscoroutinefunction(function):
            return await function(params)
        output = await asyncio.to_thread(function, params)
        if inspect.isawaitable(output):
            output = await output
        return output

    async def execute_single(
        self, plan: Plan, ctx: ExecutionContext | None = None
    ) -> PlanExecution:
        """Run *plan* step by step.

        Never raises for plan-level failures: an unknown step name, a bad
        dependency index or a raising step function stops the plan and is
        returned as ``error`` along with the outcomes produced so far. Step
        outputs are recorded on a copy of *ctx*, so a context can be reused.
        """
        ctx = ctx.copy() if ctx is not None else ExecutionContext()
        execution = PlanExecution()

        try:
            plan.validate_dependencies()
        except PlanConfigurationError as exc:
            logger.warning("Rejected plan before execution: %s", exc)
            execution.error = exc
            return execution

        last_results: list[SearchResult] | None = None
        for index, step in enumerate(plan.steps):
            start = time.perf_counter()
            try:
                output = await self._invoke(step.name, self._parameters(plan, index, ctx))
                results = normalize_step_output(output)
            except PlanConfigurationError as exc:
                execution.step_outcomes.append(
                    StepOutcome(index, step.name, _elapsed_ms(start), False, error=str(exc))
                )
                logger.warning("Aborting plan at step %d: %s", index, exc)
                execution.error = exc
                break
            except Exception as exc:
                error = StepExecutionError(step.name, index, exc)
                execution.step_outcomes.append(
                    StepOutcome(index, step.name, _elapsed_ms(start), False, error=str(error))
                )
                logger.warning("%s", error)
                execution.error = error
                break

            duration_ms = _elapsed_ms(start)
            ctx.step_outputs[index] = output
            if results is not None:
                last_results = results
            execution.step_outcomes.append(
                StepOutcome(
                    index,
                    step.name,
                    duration_ms,
                    True,
                    result_count=None if results is None else len(results),
                )
            )
            logger.debug("Step %d (%s) finished in %.1fms", index, step.name, duration_ms)

        # Partial results are not surfaced from a failed plan
        if execution.error is None and last_results is not None:
            execution.results = last_results
        return execution

    async def _run_strategy(
        self,
        index: int,
        plan: Plan,
        weight: float,
        ctx: ExecutionContext,
    ) -> StrategyOutcome:
        start = time.perf_counter()
        timeout = self._config.strategy_timeout_seconds
        try:
            if timeout is None:
                execution = await self.execute_single(plan, ctx)
            else:
                execution = await asyncio.wait_for(self.execute_single(plan, ctx), timeout)
        except TimeoutError:
            error = StrategyTimeoutError(index, timeout or 0.0)
            logger.warning("%s", error)
            return StrategyOutcome(
                strategy_index=index,
                success=False,
                results=[],
                weight=weight,
                duration_ms=_elapsed_ms(start),
                error=str(error),
                error_code=error.code,
            )

        return StrategyOutcome(
            strategy_index=index,
            success=execution.success,
            results=execution.results,
            weight=weight,
            duration_ms=_elapsed_ms(start),
            step_outcomes=execution.step_outcomes,
            error=None if execution.error is None else str(execution.error),
            error_code=None if execution.error is None else execution.error.code,
        )

    async def execute_multi_strategy(
        self, plan: MultiStrategyPlan, ctx: ExecutionContext | None = None
    ) -> list[StrategyOutcome]:
        """Run every strategy concurrently and collect one outcome per strategy.

        Outcomes are returned in strategy order. A failing or timed-out
        strategy never aborts its siblings.
        """
        ctx = ctx if ctx is not None else ExecutionContext()
        weights = plan.effective_weights()
        start = time.perf_counter()

        tasks = [
            asyncio.create_task(
                self._run_strategy(index, strategy, weights[index], ctx.copy()),
                name=f"strategy-{index}",
            )
            for index, strategy in enumerate(plan.strategies)
        ]

        timeout = ctx.remaining()
        if timeout is None:
            timeout = self._config.overall_timeout_seconds
        done, pending = await asyncio.wait(tasks, timeout=timeout)

        # Soft cancellation: stop waiting, do not await the cancelled tasks
        for task in pending:
            task.cancel()

        outcomes: list[StrategyOutcome] = []
        for index, task in enumerate(tasks):
            if task in done:
                outcomes.append(_task_outcome(task, index, weights[index], start))
                continue
            error = StrategyTimeoutError(index, timeout or 0.0)
            logger.warning("Abandoning strategy: %s", error)
            outcomes.append(
                StrategyOutcome(
                    strategy_index=index,
                    success=False,
                    results=[],
                    weight=weights[index],
                    duration_ms=_elapsed_ms(start),
                    error=str(error),
                    error_code=error.code,
                )
            )

        logger.info(
            "Executed %d strategies, %d succeeded in %.1fms",
            len(outcomes),
            sum(1 for outcome in outcomes if outcome.success),
            _elapsed_ms(start),
        )
        return outcomes


def _task_outcome(
    task: asyncio.Task[StrategyOutcome], index: int, weight: float, start: float
) -> StrategyOutcome:
    exc = task.exception()
    if exc is None:
        return task.result()
    # _run_strategy traps plan failures; this covers anything that escaped it
    logger.warning("Strategy %d crashed: %s", index, exc)
    return StrategyOutcome(
        strategy_index=index,
        success=False,
        results=[],
        weight=weight,
        duration_ms=_elapsed_ms(start),
        error=str(exc),
        error_code=error_code_for(exc),
    )


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
