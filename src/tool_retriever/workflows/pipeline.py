"""RetrievalOrchestrator: stage skipping, plan execution and result fusion."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, Protocol

from tool_retriever.config import (
    EXECUTOR_CONFIG,
    FUSION_CONFIG,
    MERGER_CONFIG,
    ExecutorConfig,
    FusionConfig,
    MergerConfig,
)
from tool_retriever.entities.plans import MultiStrategyPlan, Plan
from tool_retriever.entities.results import MergedResult, SearchResult, SourceAttribution
from tool_retriever.errors import (
    ErrorCode,
    NoPlanError,
    StrategyTimeoutError,
    error_code_for,
)
from tool_retriever.nodes.execution.executor import ExecutionContext, PlanExecutor
from tool_retriever.nodes.retrieval.result_merger import merge_result_sets
from tool_retriever.nodes.retrieval.score_fusion import rrf_contribution, source_weight
from tool_retriever.nodes.retrieval.stage_skipper import StageSkipper
from tool_retriever.nodes.steps import build_default_registry
from tool_retriever.workflows.models import (
    ExecutionMetadata,
    ExecutionUpdate,
    FusionUpdate,
    OrchestratorResult,
    PipelineState,
    SkipUpdate,
    StageError,
)

if TYPE_CHECKING:
    from tool_retriever.entities.plans import AnyPlan, IntentSignals
    from tool_retriever.entities.results import StrategyOutcome
    from tool_retriever.memory.protocols import (
        EmbeddingProvider,
        RecordStore,
        VectorIndexClient,
    )
    from tool_retriever.nodes.execution.registry import StepRegistry
    from tool_retriever.nodes.retrieval.deduplication import DeduplicationConfig

logger = logging.getLogger(__name__)

STAGE_SKIPPING = "stage-skipping"
STAGE_EXECUTION = "execution"
STAGE_FUSION = "fusion"


class _Lifecycle(Protocol):
    def connect(self) -> None: ...

    def close(self) -> None: ...


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def _cancel_leftover_tasks(loop: asyncio.AbstractEventLoop) -> None:
    """Cancel abandoned strategy tasks and let them unwind on *loop*."""
    pending = asyncio.all_tasks(loop)
    if not pending:
        return
    for task in pending:
        task.cancel()
    loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))


def wrap_single(results: list[SearchResult], fusion: FusionConfig) -> list[MergedResult]:
    """Express one plan's results as merged results, keeping order.

    The first occurrence of an id wins; each result carries one attribution.
    """
    wrapped: list[MergedResult] = []
    seen: set[str] = set()
    for result in results:
        if result.id in seen:
            continue
        seen.add(result.id)
        weight = source_weight(result, fusion)
        contribution = rrf_contribution(result.rank, fusion.rrf_k)
        wrapped.append(
            MergedResult(
                id=result.id,
                item=dict(result.payload),
                rrf_score=contribution,
                weighted_score=contribution * weight,
                sources=[
                    SourceAttribution(
                        source_type=result.source_type,
                        score=result.score,
                        rank=result.rank,
                        weight=weight,
                    )
                ],
                merged_from_count=1,
                source_type=result.source_type,
                score=result.score,
            )
        )
    return wrapped


class RetrievalOrchestrator:
    """Sequences stage skipping, plan execution and result fusion for one query.

    Partial failures never raise: they are recorded in the result metadata
    and the response degrades to whatever results survived. The only error
    surfaced to the caller is :class:`NoPlanError`.
    """

    def __init__(
        self,
        registry: StepRegistry,
        skipper: StageSkipper | None = None,
        executor_config: ExecutorConfig | None = None,
        fusion: FusionConfig | None = None,
        merger: MergerConfig | None = None,
        collaborators: list[_Lifecycle] | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            registry: Read-only step registry shared by all queries.
            skipper: Stage skipper; defaults to one with the default config.
            executor_config: Overall and per-strategy deadlines.
            fusion: RRF parameters for result-set merging.
            merger: Result-set merge configuration.
            collaborators: Objects whose ``connect``/``close`` follow the
                orchestrator's lifecycle.
        """
        self._skipper = skipper or StageSkipper()
        self._executor_config = executor_config or EXECUTOR_CONFIG
        self._executor = PlanExecutor(registry, self._executor_config)
        self._fusion = fusion or FUSION_CONFIG
        self._merger = merger or MERGER_CONFIG
        self._collaborators = list(collaborators or [])

    @classmethod
    def from_collaborators(
        cls,
        embedder: EmbeddingProvider,
        index: VectorIndexClient,
        records: RecordStore,
        dedup_config: DeduplicationConfig | None = None,
        **kwargs: Any,
    ) -> RetrievalOrchestrator:
        """Build an orchestrator over the default step registry."""
        registry = build_default_registry(
            embedder,
            index,
            records,
            dedup_config=dedup_config,
            fusion=kwargs.get("fusion"),
            merger=kwargs.get("merger"),
        )
        return cls(registry, collaborators=[embedder, index, records], **kwargs)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        for collaborator in self._collaborators:
            collaborator.connect()

    def close(self) -> None:
        for collaborator in reversed(self._collaborators):
            collaborator.close()

    async def __aenter__(self) -> RetrievalOrchestrator:
        await asyncio.to_thread(self.connect)
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await asyncio.to_thread(self.close)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _skip_stage(
        self,
        query: str,
        intent: IntentSignals | None,
        confidence: float,
        draft_plan: AnyPlan,
        recovery_mode: bool,
    ) -> SkipUpdate:
        start = time.perf_counter()
        if not self._skipper.enabled:
            return SkipUpdate(stage=STAGE_SKIPPING, duration_ms=0.0, plan=draft_plan)
        try:
            outcome = self._skipper.evaluate(query, intent, confidence, draft_plan, recovery_mode)
        except Exception as exc:
            logger.error("Stage skipping failed, running the draft plan: %s", exc)
            error = StageError(STAGE_SKIPPING, str(exc), error_code_for(exc))
            return SkipUpdate(
                stage=STAGE_SKIPPING,
                duration_ms=_elapsed_ms(start),
                errors=(error,),
                plan=draft_plan,
            )
        return SkipUpdate(
            stage=STAGE_SKIPPING,
            duration_ms=_elapsed_ms(start),
            plan=outcome.plan,
            skipper=outcome,
            routing_decision=outcome.routing_decision,
        )

    async def _execute_single(self, plan: Plan, ctx: ExecutionContext) -> ExecutionUpdate:
        start = time.perf_counter()
        try:
            execution = await asyncio.wait_for(
                self._executor.execute_single(plan, ctx), ctx.remaining()
            )
        except TimeoutError:
            error = StrategyTimeoutError(0, self._executor_config.overall_timeout_seconds or 0.0)
            logger.error("Plan execution timed out: %s", error)
            return ExecutionUpdate(
                stage=STAGE_EXECUTION,
                duration_ms=_elapsed_ms(start),
                errors=(StageError(STAGE_EXECUTION, str(error), error.code),),
            )

        errors: tuple[StageError, ...] = ()
        if execution.error is not None:
            logger.error("Plan execution failed: %s", execution.error)
            errors = (StageError(STAGE_EXECUTION, str(execution.error), execution.error.code),)
        return ExecutionUpdate(
            stage=STAGE_EXECUTION,
            duration_ms=_elapsed_ms(start),
            errors=errors,
            results=tuple(wrap_single(execution.results, self._fusion)),
            step_outcomes=tuple(execution.step_outcomes),
        )

    async def _execute_multi(
        self, plan: MultiStrategyPlan, ctx: ExecutionContext
    ) -> ExecutionUpdate:
        start = time.perf_counter()
        outcomes = await self._executor.execute_multi_strategy(plan, ctx)
        errors: list[StageError] = []
        for outcome in outcomes:
            if outcome.success:
                continue
            stage = f"strategy-{outcome.strategy_index}"
            logger.error("Strategy %d failed: %s", outcome.strategy_index, outcome.error)
            code = outcome.error_code or ErrorCode.EXECUTION
            errors.append(StageError(stage, outcome.error or "unknown error", code))
        return ExecutionUpdate(
            stage=STAGE_EXECUTION,
            duration_ms=_elapsed_ms(start),
            errors=tuple(errors),
            strategy_outcomes=tuple(outcomes),
        )

    def _fusion_stage(
        self, plan: MultiStrategyPlan, outcomes: list[StrategyOutcome]
    ) -> FusionUpdate:
        start = time.perf_counter()
        strategy = plan.merge_strategy
        try:
            merged = merge_result_sets(outcomes, strategy, self._fusion, self._merger)
        except Exception as exc:
            # Degrade to the successful strategies' results in plan order
            logger.error("Result-set merge failed, returning unmerged results: %s", exc)
            survivors = [r for o in outcomes if o.success for r in o.results]
            return FusionUpdate(
                stage=STAGE_FUSION,
                duration_ms=_elapsed_ms(start),
                errors=(StageError(STAGE_FUSION, str(exc), ErrorCode.MERGE_ANOMALY),),
                results=tuple(wrap_single(survivors, self._fusion)),
                merge_strategy=strategy.value,
            )
        return FusionUpdate(
            stage=STAGE_FUSION,
            duration_ms=_elapsed_ms(start),
            results=tuple(merged),
            merge_strategy=strategy.value,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def retrieve(
        self,
        query: str,
        plan: AnyPlan | None,
        intent: IntentSignals | None = None,
        confidence: float = 0.5,
        top_k: int | None = None,
        variables: dict[str, Any] | None = None,
        recovery_mode: bool = False,
    ) -> OrchestratorResult:
        """Run one query through the pipeline.

        Raises:
            NoPlanError: If no plan was supplied.
        """
        if plan is None:
            msg = "No retrieval plan supplied"
            raise NoPlanError(msg)

        start = time.perf_counter()
        timeout = self._executor_config.overall_timeout_seconds
        ctx = ExecutionContext(
            query=query,
            variables=dict(variables or {}),
            deadline=None if timeout is None else time.monotonic() + timeout,
        )

        state = PipelineState(query=query, draft_plan=plan)
        state = state.apply(self._skip_stage(query, intent, confidence, plan, recovery_mode))
        active = state.plan if state.plan is not None else plan

        try:
            if isinstance(active, MultiStrategyPlan):
                execution = await self._execute_multi(active, ctx)
            else:
                execution = await self._execute_single(active, ctx)
        except Exception as exc:
            logger.error("Execution stage crashed: %s", exc)
            execution = ExecutionUpdate(
                stage=STAGE_EXECUTION,
                duration_ms=_elapsed_ms(start),
                errors=(StageError(STAGE_EXECUTION, str(exc), error_code_for(exc)),),
            )
        state = state.apply(execution)
        if isinstance(active, MultiStrategyPlan):
            state = state.apply(self._fusion_stage(active, list(state.strategy_outcomes)))

        results = list(state.results)
        if top_k is not None:
            results = results[:top_k]

        metadata = ExecutionMetadata.from_state(state, _elapsed_ms(start))
        logger.info(
            "Retrieved %d results for %r via %s in %.1fms (%d errors)",
            len(results),
            query,
            " -> ".join(metadata.execution_path),
            metadata.total_time_ms,
            len(metadata.errors),
        )
        return OrchestratorResult(results=results, metadata=metadata)

    def retrieve_sync(
        self,
        query: str,
        plan: AnyPlan | None,
        intent: IntentSignals | None = None,
        confidence: float = 0.5,
        top_k: int | None = None,
        variables: dict[str, Any] | None = None,
        recovery_mode: bool = False,
    ) -> OrchestratorResult:
        """Blocking wrapper around :meth:`retrieve` for callers without a loop.

        Returns at the overall deadline even when an abandoned step is still
        running in a worker thread; that thread finishes in the background.
        """
        loop = asyncio.new_event_loop()
        try:
            return loop.run_until_complete(
                self.retrieve(query, plan, intent, confidence, top_k, variables, recovery_mode)
            )
        finally:
            _cancel_leftover_tasks(loop)
            loop.run_until_complete(loop.shutdown_asyncgens())
            # close() shuts the default executor down without waiting for its threads
            loop.close()
