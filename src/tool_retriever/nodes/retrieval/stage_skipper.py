"""Adaptive stage skipping driven by query complexity.

Scores the query on four normalized factors, classifies it as simple,
moderate or complex, decides which optional stages can be dropped, and
filters the draft plan accordingly. The result carries a risk level and an
advisory quality validation so callers can tell aggressive skipping apart
from safe skipping.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from tool_retriever.config import (
    SKIPPER_CONFIG,
    STAGE_CONTEXT_ENRICHMENT,
    STAGE_DETAILED_LOGGING,
    STAGE_LOCAL_NLP,
    STAGE_PERFORMANCE_MONITORING,
    STAGE_QUALITY_ASSESSMENT,
    STAGE_RESULT_MERGING,
    STAGE_SEMANTIC_EXPANSION,
    SkipperConfig,
)
from tool_retriever.entities.plans import (
    IntentSignals,
    MultiStrategyPlan,
    PlanReasoning,
    Step,
)
from tool_retriever.nodes.retrieval.models import (
    ComplexityAnalysis,
    ComplexityFactors,
    QualityValidation,
    QueryComplexity,
    RiskLevel,
    RoutingDecision,
    SkipPerformance,
    SkipperOutcome,
    StageSkippingDecision,
)

if TYPE_CHECKING:
    from tool_retriever.entities.plans import AnyPlan

logger = logging.getLogger(__name__)

# Complexity factor weights
TERM_WEIGHT = 0.3
INTENT_WEIGHT = 0.4
PRICE_WEIGHT = 0.15
COMPARATIVE_WEIGHT = 0.15

TERMS_FOR_FULL_COMPLEXITY = 10
INTENT_FIELD_COUNT = 6

# Classification thresholds
SIMPLE_MAX_SCORE = 0.5
SIMPLE_MIN_CONFIDENCE = 0.7
MODERATE_MAX_SCORE = 0.8
MODERATE_RELAXED_MAX_SCORE = 0.9
MODERATE_RELAXED_MIN_CONFIDENCE = 0.5

# Risk and quality
MEDIUM_RISK_GAIN = 0.4
HIGH_RISK_MAX_SKIPS_ON_COMPLEX = 2
QUALITY_GAIN_PENALTY = 0.3
QUALITY_COMPLEX_PENALTY = 0.2
QUALITY_HIGH_RISK_PENALTY = 0.15
QUALITY_LOW_CONFIDENCE_PENALTY = 0.1
QUALITY_LOW_CONFIDENCE = 0.6
QUALITY_FLOOR = 0.5
QUALITY_PASS_SCORE = 0.7


def analyze_complexity(
    query: str, intent: IntentSignals, confidence: float
) -> ComplexityAnalysis:
    """Classify *query* as simple, moderate or complex.

    The score is ``0.3*term + 0.4*intent + 0.15*price + 0.15*comparative``
    where every factor is normalized to [0, 1].
    """
    terms = query.split()
    term_count = len(terms)
    term_complexity = min(term_count / TERMS_FOR_FULL_COMPLEXITY, 1.0)
    intent_complexity = min(intent.populated_fields() / INTENT_FIELD_COUNT, 1.0)
    constraint_complexity = 1.0 if intent.price_constraints else 0.0
    comparative_complexity = 1.0 if intent.is_comparative else 0.0

    overall = (
        term_complexity * TERM_WEIGHT
        + intent_complexity * INTENT_WEIGHT
        + constraint_complexity * PRICE_WEIGHT
        + comparative_complexity * COMPARATIVE_WEIGHT
    )

    if overall < SIMPLE_MAX_SCORE and confidence > SIMPLE_MIN_CONFIDENCE:
        complexity = QueryComplexity.SIMPLE
        reasoning = (
            f"Low term complexity ({term_complexity:.2f})",
            f"Low intent complexity ({intent_complexity:.2f})",
            f"High confidence ({confidence:.2f})",
        )
    elif overall < MODERATE_MAX_SCORE or (
        overall < MODERATE_RELAXED_MAX_SCORE and confidence > MODERATE_RELAXED_MIN_CONFIDENCE
    ):
        complexity = QueryComplexity.MODERATE
        reasoning = (
            f"Moderate term complexity ({term_complexity:.2f})",
            f"Moderate intent complexity ({intent_complexity:.2f})",
            f"Confidence level: {confidence:.2f}",
        )
    else:
        complexity = QueryComplexity.COMPLEX
        reasoning = (
            f"High term complexity ({term_complexity:.2f})",
            f"High intent complexity ({intent_complexity:.2f})",
            f"Comparative query: {intent.is_comparative}",
        )

    simple = complexity == QueryComplexity.SIMPLE
    skip_eligibility = {
        STAGE_CONTEXT_ENRICHMENT: simple and confidence > 0.7,
        STAGE_LOCAL_NLP: simple and term_count < 6 and confidence > 0.6,
        STAGE_RESULT_MERGING: len(intent.tool_names) <= 1 and not intent.is_comparative,
        STAGE_QUALITY_ASSESSMENT: simple and confidence > 0.8,
        STAGE_SEMANTIC_EXPANSION: simple and confidence > 0.8,
    }

    return ComplexityAnalysis(
        complexity=complexity,
        confidence=confidence,
        overall_score=overall,
        factors=ComplexityFactors(
            query_length=len(query),
            term_count=term_count,
            term_complexity=term_complexity,
            intent_complexity=intent_complexity,
            constraint_complexity=constraint_complexity,
            comparative_complexity=comparative_complexity,
        ),
        skip_eligibility=skip_eligibility,
        reasoning=reasoning,
    )


_SKIP_REASONS: dict[str, str] = {
    STAGE_CONTEXT_ENRICHMENT: "Context enrichment skipped: simple query with adequate confidence",
    STAGE_LOCAL_NLP: "Local NLP skipped: straightforward query with manageable terms",
    STAGE_RESULT_MERGING: "Result merging skipped: single-source query",
    STAGE_QUALITY_ASSESSMENT: "Quality assessment skipped: high confidence simple query",
    STAGE_SEMANTIC_EXPANSION: "Semantic expansion skipped: very simple high-confidence query",
}


def decide_skipping(
    analysis: ComplexityAnalysis,
    recovery_mode: bool = False,
    config: SkipperConfig = SKIPPER_CONFIG,
) -> StageSkippingDecision:
    """Turn skip eligibility into a decision with a capped gain and risk level."""
    skipped: list[str] = []
    reasoning: list[str] = []
    gain = 0.0

    for stage, eligible in analysis.skip_eligibility.items():
        if not eligible:
            continue
        skipped.append(stage)
        gain += config.stage_gains.get(stage, 0.0)
        reasoning.append(_SKIP_REASONS.get(stage, f"{stage} skipped"))

    if recovery_mode:
        skipped.extend([STAGE_PERFORMANCE_MONITORING, STAGE_DETAILED_LOGGING])
        gain += config.stage_gains.get(STAGE_PERFORMANCE_MONITORING, 0.0)
        reasoning.append("Non-essential monitoring skipped: recovery mode active")

    skipped = list(dict.fromkeys(skipped))

    # Risk uses the uncapped cumulative gain
    risk = RiskLevel.LOW
    if gain > MEDIUM_RISK_GAIN:
        risk = RiskLevel.MEDIUM
    if (
        analysis.complexity == QueryComplexity.COMPLEX
        and len(skipped) > HIGH_RISK_MAX_SKIPS_ON_COMPLEX
    ):
        risk = RiskLevel.HIGH

    return StageSkippingDecision(
        skipped_stages=tuple(skipped),
        optimization_gain_estimate=min(gain, config.max_gain),
        risk_level=risk,
        reasoning=tuple(reasoning),
    )


def validate_quality(
    decision: StageSkippingDecision, analysis: ComplexityAnalysis
) -> QualityValidation:
    """Advisory check that skipping does not cost too much quality.

    A failed validation is recorded, never enforced here.
    """
    score = 1.0 - decision.optimization_gain_estimate * QUALITY_GAIN_PENALTY
    recommendations: list[str] = []

    if (
        analysis.complexity == QueryComplexity.COMPLEX
        and len(decision.skipped_stages) > HIGH_RISK_MAX_SKIPS_ON_COMPLEX
    ):
        score -= QUALITY_COMPLEX_PENALTY
        recommendations.append("Consider enabling more stages for complex queries")

    if decision.risk_level == RiskLevel.HIGH:
        score -= QUALITY_HIGH_RISK_PENALTY
        recommendations.append("High risk skipping: monitor quality metrics closely")

    if analysis.confidence < QUALITY_LOW_CONFIDENCE:
        score -= QUALITY_LOW_CONFIDENCE_PENALTY
        recommendations.append("Low confidence query: consider full execution")

    score = round(max(score, QUALITY_FLOOR), 2)
    passed = score > QUALITY_PASS_SCORE and decision.risk_level != RiskLevel.HIGH
    if not passed:
        recommendations.append("Quality validation failed: consider reducing stage skipping")

    return QualityValidation(
        quality_score=score,
        risk_level=decision.risk_level,
        passed=passed,
        recommendations=tuple(recommendations),
    )


def filter_steps(steps: list[Step], skipped: set[str]) -> list[Step]:
    """Drop skipped steps, rewiring dependencies past them.

    A skipped step behaves as a pass-through: a kept step that consumed it
    is pointed at whatever the skipped step itself consumed.
    """
    new_index: dict[int, int] = {}
    kept: list[Step] = []

    def resolve(ref: int | None) -> int | None:
        while ref is not None and ref not in new_index:
            if not 0 <= ref < len(steps):
                return ref  # malformed, left for the executor to reject
            ref = steps[ref].input_from_step
        return None if ref is None else new_index[ref]

    for index, step in enumerate(steps):
        if step.name in skipped:
            continue
        ref = step.input_from_step
        if ref is not None and 0 <= ref < index:
            ref = resolve(ref)
        new_index[index] = len(kept)
        kept.append(step.model_copy(update={"input_from_step": ref}))
    return kept


def optimize_plan(plan: AnyPlan, decision: StageSkippingDecision) -> AnyPlan:
    """Filter skipped stage names out of a single or multi-strategy plan."""
    skipped = set(decision.skipped_stages)
    count = len(decision.skipped_stages)
    note = PlanReasoning(
        stage="stage-skipping",
        decision=f"Skipped {count} stages",
        confidence=1 - decision.optimization_gain_estimate * 0.5,
        supporting_evidence=list(decision.reasoning),
    )
    suffix = f"(optimized: {count} stages skipped)"

    if isinstance(plan, MultiStrategyPlan):
        strategies = [
            strategy.model_copy(update={"steps": filter_steps(strategy.steps, skipped)})
            for strategy in plan.strategies
        ]
        return plan.model_copy(
            update={
                "strategies": strategies,
                "description": f"{plan.description} {suffix}".strip(),
                "reasoning": [*plan.reasoning, note],
            }
        )

    return plan.model_copy(
        update={
            "steps": filter_steps(plan.steps, skipped),
            "description": f"{plan.description} {suffix}".strip(),
            "reasoning": [*plan.reasoning, note],
        }
    )


def routing_for(complexity: QueryComplexity) -> RoutingDecision:
    if complexity == QueryComplexity.SIMPLE:
        return RoutingDecision.OPTIMAL
    return RoutingDecision.MULTI_STRATEGY


class StageSkipper:
    """Produces an optimized plan plus a skipping decision for one query."""

    def __init__(self, config: SkipperConfig | None = None) -> None:
        self._config = config or SKIPPER_CONFIG

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def evaluate(
        self,
        query: str,
        intent: IntentSignals | None,
        confidence: float,
        draft_plan: AnyPlan,
        recovery_mode: bool = False,
    ) -> SkipperOutcome:
        """Run analysis, decision, plan filtering and quality validation."""
        start = time.perf_counter()
        analysis = analyze_complexity(query, intent or IntentSignals(), confidence)
        decision = decide_skipping(analysis, recovery_mode, self._config)
        plan = optimize_plan(draft_plan, decision) if decision.skipped_stages else draft_plan
        quality = validate_quality(decision, analysis)

        elapsed_ms = (time.perf_counter() - start) * 1000
        performance = SkipPerformance(
            stages_skipped=len(decision.skipped_stages),
            estimated_time_saved_ms=sum(
                self._config.stage_time_estimates_ms.get(stage, 0)
                for stage in decision.skipped_stages
            ),
            optimization_gain=decision.optimization_gain_estimate,
            risk_level=decision.risk_level,
            processing_time_ms=elapsed_ms,
        )

        logger.info(
            "Complexity %s (score %.2f), skipped %d stages, estimated gain %.0f%%, risk %s",
            analysis.complexity.value,
            analysis.overall_score,
            len(decision.skipped_stages),
            decision.optimization_gain_estimate * 100,
            decision.risk_level.value,
        )
        if not quality.passed:
            logger.warning(
                "Stage skipping quality validation failed (score %.2f)", quality.quality_score
            )

        return SkipperOutcome(
            plan=plan,
            decision=decision,
            complexity=analysis,
            quality=quality,
            performance=performance,
            routing_decision=routing_for(analysis.complexity),
        )

    def optimize(
        self,
        query: str,
        intent: IntentSignals | None,
        confidence: float,
        draft_plan: AnyPlan,
    ) -> tuple[AnyPlan, StageSkippingDecision]:
        """Return the optimized plan and the skipping decision."""
        outcome = self.evaluate(query, intent, confidence, draft_plan)
        return outcome.plan, outcome.decision
