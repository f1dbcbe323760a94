"""Performance benchmarks for the retrieval orchestrator."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from tool_retriever.entities import IntentSignals, MultiStrategyPlan, Plan, Step

if TYPE_CHECKING:
    from pytest_benchmark.fixture import BenchmarkFixture

SIMPLE_PLAN = Plan(
    steps=[
        Step(name="context-enrichment"),
        Step(name="semantic-search", parameters={"limit": 200}),
        Step(name="filter-by-category", parameters={"categories": ["chatbot"]}, input_from_step=1),
        Step(name="rank-by-relevance", parameters={"strategy": "hybrid"}, input_from_step=2),
    ]
)

MULTI_PLAN = MultiStrategyPlan(
    strategies=[
        Plan(steps=[Step(name="semantic-search", parameters={"limit": 20})]),
        Plan(steps=[Step(name="multi-vector-search", parameters={"limit": 20})]),
        Plan(
            steps=[
                Step(name="semantic-search", parameters={"facet": "functionality", "limit": 20}),
                Step(name="filter-by-price", parameters={"has_free_tier": True}, input_from_step=0),
            ]
        ),
    ],
    weights=[0.5, 0.3, 0.2],
)


class TestQueryLatency:
    """Query latency tests."""

    def test_simple_query_under_500ms(
        self, seeded_orchestrator, benchmark: BenchmarkFixture
    ) -> None:
        """Simple single-plan query should complete in under 500ms."""
        result = benchmark(
            seeded_orchestrator.retrieve_sync, "chatbot tool", SIMPLE_PLAN, confidence=0.85, top_k=5
        )
        assert result.results

        max_latency = benchmark.stats["max"] * 1000  # Convert to ms
        assert max_latency < 500, f"Query latency {max_latency:.0f}ms exceeds 500ms SLA"

    def test_multi_strategy_query_under_1000ms(
        self, seeded_orchestrator, benchmark: BenchmarkFixture
    ) -> None:
        """Three concurrent strategies plus fusion should complete in under 1000ms."""
        intent = IntentSignals(categories=["chatbot"], functionality=["chat"], is_comparative=True)
        result = benchmark(
            seeded_orchestrator.retrieve_sync,
            "compare chatbot tools with free tiers for customer support",
            MULTI_PLAN,
            intent,
            0.6,
            10,
        )
        assert result.metadata.strategies_successful == 3

        max_latency = benchmark.stats["max"] * 1000
        assert max_latency < 1000, f"Multi-strategy latency {max_latency:.0f}ms exceeds 1000ms"


class TestLoadStability:
    """Degradation detection across repeated queries."""

    def test_sequential_queries_no_degradation(self, seeded_orchestrator) -> None:
        """Later queries should not be markedly slower than earlier ones."""
        queries = [
            "chatbot for customer support",
            "image generation from prompts",
            "code completion in the editor",
            "summarization of long documents",
            "analytics dashboards for sales",
        ] * 2

        latencies: list[float] = []
        for query in queries:
            start = time.perf_counter()
            seeded_orchestrator.retrieve_sync(query, MULTI_PLAN, top_k=10)
            latencies.append(time.perf_counter() - start)

        first_half = sum(latencies[:5]) / 5
        second_half = sum(latencies[5:]) / 5
        # Allow generous jitter; flag only real degradation
        assert second_half < first_half * 3 + 0.05
