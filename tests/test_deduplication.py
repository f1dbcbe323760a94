"""Tests for the result fusion engine (deduplication strategies)."""

from __future__ import annotations

import pytest

from tool_retriever.entities import SearchResult
from tool_retriever.nodes.retrieval.deduplication import (
    DeduplicationConfig,
    DedupStrategy,
    ResultDeduplicator,
    as_search_results,
    merge_results,
    multi_vector_dedup_config,
)

CHATBASE = {
    "name": "Chatbase",
    "description": "Custom AI chatbot trained on your data",
    "category": "chatbot",
}
MIDJOURNEY = {
    "name": "Midjourney",
    "description": "Generate images from text prompts",
    "category": "image generation",
}
COPILOT = {
    "name": "GitHub Copilot",
    "description": "AI pair programmer that suggests code",
    "category": "code assistant",
}


class Unprintable:
    def __str__(self) -> str:
        msg = "cannot render"
        raise ValueError(msg)


def _result(
    item_id: str,
    source_type: str = "semantic",
    rank: int = 1,
    score: float = 0.5,
    payload: dict | None = None,
) -> SearchResult:
    return SearchResult(
        id=item_id, score=score, source_type=source_type, rank=rank, payload=payload or {}
    )


def _config(strategy: DedupStrategy, **overrides: object) -> DeduplicationConfig:
    return DeduplicationConfig.model_validate({"strategy": strategy, **overrides})


@pytest.fixture
def mixed_sources() -> dict[str, list[SearchResult]]:
    """Same ids across facets plus a content duplicate under a different id."""
    return {
        "semantic": [
            _result("chatbase", "semantic", 1, 0.9, CHATBASE),
            _result("midjourney", "semantic", 2, 0.7, MIDJOURNEY),
        ],
        "functionality": [
            _result("chatbase", "functionality", 1, 0.8, CHATBASE),
            _result("copilot", "functionality", 2, 0.6, COPILOT),
        ],
        "aliases": [
            _result("chatbase-mirror", "aliases", 1, 0.5, dict(CHATBASE)),
        ],
    }


class TestFacetScenario:
    """Two facets agree on tool1, a third facet returns tool2."""

    def test_rrf_enhanced_merges_across_facets(self) -> None:
        merged, stats = merge_results(
            {
                "semantic": [_result("tool1", "semantic", 1, 0.9)],
                "functionality": [_result("tool1", "functionality", 2, 0.85)],
                "categories": [_result("tool2", "categories", 1, 0.8)],
            },
            multi_vector_dedup_config(),
        )
        assert len(merged) == 2
        by_id = {m.id: m for m in merged}
        assert len(by_id["tool1"].sources) == 2
        assert by_id["tool1"].weighted_score > by_id["tool2"].weighted_score
        assert by_id["tool1"].weighted_score == pytest.approx(1.0 / 61 + 0.7 / 62)
        assert merged[0].id == "tool1"
        assert stats.total_processed == 3
        assert stats.duplicates_removed == 1


class TestIdBased:
    def test_first_occurrence_wins(self, mixed_sources) -> None:
        merged, stats = merge_results(mixed_sources, _config(DedupStrategy.ID_BASED))
        by_id = {m.id: m for m in merged}
        assert set(by_id) == {"chatbase", "midjourney", "copilot", "chatbase-mirror"}
        assert by_id["chatbase"].merged_from_count == 1
        assert by_id["chatbase"].sources[0].source_type == "semantic"
        assert stats.duplicates_removed == 1


class TestContentBased:
    def test_collapses_identical_content_under_different_ids(self, mixed_sources) -> None:
        merged, stats = merge_results(mixed_sources, _config(DedupStrategy.CONTENT_BASED))
        ids = {m.id for m in merged}
        assert "chatbase-mirror" not in ids or "chatbase" not in ids
        chat = next(m for m in merged if m.id in {"chatbase", "chatbase-mirror"})
        assert chat.merged_from_count == 3
        assert {s.source_type for s in chat.sources} == {"semantic", "functionality", "aliases"}
        assert stats.unique_results == 3

    def test_empty_payloads_never_collapse(self) -> None:
        merged, _ = merge_results(
            {"s": [_result("a"), _result("b", rank=2)]}, _config(DedupStrategy.CONTENT_BASED)
        )
        assert {m.id for m in merged} == {"a", "b"}


class TestHybrid:
    def test_id_then_content(self, mixed_sources) -> None:
        merged, stats = merge_results(mixed_sources, _config(DedupStrategy.HYBRID))
        assert len(merged) == 3
        chat = next(m for m in merged if m.id == "chatbase")
        # functionality duplicate of the same id was dropped by the id pass
        assert [s.source_type for s in chat.sources] == ["semantic", "aliases"]
        assert stats.duplicates_removed == 2

    def test_default_strategy_is_hybrid(self) -> None:
        assert DeduplicationConfig().strategy == DedupStrategy.HYBRID


class TestRRFEnhancedThresholds:
    """Per-source-type thresholds decide near-duplicate tolerance."""

    NEAR_A = {"name": "Chatbase", "description": "answers support tickets", "category": "support"}
    NEAR_B = {"name": "Chatbase", "description": "builds landing pages", "category": "marketing"}

    def test_lenient_facet_collapses(self) -> None:
        merged, _ = merge_results(
            {
                "composites": [
                    _result("a", "composites", 1, 0.9, self.NEAR_A),
                    _result("b", "composites", 2, 0.8, self.NEAR_B),
                ]
            },
            multi_vector_dedup_config(),
        )
        assert len(merged) == 1
        assert merged[0].merged_from_count == 2

    def test_strict_facet_keeps_both(self) -> None:
        merged, _ = merge_results(
            {
                "categories": [
                    _result("a", "categories", 1, 0.9, self.NEAR_A),
                    _result("b", "categories", 2, 0.8, self.NEAR_B),
                ]
            },
            multi_vector_dedup_config(),
        )
        assert len(merged) == 2

    def test_mixed_pair_uses_stricter_threshold(self) -> None:
        sources = {
            "semantic": [_result("a", "semantic", 1, 0.9, self.NEAR_A)],
            "composites": [_result("b", "composites", 1, 0.8, self.NEAR_B)],
        }
        forward, _ = merge_results(sources, multi_vector_dedup_config())
        backward, _ = merge_results(dict(reversed(sources.items())), multi_vector_dedup_config())
        assert len(forward) == len(backward) == 2


class TestIdempotence:
    """Merging an already-merged list changes nothing."""

    @pytest.mark.parametrize("strategy", list(DedupStrategy))
    def test_merge_twice_equals_once(self, mixed_sources, strategy: DedupStrategy) -> None:
        config = _config(strategy)
        once, _ = merge_results(mixed_sources, config)
        twice, _ = merge_results({"merged": as_search_results(once)}, config)
        assert [m.id for m in twice] == [m.id for m in once]
        assert [m.item for m in twice] == [m.item for m in once]

    @pytest.mark.parametrize("strategy", list(DedupStrategy))
    def test_corroborated_low_weight_result_keeps_its_place(
        self, strategy: DedupStrategy
    ) -> None:
        sources = {
            "aliases": [_result("a", "aliases", 1, 0.6, MIDJOURNEY)],
            "composites": [_result("a", "composites", 1, 0.5, MIDJOURNEY)],
            "semantic": [_result("b", "semantic", 1, 0.9, COPILOT)],
        }
        config = _config(strategy)
        once, _ = merge_results(sources, config)
        twice, _ = merge_results({"merged": as_search_results(once)}, config)
        assert [m.id for m in twice] == [m.id for m in once]

    def test_two_low_weight_facets_outrank_one_semantic_hit(self) -> None:
        once, _ = merge_results(
            {
                "aliases": [_result("a", "aliases", 1, 0.6, MIDJOURNEY)],
                "composites": [_result("a", "composites", 1, 0.5, MIDJOURNEY)],
                "semantic": [_result("b", "semantic", 1, 0.9, COPILOT)],
            },
            multi_vector_dedup_config(),
        )
        assert [m.id for m in once] == ["a", "b"]
        twice, _ = merge_results({"merged": as_search_results(once)}, multi_vector_dedup_config())
        assert [m.id for m in twice] == ["a", "b"]
        assert twice[0].item == MIDJOURNEY


class TestAttribution:
    @pytest.mark.parametrize("strategy", list(DedupStrategy))
    def test_counts_match_sources(self, mixed_sources, strategy: DedupStrategy) -> None:
        merged, stats = merge_results(mixed_sources, _config(strategy))
        for result in merged:
            assert result.merged_from_count == len(result.sources)
            assert len(result.source_types) <= len(mixed_sources)
        assert sum(stats.source_attribution_summary.values()) == sum(
            m.merged_from_count for m in merged
        )

    def test_ordering_is_deterministic(self, mixed_sources) -> None:
        first, _ = merge_results(mixed_sources, _config(DedupStrategy.RRF_ENHANCED))
        second, _ = merge_results(mixed_sources, _config(DedupStrategy.RRF_ENHANCED))
        assert [m.id for m in first] == [m.id for m in second]
        keys = [(-m.weighted_score, -m.rrf_score, m.id) for m in first]
        assert keys == sorted(keys)


class TestAnomalies:
    def test_malformed_payload_passes_through(self) -> None:
        merged, stats = merge_results(
            {
                "semantic": [
                    _result("good", "semantic", 1, 0.9, CHATBASE),
                    _result("broken", "semantic", 2, 0.8, {"name": Unprintable()}),
                    _result("twin", "semantic", 3, 0.7, dict(CHATBASE)),
                ]
            },
            _config(DedupStrategy.HYBRID),
        )
        ids = {m.id for m in merged}
        assert "broken" in ids
        assert stats.anomalies == 1
        # the rest of the batch is still deduplicated
        assert len(merged) == 2


class TestBatching:
    def _sources(self) -> dict[str, list[SearchResult]]:
        payloads = [CHATBASE, MIDJOURNEY, COPILOT, {"name": "Notion", "category": "notes"}]
        results = [
            _result(f"t{i}", "semantic", i + 1, 0.9 - i * 0.1, payload)
            for i, payload in enumerate(payloads)
        ]
        results.append(_result("t4", "semantic", 5, 0.3, dict(CHATBASE)))
        return {"semantic": results}

    def test_cross_batch_duplicates_merge(self) -> None:
        config = _config(
            DedupStrategy.CONTENT_BASED, batch_size=2, enable_parallel_processing=True
        )
        merged, stats = merge_results(self._sources(), config)
        assert stats.batch_count == 3
        assert len(merged) == 4
        chat = next(m for m in merged if m.id == "t0")
        assert chat.merged_from_count == 2

    def test_batched_matches_unbatched(self) -> None:
        batched, _ = merge_results(
            self._sources(),
            _config(DedupStrategy.HYBRID, batch_size=2, enable_parallel_processing=True),
        )
        whole, stats = merge_results(self._sources(), _config(DedupStrategy.HYBRID))
        assert [m.id for m in batched] == [m.id for m in whole]
        assert stats.batch_count == 1

    @pytest.mark.parametrize("strategy", [DedupStrategy.CONTENT_BASED, DedupStrategy.HYBRID])
    def test_near_duplicates_in_later_batch_stay_apart(self, strategy: DedupStrategy) -> None:
        notion = {"name": "Notion", "description": "Notes and docs workspace", "category": "notes"}
        notion_app = {**notion, "description": "Notes and docs workspace app"}
        sources = {
            "semantic": [
                _result("p", "semantic", 1, 0.9, CHATBASE),
                _result("q", "semantic", 2, 0.8, dict(CHATBASE)),
                _result("x1", "semantic", 3, 0.7, notion),
                _result("x2", "semantic", 4, 0.6, notion_app),
            ]
        }
        batched_config = _config(strategy, batch_size=2, enable_parallel_processing=True)

        once, stats = merge_results(sources, batched_config)
        twice, _ = merge_results({"merged": as_search_results(once)}, batched_config)
        whole, _ = merge_results(sources, _config(strategy))

        assert stats.batch_count == 2
        assert [m.id for m in once] == ["p", "x1", "x2"]
        assert [m.id for m in twice] == [m.id for m in once]
        assert [m.id for m in whole] == [m.id for m in once]


class TestDeduplicator:
    def test_config_exposed(self) -> None:
        config = multi_vector_dedup_config(batch_size=10)
        dedup = ResultDeduplicator(config)
        assert dedup.config.strategy == DedupStrategy.RRF_ENHANCED
        assert dedup.config.similarity_threshold == 0.8
        assert dedup.config.batch_size == 10

    def test_empty_input(self) -> None:
        merged, stats = ResultDeduplicator().merge({})
        assert merged == []
        assert stats.total_processed == 0
        assert stats.average_merged_score == 0.0
