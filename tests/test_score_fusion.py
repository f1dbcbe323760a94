"""Tests for RRF score fusion."""

from __future__ import annotations

import pytest

from tool_retriever.config import FusionConfig
from tool_retriever.entities import SearchResult
from tool_retriever.nodes.retrieval.score_fusion import (
    reciprocal_rank_fusion,
    rrf_contribution,
    rrf_merge,
)


class TestRRFTopItemFirst:
    """Test that items appearing high in both lists rank first."""

    def test_top_item_appears_first(self) -> None:
        list1 = ["a", "b", "c"]
        list2 = ["a", "c", "b"]
        result = reciprocal_rank_fusion([list1, list2])
        # 'a' is rank 1 in both lists, should be first
        assert result[0][0] == "a"


class TestRRFSingleListItems:
    """Test items appearing in only one list."""

    def test_handles_single_list_items(self) -> None:
        result = reciprocal_rank_fusion([["a", "b"], ["c", "d"]])
        assert {item[0] for item in result} == {"a", "b", "c", "d"}

    def test_ties_broken_by_id(self) -> None:
        result = reciprocal_rank_fusion([["b"], ["a"]])
        assert [item[0] for item in result] == ["a", "b"]


class TestRRFKParameter:
    """Test k parameter affects score distribution."""

    def test_k_affects_distribution(self) -> None:
        result_k1 = reciprocal_rank_fusion([["a", "b"]], k=1)
        result_k60 = reciprocal_rank_fusion([["a", "b"]], k=60)
        gap_k1 = result_k1[0][1] - result_k1[1][1]
        gap_k60 = result_k60[0][1] - result_k60[1][1]
        assert gap_k1 > gap_k60

    def test_contribution_formula(self) -> None:
        assert rrf_contribution(1) == pytest.approx(1 / 61)
        assert rrf_contribution(3, k=10) == pytest.approx(1 / 13)


class TestRankMonotonicity:
    """A better rank always contributes strictly more for the same source."""

    def test_lower_rank_scores_higher(self) -> None:
        results = [
            SearchResult(id=f"t{rank}", rank=rank, source_type="semantic") for rank in range(1, 8)
        ]
        merged = rrf_merge({"semantic": results})
        scores = [m.weighted_score for m in merged]
        assert [m.id for m in merged] == [f"t{rank}" for rank in range(1, 8)]
        assert all(a > b for a, b in zip(scores, scores[1:], strict=False))


class TestRRFMerge:
    """Test weighted fusion with attribution."""

    def test_scores_and_attribution(self) -> None:
        merged = rrf_merge(
            {
                "semantic": [SearchResult(id="tool1", score=0.9, rank=1, source_type="semantic")],
                "aliases": [
                    SearchResult(id="tool1", score=0.4, rank=2, source_type="aliases"),
                    SearchResult(id="tool2", score=0.7, rank=1, source_type="aliases"),
                ],
            }
        )
        by_id = {m.id: m for m in merged}
        tool1 = by_id["tool1"]
        assert tool1.rrf_score == pytest.approx(1 / 61 + 1 / 62)
        assert tool1.weighted_score == pytest.approx(1.0 / 61 + 0.6 / 62)
        assert tool1.merged_from_count == 2
        assert [s.source_type for s in tool1.sources] == ["semantic", "aliases"]
        assert merged[0].id == "tool1"

    def test_highest_score_supplies_payload(self) -> None:
        merged = rrf_merge(
            {
                "a": [SearchResult(id="x", score=0.2, source_type="semantic", payload={"v": "low"})],
                "b": [SearchResult(id="x", score=0.8, source_type="aliases", payload={"v": "high"})],
            }
        )
        assert merged[0].item == {"v": "high"}
        assert merged[0].source_type == "aliases"

    def test_payload_ties_keep_first_seen(self) -> None:
        merged = rrf_merge(
            {
                "a": [SearchResult(id="x", score=0.5, source_type="semantic", payload={"v": 1})],
                "b": [SearchResult(id="x", score=0.5, source_type="aliases", payload={"v": 2})],
            }
        )
        assert merged[0].item == {"v": 1}

    def test_unknown_source_uses_default_weight(self) -> None:
        config = FusionConfig(default_source_weight=0.25)
        merged = rrf_merge(
            {"x": [SearchResult(id="a", rank=1, source_type="mystery")]}, config
        )
        assert merged[0].weighted_score == pytest.approx(0.25 / 61)

    def test_weighted_score_grows_with_corroboration(self) -> None:
        one = rrf_merge({"s": [SearchResult(id="a", source_type="semantic")]})
        two = rrf_merge(
            {
                "s": [SearchResult(id="a", source_type="semantic")],
                "f": [SearchResult(id="a", rank=5, source_type="functionality")],
            }
        )
        assert two[0].weighted_score > one[0].weighted_score

    def test_ordering_tie_breaks(self) -> None:
        merged = rrf_merge(
            {
                "s": [
                    SearchResult(id="b", rank=1, source_type="semantic"),
                    SearchResult(id="a", rank=1, source_type="semantic"),
                ]
            }
        )
        assert [m.id for m in merged] == ["a", "b"]
