"""Search steps backed by the embedding provider, facet index and record store."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from rapidfuzz import fuzz

from tool_retriever.config import MERGER_CONFIG
from tool_retriever.entities.plans import MergeStrategy
from tool_retriever.entities.results import SearchResult, StepOutput
from tool_retriever.nodes.retrieval.deduplication import (
    DeduplicationConfig,
    ResultDeduplicator,
    as_search_results,
    multi_vector_dedup_config,
)
from tool_retriever.nodes.retrieval.result_merger import merge_ranked_sets
from tool_retriever.nodes.steps.filters import rerank, upstream_results

if TYPE_CHECKING:
    from tool_retriever.config import FusionConfig, MergerConfig
    from tool_retriever.memory.protocols import (
        EmbeddingProvider,
        RecordStore,
        VectorIndexClient,
    )

logger = logging.getLogger(__name__)

DEFAULT_FACET = "semantic"
DEFAULT_LIMIT = 10
NAME_MATCH_THRESHOLD = 85


class SearchSteps:
    """Step functions that need injected collaborators.

    Methods are synchronous; the executor runs them in worker threads so
    concurrent strategies do not block each other.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        index: VectorIndexClient,
        records: RecordStore,
        dedup_config: DeduplicationConfig | None = None,
        fusion: FusionConfig | None = None,
        merger: MergerConfig | None = None,
    ) -> None:
        self._embedder = embedder
        self._index = index
        self._records = records
        self._dedup_config = dedup_config or multi_vector_dedup_config()
        self._fusion = fusion or self._dedup_config.fusion
        self._merger = merger or MERGER_CONFIG

    def _hydrate(
        self, hits: list[tuple[str, float]], source_type: str, include_payload: bool
    ) -> list[SearchResult]:
        payloads = self._records.get_many(item_id for item_id, _ in hits) if include_payload else {}
        return [
            SearchResult(
                id=item_id,
                score=score,
                source_type=source_type,
                rank=rank,
                payload=payloads.get(item_id, {}),
            )
            for rank, (item_id, score) in enumerate(hits, start=1)
        ]

    def semantic_search(self, params: dict[str, Any]) -> StepOutput:
        """Search one facet; retry unfiltered when a filtered search finds nothing."""
        query = params.get("query", "")
        if not query:
            return StepOutput(results=[])
        facet = params.get("facet", DEFAULT_FACET)
        limit = int(params.get("limit", DEFAULT_LIMIT))
        filters = params.get("filters") or {}

        embedding = self._embedder.embed(query)
        hits = self._index.search(embedding, facet, limit, filters or None)
        fallback = not hits and bool(filters)
        if fallback:
            logger.info("Filtered search on %s found nothing, retrying unfiltered", facet)
            hits = self._index.search(embedding, facet, limit, None)

        results = self._hydrate(hits, facet, params.get("include_payload", True))
        return StepOutput(
            results=results,
            data={"facet": facet, "fallback": fallback, "similarities": dict(hits)},
        )

    def multi_vector_search(self, params: dict[str, Any]) -> StepOutput:
        """Search several facets and fuse them with the deduplicator."""
        query = params.get("query", "")
        if not query:
            return StepOutput(results=[])
        facets = params.get("facets") or self._index.facets()
        limit = int(params.get("limit", DEFAULT_LIMIT))
        filters = params.get("filters") or None

        embedding = self._embedder.embed(query)
        hits_by_facet = {
            facet: self._index.search(embedding, facet, limit, filters) for facet in facets
        }
        results_by_source = {
            facet: self._hydrate(hits, facet, params.get("include_payload", True))
            for facet, hits in hits_by_facet.items()
        }

        merged, stats = ResultDeduplicator(self._dedup_config).merge(results_by_source)
        return StepOutput(
            results=as_search_results(merged[:limit]),
            data={"facets": list(facets), "merge_stats": stats, "merged": merged[:limit]},
        )

    def _reference_record(self, params: dict[str, Any]) -> dict[str, Any] | None:
        reference_id = params.get("reference_tool_id")
        if reference_id:
            found = self._records.get_many([str(reference_id)])
            if not found:
                msg = f"Reference tool with id {reference_id!r} not found"
                raise LookupError(msg)
            return found[str(reference_id)]
        reference_name = str(params.get("reference_tool") or "").strip().lower()
        if not reference_name:
            return None
        for record in self._records.list_all():
            if str(record.get("name", "")).strip().lower() == reference_name:
                return record
        msg = f"Reference tool named {reference_name!r} not found"
        raise LookupError(msg)

    def find_similar_by_features(self, params: dict[str, Any]) -> StepOutput:
        """Nearest neighbours of a reference tool's stored facet vector.

        The reference is given by ``reference_tool_id`` or, failing that, by
        exact ``reference_tool`` name. It never appears in its own results.
        """
        reference = self._reference_record(params)
        if reference is None:
            return StepOutput(results=[])
        reference_id = str(reference["id"])
        facet = params.get("facet", DEFAULT_FACET)
        limit = int(params.get("limit", DEFAULT_LIMIT))
        filters = params.get("filters") or None

        embedding = self._index.vector(reference_id, facet)
        if embedding is None:
            logger.info("Reference tool %s has no %s vector", reference_id, facet)
            return StepOutput(results=[], data={"reference_tool": reference})

        # One extra hit because the reference usually matches itself first
        hits = self._index.search(embedding, facet, limit + 1, filters)
        hits = [(item_id, score) for item_id, score in hits if item_id != reference_id][:limit]
        results = self._hydrate(hits, facet, params.get("include_payload", True))
        return StepOutput(
            results=results,
            data={"reference_tool": reference, "similarities": dict(hits)},
        )

    def lookup_by_name(self, params: dict[str, Any]) -> StepOutput:
        """Exact name matches first, then fuzzy matches when ``fuzzy`` is set."""
        names = [str(n).strip().lower() for n in params.get("tool_names") or [] if str(n).strip()]
        if not names:
            return StepOutput(results=[])
        limit = int(params.get("limit", DEFAULT_LIMIT))
        fuzzy = params.get("fuzzy", True)

        records = self._records.list_all()
        exact: list[SearchResult] = []
        scored: list[tuple[float, dict[str, Any]]] = []
        for record in records:
            record_name = str(record.get("name", "")).strip().lower()
            if not record_name:
                continue
            if record_name in names:
                exact.append(
                    SearchResult(id=str(record["id"]), score=1.0, source_type="name", payload=record)
                )
                continue
            if fuzzy:
                best = max(fuzz.token_sort_ratio(name, record_name) for name in names)
                if best >= NAME_MATCH_THRESHOLD:
                    scored.append((best / 100.0, record))

        scored.sort(key=lambda pair: (-pair[0], str(pair[1]["id"])))
        fuzzy_matches = [
            SearchResult(id=str(record["id"]), score=score, source_type="name", payload=record)
            for score, record in scored
        ]
        results = rerank([*exact, *fuzzy_matches][:limit])
        return StepOutput(
            results=results,
            data={"exact_matches": len(exact), "fuzzy_matches": len(fuzzy_matches)},
        )

    def merge_and_dedupe(self, params: dict[str, Any]) -> StepOutput:
        """Merge ``result_sets`` (or a list of lists under ``input``) into one list."""
        raw_sets = params.get("result_sets")
        if raw_sets is None:
            upstream = params.get("input") or []
            raw_sets = upstream if upstream and isinstance(upstream[0], list) else [upstream]
        result_sets = [upstream_results({"input": list(s)}) for s in raw_sets]
        strategy = MergeStrategy(params.get("strategy", MergeStrategy.WEIGHTED))
        limit = params.get("limit")

        merged = merge_ranked_sets(
            result_sets, params.get("weights"), strategy, self._fusion, self._merger
        )
        if limit is not None:
            merged = merged[: int(limit)]
        return StepOutput(
            results=as_search_results(merged),
            data={
                "merge_strategy": strategy.value,
                "original_total_count": sum(len(s) for s in result_sets),
                "merged": merged,
            },
        )
