"""Structured filter and ranking steps over an upstream result list.

Every function takes the step parameter dict and reads the upstream
results from ``params["input"]``. Survivors are re-ranked 1..n in their
new order so rank always reflects list position.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from typing import Any

from tool_retriever.entities.results import SearchResult, StepOutput

logger = logging.getLogger(__name__)

_PRICE_PATTERN = re.compile(r"\$?(\d+(?:,\d+)*)")
_FREE_MARKERS = ("free", "freemium")
POPULARITY_SCALE = 100.0


def upstream_results(params: dict[str, Any]) -> list[SearchResult]:
    """The injected ``input`` results, or an empty list when there are none."""
    raw = params.get("input")
    if not isinstance(raw, list):
        return []
    return [
        item if isinstance(item, SearchResult) else SearchResult.model_validate(item)
        for item in raw
    ]


def rerank(results: Iterable[SearchResult]) -> list[SearchResult]:
    return [
        result.model_copy(update={"rank": position})
        for position, result in enumerate(results, start=1)
    ]


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, dict):
        # Nested {primary: [...], secondary: [...]} category layout
        return [str(v) for nested in value.values() for v in _as_list(nested)]
    if isinstance(value, Iterable):
        return [str(v) for v in value]
    return [str(value)]


def _tags(payload: dict[str, Any], fields: Sequence[str]) -> list[str]:
    return [tag.strip().lower() for name in fields for tag in _as_list(payload.get(name)) if tag]


def _requested(params: dict[str, Any], key: str) -> list[str]:
    return [value.strip().lower() for value in _as_list(params.get(key)) if value.strip()]


def _tag_filter(
    params: dict[str, Any], param_key: str, fields: Sequence[str], label: str
) -> StepOutput:
    results = upstream_results(params)
    wanted = _requested(params, param_key)
    if not wanted:
        return StepOutput(results=results, data={"filtered_count": len(results)})

    kept = [
        result
        for result in results
        if any(
            want in tag or tag in want
            for tag in _tags(result.payload, fields)
            for want in wanted
        )
    ]
    logger.debug("%s filter kept %d of %d results", label, len(kept), len(results))
    return StepOutput(
        results=rerank(kept),
        data={"filtered_count": len(kept), "original_count": len(results)},
    )


def filter_by_category(params: dict[str, Any]) -> StepOutput:
    """Keep results whose categories overlap ``categories`` (substring match)."""
    return _tag_filter(params, "categories", ("categories", "category"), "category")


def filter_by_functionality(params: dict[str, Any]) -> StepOutput:
    return _tag_filter(params, "functionality", ("functionality",), "functionality")


def filter_by_user_type(params: dict[str, Any]) -> StepOutput:
    return _tag_filter(params, "user_types", ("user_types", "userTypes"), "user type")


def filter_by_interface(params: dict[str, Any]) -> StepOutput:
    return _tag_filter(params, "interface", ("interface",), "interface")


def filter_by_deployment(params: dict[str, Any]) -> StepOutput:
    return _tag_filter(params, "deployment", ("deployment",), "deployment")


def _prices(payload: dict[str, Any]) -> list[int]:
    text = str(payload.get("pricing_summary") or payload.get("description") or "")
    return [int(match.replace(",", "")) for match in _PRICE_PATTERN.findall(text)]


def _is_free(payload: dict[str, Any]) -> bool:
    models = [m.lower() for m in _as_list(payload.get("pricing_model"))]
    summary = str(payload.get("pricing_summary") or "").lower()
    return any(marker in model for model in models for marker in _FREE_MARKERS) or (
        "free" in summary
    )


def _price_bound(payload: dict[str, Any], bound: float, upper: bool) -> bool:
    prices = _prices(payload)
    if not prices:
        return bound == 0 and _is_free(payload)
    return min(prices) <= bound if upper else max(prices) >= bound


def filter_by_price(params: dict[str, Any]) -> StepOutput:
    """Filter on ``has_free_tier``, ``pricing_model``, ``max_price`` and ``min_price``.

    Prices are read from the numbers mentioned in ``pricing_summary`` (or
    the description). A tool with no price figure only passes a price bound
    of zero, and only when it has a free tier.
    """
    results = upstream_results(params)
    kept = results

    has_free_tier = params.get("has_free_tier")
    if has_free_tier is not None:
        kept = [r for r in kept if _is_free(r.payload) == bool(has_free_tier)]

    pricing_model = params.get("pricing_model")
    if pricing_model:
        wanted = str(pricing_model).lower()
        kept = [
            r
            for r in kept
            if any(wanted in m.lower() for m in _as_list(r.payload.get("pricing_model")))
        ]

    max_price = params.get("max_price")
    if max_price is not None:
        kept = [r for r in kept if _price_bound(r.payload, max_price, upper=True)]

    min_price = params.get("min_price")
    if min_price is not None:
        kept = [r for r in kept if _price_bound(r.payload, min_price, upper=False)]

    return StepOutput(
        results=rerank(kept),
        data={"filtered_count": len(kept), "original_count": len(results)},
    )


def exclude_tools(params: dict[str, Any]) -> StepOutput:
    """Drop results by id (``exclude_ids``) or by name overlap (``exclude_names``)."""
    results = upstream_results(params)
    exclude_ids = set(_as_list(params.get("exclude_ids")))
    exclude_names = _requested(params, "exclude_names")

    def excluded(result: SearchResult) -> bool:
        if result.id in exclude_ids:
            return True
        name = str(result.payload.get("name", "")).strip().lower()
        return bool(name) and any(n in name or name in n for n in exclude_names)

    kept = [result for result in results if not excluded(result)]
    return StepOutput(
        results=rerank(kept),
        data={"excluded_count": len(results) - len(kept), "original_count": len(results)},
    )


def _popularity(payload: dict[str, Any]) -> float:
    raw = payload.get("popularity") or payload.get("rating") or payload.get("review_count") or 0
    try:
        return min(float(raw) / POPULARITY_SCALE, 1.0)
    except (TypeError, ValueError):
        return 0.0


def rank_by_relevance(params: dict[str, Any]) -> StepOutput:
    """Re-order results by relevance.

    ``strategy`` is ``semantic`` (the search score), ``popularity``
    (popularity or rating scaled to 0-1) or ``hybrid``, which blends them
    with ``semantic_weight`` and ``popularity_weight``.
    """
    results = upstream_results(params)
    strategy = params.get("strategy", "semantic")
    semantic_weight = float(params.get("semantic_weight", 0.7))
    popularity_weight = float(params.get("popularity_weight", 0.3))

    def relevance(result: SearchResult) -> float:
        if strategy == "popularity":
            return _popularity(result.payload)
        if strategy == "hybrid":
            return result.score * semantic_weight + _popularity(result.payload) * popularity_weight
        return result.score

    scored = [(relevance(result), result) for result in results]
    # Stable sort keeps upstream order for ties
    scored.sort(key=lambda pair: -pair[0])
    ranked = [
        result.model_copy(update={"score": score, "rank": position})
        for position, (score, result) in enumerate(scored, start=1)
    ]
    return StepOutput(results=ranked, data={"ranking_strategy": strategy})


def pass_through(params: dict[str, Any]) -> StepOutput:
    """Forward the upstream results unchanged; emits nothing without ``input``."""
    if not isinstance(params.get("input"), list):
        return StepOutput()
    return StepOutput(results=upstream_results(params))
