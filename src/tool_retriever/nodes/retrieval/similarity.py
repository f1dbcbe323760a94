"""Field-level content similarity used by content-based deduplication."""

from __future__ import annotations

import hashlib
import re
from collections.abc import Mapping, Sequence
from typing import Any

from rapidfuzz.distance import Levenshtein

# (jaccard weight, edit-distance weight) per field; unknown fields use Jaccard only
FIELD_BLENDS: dict[str, tuple[float, float]] = {
    "name": (0.8, 0.2),
    "description": (0.6, 0.4),
}
DEFAULT_BLEND: tuple[float, float] = (1.0, 0.0)

# Near-miss categories are not duplicates, so these compare exactly
CATEGORY_FIELDS: frozenset[str] = frozenset({"category", "categories"})

_WHITESPACE = re.compile(r"\s+")


def field_text(payload: Mapping[str, Any], field: str) -> str:
    """Return a normalized string for *field*, or ``""`` when absent.

    Lists and tuples are joined with spaces. Raises whatever ``str()``
    raises for values that cannot be rendered; callers treat that as a
    malformed payload.
    """
    value = payload.get(field)
    if value is None:
        return ""
    if isinstance(value, str):
        text = value
    elif isinstance(value, Sequence):
        text = " ".join(str(v) for v in value)
    else:
        text = str(value)
    return _WHITESPACE.sub(" ", text).strip().lower()


def jaccard_similarity(a: str, b: str) -> float:
    """Token-set overlap between two strings."""
    tokens_a = set(a.split())
    tokens_b = set(b.split())
    if not tokens_a and not tokens_b:
        return 1.0
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def edit_similarity(a: str, b: str) -> float:
    """Normalized Levenshtein similarity in [0, 1]."""
    if not a or not b:
        return 0.0
    return float(Levenshtein.normalized_similarity(a, b))


def field_similarity(value_a: str, value_b: str, field: str) -> float:
    """Similarity of two already-normalized field values."""
    if value_a == value_b:
        return 1.0
    if field in CATEGORY_FIELDS:
        if field == "categories":
            return 1.0 if set(value_a.split()) == set(value_b.split()) else 0.0
        return 0.0
    jaccard_weight, edit_weight = FIELD_BLENDS.get(field, DEFAULT_BLEND)
    score = jaccard_weight * jaccard_similarity(value_a, value_b)
    if edit_weight:
        score += edit_weight * edit_similarity(value_a, value_b)
    return score


def field_profile(payload: Mapping[str, Any], fields: Sequence[str]) -> dict[str, str]:
    """Normalized text for each configured field, computed once per record."""
    return {field: field_text(payload, field) for field in fields}


def profile_similarity(
    profile_a: Mapping[str, str],
    profile_b: Mapping[str, str],
    fields: Sequence[str],
    weights: Mapping[str, float],
) -> float:
    """Weight-normalized similarity across *fields*.

    Only fields present on both sides add to the numerator; every field's
    weight counts in the denominator, so missing data never inflates the
    score into a false duplicate.
    """
    numerator = 0.0
    denominator = 0.0
    for field in fields:
        weight = weights.get(field, 1.0)
        denominator += weight
        value_a = profile_a.get(field, "")
        value_b = profile_b.get(field, "")
        if value_a and value_b:
            numerator += weight * field_similarity(value_a, value_b, field)
    if denominator <= 0:
        return 0.0
    return numerator / denominator


def content_similarity(
    payload_a: Mapping[str, Any],
    payload_b: Mapping[str, Any],
    fields: Sequence[str],
    weights: Mapping[str, float],
) -> float:
    """Similarity of two raw payloads; see :func:`profile_similarity`."""
    return profile_similarity(
        field_profile(payload_a, fields),
        field_profile(payload_b, fields),
        fields,
        weights,
    )


def profile_fingerprint(profile: Mapping[str, str], fields: Sequence[str]) -> str:
    """Stable hash of the concatenated, normalized content fields.

    Returns ``""`` when none of the fields carry content.
    """
    content = " ".join(profile[f] for f in fields if profile.get(f))
    if not content:
        return ""
    return hashlib.sha1(content.encode("utf-8")).hexdigest()  # noqa: S324
