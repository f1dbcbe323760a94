"""Pytest fixtures for validation tests."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np
import pytest

from tool_retriever.memory.record_store import JSONRecordStore
from tool_retriever.memory.vector_store import FAISSFacetIndex
from tool_retriever.workflows.pipeline import RetrievalOrchestrator

if TYPE_CHECKING:
    from collections.abc import Generator

# Must match the embedder fixture's vector size
EMBEDDING_DIM = 32
CATALOG_SIZE = 200
FACETS = ["semantic", "categories", "functionality"]

_CATEGORIES = ["Chatbot", "Image Generation", "Code Assistant", "Writing", "Analytics"]
_FUNCTIONS = ["chat", "image generation", "code completion", "summarization", "dashboards"]


def _synthetic_record(i: int) -> dict[str, Any]:
    """Deterministic tool record; categories and functions cycle by index."""
    category = _CATEGORIES[i % len(_CATEGORIES)]
    function = _FUNCTIONS[i % len(_FUNCTIONS)]
    return {
        "id": f"tool-{i:04d}",
        "name": f"{category.split()[0]} Tool {i}",
        "description": f"{category} tool number {i} offering {function}",
        "category": category.lower(),
        "categories": [category],
        "functionality": [function],
        "pricing_model": ["freemium"] if i % 3 == 0 else ["paid"],
        "pricing_summary": f"Plans from ${10 + i % 50} per month",
        "popularity": i % 100,
    }


@pytest.fixture
def synthetic_catalog() -> list[dict[str, Any]]:
    return [_synthetic_record(i) for i in range(CATALOG_SIZE)]


@pytest.fixture
def seeded_orchestrator(
    embedder, synthetic_catalog: list[dict[str, Any]]
) -> Generator[RetrievalOrchestrator]:
    """Orchestrator over a synthetic catalog indexed on every facet.

    Uses the deterministic fake embedder, so no model is downloaded.

    Yields:
        Connected RetrievalOrchestrator instance.
    """
    records = JSONRecordStore(records=synthetic_catalog)
    index = FAISSFacetIndex(FACETS, dimensions=EMBEDDING_DIM)

    orchestrator = RetrievalOrchestrator.from_collaborators(embedder, index, records)
    orchestrator.connect()

    ids = [record["id"] for record in synthetic_catalog]
    for facet in FACETS:
        texts = [
            record["description"] if facet == "semantic" else " ".join(record[facet])
            for record in synthetic_catalog
        ]
        index.add_batch(facet, ids, np.stack([embedder.embed(text) for text in texts]))
    for record in synthetic_catalog:
        index.set_attributes(record["id"], {"categories": record["categories"]})

    yield orchestrator

    orchestrator.close()
