"""Shared test fixtures for tool-retriever."""

from __future__ import annotations

import hashlib
from typing import Any

import numpy as np
import pytest

from tool_retriever.memory.record_store import JSONRecordStore
from tool_retriever.memory.vector_store import FAISSFacetIndex
from tool_retriever.nodes.steps import build_default_registry

DIM = 32
FACETS = ["semantic", "categories", "functionality"]

CATALOG: list[dict[str, Any]] = [
    {
        "id": "tool-chatbase",
        "name": "Chatbase",
        "description": "Build a custom AI chatbot trained on your data",
        "category": "chatbot",
        "categories": ["Chatbot", "Customer Support"],
        "functionality": ["chat", "knowledge base"],
        "user_types": ["business"],
        "interface": ["web"],
        "deployment": ["cloud"],
        "pricing_model": ["freemium"],
        "pricing_summary": "Free tier, paid plans from $19 per month",
        "popularity": 80,
    },
    {
        "id": "tool-botpress",
        "name": "Botpress",
        "description": "Open source conversational AI platform for chatbots",
        "category": "chatbot",
        "categories": ["Chatbot", "Developer Tools"],
        "functionality": ["chat", "workflow automation"],
        "user_types": ["developer"],
        "interface": ["web", "api"],
        "deployment": ["cloud", "self-hosted"],
        "pricing_model": ["free", "paid"],
        "pricing_summary": "Free plan, team plan $495 per month",
        "popularity": 60,
    },
    {
        "id": "tool-midjourney",
        "name": "Midjourney",
        "description": "Generate images from text prompts",
        "category": "image generation",
        "categories": ["Image Generation"],
        "functionality": ["image generation"],
        "user_types": ["designer"],
        "interface": ["discord"],
        "deployment": ["cloud"],
        "pricing_model": ["paid"],
        "pricing_summary": "Plans from $10 to $120 per month",
        "popularity": 95,
    },
    {
        "id": "tool-copilot",
        "name": "GitHub Copilot",
        "description": "AI pair programmer that suggests code",
        "category": "code assistant",
        "categories": ["Code Assistant", "Developer Tools"],
        "functionality": ["code completion"],
        "user_types": ["developer"],
        "interface": ["ide"],
        "deployment": ["cloud"],
        "pricing_model": ["paid"],
        "pricing_summary": "$10 per month",
        "popularity": 90,
    },
]


def text_vector(text: str, dim: int = DIM) -> np.ndarray:
    """Deterministic pseudo-embedding: identical text gives identical vectors."""
    seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "little")
    return np.random.default_rng(seed).standard_normal(dim).astype(np.float32)


def facet_text(record: dict[str, Any], facet: str) -> str:
    if facet == "semantic":
        return record["description"]
    value = record[facet]
    return " ".join(value) if isinstance(value, list) else str(value)


class FakeEmbedder:
    """Embedding provider that never downloads a model."""

    def __init__(self) -> None:
        self.connected = False
        self.calls: list[str] = []

    def connect(self) -> None:
        self.connected = True

    def close(self) -> None:
        self.connected = False

    def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        return text_vector(text)


@pytest.fixture
def catalog() -> list[dict[str, Any]]:
    return [dict(record) for record in CATALOG]


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def record_store(catalog: list[dict[str, Any]]) -> JSONRecordStore:
    store = JSONRecordStore(records=catalog)
    store.connect()
    return store


@pytest.fixture
def facet_index(catalog: list[dict[str, Any]]) -> FAISSFacetIndex:
    """Facet index where each record is embedded from its facet text."""
    index = FAISSFacetIndex(FACETS, dimensions=DIM)
    index.connect()
    for record in catalog:
        for facet in FACETS:
            index.add(facet, record["id"], text_vector(facet_text(record, facet)))
        index.set_attributes(
            record["id"],
            {"categories": record["categories"], "pricing_model": record["pricing_model"]},
        )
    return index


@pytest.fixture
def default_registry(embedder, facet_index, record_store):
    return build_default_registry(embedder, facet_index, record_store)
