"""Smoke tests for package layout and pinned configuration."""

import importlib


def test_version_importable() -> None:
    from tool_retriever import __version__

    assert isinstance(__version__, str)
    assert __version__ == "0.1.0"


def test_embedding_config_loadable() -> None:
    """Embedding model version is pinned."""
    from tool_retriever.config import EMBEDDING_CONFIG

    assert EMBEDDING_CONFIG.model_name == "BAAI/bge-small-en-v1.5"
    assert EMBEDDING_CONFIG.dimensions == 384
    assert EMBEDDING_CONFIG.max_length == 512


def test_subpackages_importable() -> None:
    subpackages = [
        "tool_retriever.entities",
        "tool_retriever.errors",
        "tool_retriever.memory",
        "tool_retriever.nodes.execution",
        "tool_retriever.nodes.retrieval",
        "tool_retriever.nodes.steps",
        "tool_retriever.workflows",
    ]
    for pkg in subpackages:
        mod = importlib.import_module(pkg)
        assert mod is not None


def test_reference_collaborators_satisfy_protocols() -> None:
    """Constructing the adapters is cheap: no model download, no index files."""
    from tool_retriever.memory import (
        EmbeddingProvider,
        FAISSFacetIndex,
        FastEmbedProvider,
        JSONRecordStore,
        RecordStore,
        VectorIndexClient,
    )

    provider = FastEmbedProvider()
    assert isinstance(provider, EmbeddingProvider)
    assert provider.dimensions == 384
    assert isinstance(FAISSFacetIndex(["semantic"]), VectorIndexClient)
    assert isinstance(JSONRecordStore(), RecordStore)
