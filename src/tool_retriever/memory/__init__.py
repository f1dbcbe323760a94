"""Memory package: collaborator protocols and reference adapters."""

from tool_retriever.memory.embeddings import FastEmbedProvider
from tool_retriever.memory.protocols import (
    EmbeddingProvider,
    RecordStore,
    VectorIndexClient,
)
from tool_retriever.memory.record_store import JSONRecordStore
from tool_retriever.memory.vector_store import FAISSFacetIndex, matches_filters

__all__ = [
    "EmbeddingProvider",
    "FAISSFacetIndex",
    "FastEmbedProvider",
    "JSONRecordStore",
    "RecordStore",
    "VectorIndexClient",
    "matches_filters",
]
