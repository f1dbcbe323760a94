"""Collaborator interfaces consumed by the retrieval steps.

Implementations own their connections and thread-safety. They are
constructed by the caller and injected; ``connect``/``close`` make the
lifecycle explicit.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Protocol, runtime_checkable

import numpy as np


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Turns query text into a fixed-dimension vector."""

    def connect(self) -> None: ...

    def close(self) -> None: ...

    def embed(self, text: str) -> np.ndarray: ...


@runtime_checkable
class VectorIndexClient(Protocol):
    """Per-facet nearest-neighbour search returning ranked ``(id, score)`` pairs."""

    def connect(self) -> None: ...

    def close(self) -> None: ...

    def facets(self) -> list[str]: ...

    def search(
        self,
        embedding: np.ndarray,
        facet: str,
        top_k: int = 10,
        filters: dict[str, Any] | None = None,
    ) -> list[tuple[str, float]]: ...

    def vector(self, item_id: str, facet: str) -> np.ndarray | None: ...


@runtime_checkable
class RecordStore(Protocol):
    """Resolves item ids to full payload records."""

    def connect(self) -> None: ...

    def close(self) -> None: ...

    def get_many(self, ids: Iterable[str]) -> dict[str, dict[str, Any]]: ...

    def list_all(self) -> list[dict[str, Any]]: ...
