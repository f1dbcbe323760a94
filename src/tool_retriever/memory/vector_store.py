"""FAISS-backed facet index with cosine similarity via IndexFlatIP."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import faiss  # pyright: ignore[reportMissingTypeStubs]
import numpy as np

from tool_retriever.config import EMBEDDING_CONFIG

logger = logging.getLogger(__name__)

_MAPPING_FILENAME = "id_mapping.json"
_ATTRIBUTES_FILENAME = "attributes.json"


def _index_filename(facet: str) -> str:
    return f"faiss_{facet}.bin"


def matches_filters(attributes: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    """True when every filter key matches the record attributes.

    A scalar filter value must equal the attribute (case-insensitive for
    strings); a list filter value matches when it overlaps the attribute.
    """
    if not filters:
        return True
    for key, expected in filters.items():
        actual = attributes.get(key)
        if actual is None:
            return False
        have = {str(v).lower() for v in (actual if isinstance(actual, list) else [actual])}
        want = {str(v).lower() for v in (expected if isinstance(expected, list) else [expected])}
        if not have & want:
            return False
    return True


class FAISSFacetIndex:
    """One FAISS IndexFlatIP per facet with a shared string-to-int ID mapping.

    Each facet index is wrapped in ``IndexIDMap2`` so stored vectors can be
    read back by id.

    Vectors are L2-normalized before insertion so that inner-product
    scores equal cosine similarity. Filters are applied after the search
    against attributes registered with :meth:`set_attributes`.
    """

    def __init__(self, facets: list[str], dimensions: int | None = None) -> None:
        self._dimensions: int = dimensions if dimensions is not None else EMBEDDING_CONFIG.dimensions
        self._facet_names = list(facets)
        self._indexes: dict[str, faiss.IndexIDMap2] = {}
        self._id_to_int: dict[str, int] = {}
        self._int_to_id: dict[int, str] = {}
        self._next_id: int = 0
        self._attributes: dict[str, dict[str, Any]] = {}
        self._connected = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Create empty per-facet indexes that were not loaded from disk."""
        for facet in self._facet_names:
            if facet not in self._indexes:
                self._indexes[facet] = faiss.IndexIDMap2(faiss.IndexFlatIP(self._dimensions))
        self._connected = True

    def close(self) -> None:
        self._connected = False

    def facets(self) -> list[str]:
        return list(self._facet_names)

    def _facet_index(self, facet: str) -> faiss.IndexIDMap2:
        if not self._connected:
            self.connect()
        if facet not in self._indexes:
            msg = f"Unknown facet: {facet}"
            raise KeyError(msg)
        return self._indexes[facet]

    def _int_id(self, item_id: str) -> int:
        int_id = self._id_to_int.get(item_id)
        if int_id is None:
            int_id = self._next_id
            self._next_id += 1
            self._id_to_int[item_id] = int_id
            self._int_to_id[int_id] = item_id
        return int_id

    # ------------------------------------------------------------------
    # Add
    # ------------------------------------------------------------------

    def add(self, facet: str, item_id: str, embedding: np.ndarray) -> None:
        """Add a single vector for *item_id* to *facet*."""
        index = self._facet_index(facet)
        vec = np.asarray(embedding, dtype=np.float32).reshape(1, -1)
        faiss.normalize_L2(vec)  # pyright: ignore[reportUnknownMemberType]
        index.add_with_ids(vec, np.array([self._int_id(item_id)], dtype=np.int64))  # pyright: ignore[reportUnknownMemberType, reportCallIssue]

    def add_batch(self, facet: str, ids: list[str], embeddings: np.ndarray) -> None:
        """Bulk-add vectors to *facet* in a single FAISS call."""
        index = self._facet_index(facet)
        vecs = np.asarray(embeddings, dtype=np.float32).reshape(len(ids), -1)
        faiss.normalize_L2(vecs)  # pyright: ignore[reportUnknownMemberType]
        int_ids = np.array([self._int_id(item_id) for item_id in ids], dtype=np.int64)
        index.add_with_ids(vecs, int_ids)  # pyright: ignore[reportUnknownMemberType, reportCallIssue]

    def set_attributes(self, item_id: str, attributes: dict[str, Any]) -> None:
        """Register filterable attributes for *item_id*."""
        self._attributes[item_id] = dict(attributes)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(
        self,
        embedding: np.ndarray,
        facet: str,
        top_k: int = 10,
        filters: dict[str, Any] | None = None,
    ) -> list[tuple[str, float]]:
        """Return up to *top_k* ``(item_id, similarity)`` pairs from *facet*."""
        index = self._facet_index(facet)
        if index.ntotal == 0 or top_k <= 0:
            return []
        vec = np.asarray(embedding, dtype=np.float32).reshape(1, -1)
        faiss.normalize_L2(vec)  # pyright: ignore[reportUnknownMemberType]

        # Filtering happens after the search, so scan everything when filtered
        limit = index.ntotal if filters else min(top_k, index.ntotal)
        distances, indices = index.search(vec, limit)  # pyright: ignore[reportUnknownMemberType, reportUnknownVariableType, reportCallIssue]

        results: list[tuple[str, float]] = []
        for idx, dist in zip(indices[0], distances[0], strict=True):  # pyright: ignore[reportUnknownArgumentType, reportUnknownVariableType]
            if idx == -1:
                continue
            item_id = self._int_to_id[int(idx)]  # pyright: ignore[reportUnknownArgumentType]
            if not matches_filters(self._attributes.get(item_id, {}), filters):
                continue
            results.append((item_id, float(dist)))
            if len(results) >= top_k:
                break
        logger.debug("Facet %s returned %d hits (filters=%s)", facet, len(results), filters)
        return results

    # ------------------------------------------------------------------
    # Remove / query
    # ------------------------------------------------------------------

    def remove(self, item_id: str) -> None:
        """Remove *item_id* from every facet. Raises ``KeyError`` if absent."""
        if item_id not in self._id_to_int:
            msg = f"Item ID not found: {item_id}"
            raise KeyError(msg)
        int_id = self._id_to_int.pop(item_id)
        del self._int_to_id[int_id]
        self._attributes.pop(item_id, None)
        for index in self._indexes.values():
            index.remove_ids(np.array([int_id], dtype=np.int64))  # pyright: ignore[reportUnknownMemberType]

    def vector(self, item_id: str, facet: str) -> np.ndarray | None:
        """Stored (normalized) vector of *item_id* in *facet*, or ``None`` if absent."""
        index = self._facet_index(facet)
        int_id = self._id_to_int.get(item_id)
        if int_id is None:
            return None
        try:
            return index.reconstruct(int_id)  # pyright: ignore[reportUnknownMemberType, reportCallIssue]
        except RuntimeError:
            # Known id that was never added to this facet
            return None

    def count(self, facet: str) -> int:
        """Number of vectors stored in *facet*."""
        return self._facet_index(facet).ntotal

    def contains(self, item_id: str) -> bool:
        return item_id in self._id_to_int

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, directory: str) -> None:
        """Write every facet index, the ID mapping and attributes to *directory*."""
        dirpath = Path(directory)
        dirpath.mkdir(parents=True, exist_ok=True)

        for facet, index in self._indexes.items():
            faiss.write_index(index, str(dirpath / _index_filename(facet)))  # pyright: ignore[reportUnknownMemberType]

        mapping = {
            "facets": self._facet_names,
            "id_to_int": self._id_to_int,
            "next_id": self._next_id,
        }
        (dirpath / _MAPPING_FILENAME).write_text(json.dumps(mapping), encoding="utf-8")
        (dirpath / _ATTRIBUTES_FILENAME).write_text(
            json.dumps(self._attributes, default=str), encoding="utf-8"
        )

    def load(self, directory: str) -> None:
        """Restore facet indexes, ID mapping and attributes from *directory*."""
        dirpath = Path(directory)

        raw = json.loads((dirpath / _MAPPING_FILENAME).read_text(encoding="utf-8"))
        self._facet_names = list(raw["facets"])
        self._id_to_int = raw["id_to_int"]
        self._int_to_id = {v: k for k, v in self._id_to_int.items()}
        self._next_id = raw["next_id"]

        self._indexes = {
            facet: faiss.read_index(str(dirpath / _index_filename(facet)))  # pyright: ignore[reportUnknownMemberType]
            for facet in self._facet_names
        }
        attributes_path = dirpath / _ATTRIBUTES_FILENAME
        if attributes_path.exists():
            self._attributes = json.loads(attributes_path.read_text(encoding="utf-8"))
        self._connected = True
