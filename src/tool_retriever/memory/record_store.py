"""JSON-backed record store for tool payloads."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


class JSONRecordStore:
    """JSON-backed store mapping tool ids to payload records.

    Records are plain dicts that carry an ``id`` key. The file is read on
    :meth:`connect`; an in-memory store (no path) is also supported for
    tests and embedding in other services.
    """

    def __init__(
        self,
        store_path: Path | None = None,
        records: Iterable[dict[str, Any]] | None = None,
    ) -> None:
        """Initialize the record store.

        Args:
            store_path: Optional path to the JSON file for persistence.
            records: Optional initial records, added after loading the file.
        """
        self.store_path = store_path
        self._cache: dict[str, dict[str, Any]] = {}
        self._initial = list(records or [])

    def connect(self) -> None:
        """Load records from the JSON file if it exists."""
        if self.store_path is not None and self.store_path.exists():
            data = json.loads(self.store_path.read_text(encoding="utf-8"))
            for item in data:
                self.add(item)
            logger.info("Loaded %d records from %s", len(data), self.store_path)
        self.add_many(self._initial)
        self._initial = []

    def close(self) -> None:
        """Persist to disk when backed by a file."""
        if self.store_path is not None:
            self.save()

    def save(self) -> None:
        """Persist all records to the JSON file."""
        if self.store_path is None:
            return
        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        self.store_path.write_text(
            json.dumps(list(self._cache.values()), indent=2, default=str), encoding="utf-8"
        )

    def get(self, record_id: str) -> dict[str, Any] | None:
        """Get a record by id, or ``None`` when absent."""
        return self._cache.get(record_id)

    def get_many(self, ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        """Resolve many ids at once; unknown ids are omitted."""
        return {rid: self._cache[rid] for rid in ids if rid in self._cache}

    def add(self, record: dict[str, Any]) -> None:
        """Add or replace a single record.

        Raises:
            ValueError: If the record has no ``id``.
        """
        record_id = record.get("id")
        if not record_id:
            msg = "Record is missing an 'id'"
            raise ValueError(msg)
        self._cache[str(record_id)] = dict(record)

    def add_many(self, records: Iterable[dict[str, Any]]) -> None:
        for record in records:
            self.add(record)

    def list_all(self) -> list[dict[str, Any]]:
        """Return all stored records in insertion order."""
        return list(self._cache.values())

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._cache
