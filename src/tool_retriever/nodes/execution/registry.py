"""Read-only registry mapping step names to step functions."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator, Mapping
from types import MappingProxyType
from typing import Any

from tool_retriever.entities.results import SearchResult, StepOutput

StepResult = StepOutput | list[Any] | dict[str, Any] | None
StepFunction = Callable[[dict[str, Any]], StepResult | Awaitable[StepResult]]


class StepRegistry(Mapping[str, StepFunction]):
    """Immutable name -> step function map built once at startup.

    Safe for concurrent lookups since nothing mutates it after construction.
    """

    def __init__(self, steps: Mapping[str, StepFunction] | None = None) -> None:
        self._steps: Mapping[str, StepFunction] = MappingProxyType(dict(steps or {}))

    def lookup(self, name: str) -> StepFunction | None:
        """Resolve *name*, or ``None`` when it is not registered."""
        return self._steps.get(name)

    def with_steps(self, **steps: StepFunction) -> StepRegistry:
        """Return a new registry with *steps* added or replaced."""
        merged = dict(self._steps)
        merged.update(steps)
        return StepRegistry(merged)

    def __getitem__(self, name: str) -> StepFunction:
        return self._steps[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)


def normalize_step_output(output: object) -> list[SearchResult] | None:
    """Extract a result list from whatever a step function returned.

    Accepts a ``StepOutput``, a dict with a ``results`` list, or a bare list.
    Dict items are validated into ``SearchResult``. Returns ``None`` when the
    output carries no result list.
    """
    if isinstance(output, StepOutput):
        raw = output.results
    elif isinstance(output, dict):
        raw = output.get("results")
    else:
        raw = output
    if not isinstance(raw, list):
        return None
    return [
        item if isinstance(item, SearchResult) else SearchResult.model_validate(item)
        for item in raw
    ]
