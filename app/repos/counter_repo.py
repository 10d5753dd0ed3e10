from __future__ import annotations

from typing import Protocol


class CounterRepo(Protocol):
    async def next_value(self, key: str) -> int: ...


class InMemoryCounterRepo:
    """Named monotonic counters starting at 1."""

    def __init__(self) -> None:
        self._values: dict[str, int] = {}

    async def next_value(self, key: str) -> int:
        value = self._values.get(key, 0) + 1
        self._values[key] = value
        return value
