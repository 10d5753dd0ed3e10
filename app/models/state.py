"""Explicit transition tables for the status-bearing entities.

Each entity keeps its status as a closed StrEnum plus a table mapping the
current status to the set of statuses it may move to.  Services call
ensure_transition() before every status write instead of trusting callers
to only pick legal next states.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import TypeVar

from app.core.errors import ConflictError

S = TypeVar("S", bound=StrEnum)


def can_transition(table: Mapping[S, frozenset[S]], current: S, target: S) -> bool:
    return target in table.get(current, frozenset())


def ensure_transition(
    entity: str, table: Mapping[S, frozenset[S]], current: S, target: S
) -> None:
    """Raise ConflictError unless ``current -> target`` is in ``table``."""
    if not can_transition(table, current, target):
        raise ConflictError(
            f"Cannot move {entity} from {current.value} to {target.value}",
            {"entity": entity, "current": current.value, "target": target.value},
        )
