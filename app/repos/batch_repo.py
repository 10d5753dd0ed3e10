from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from app.models.batch import Batch, BatchStatus


class BatchRepo(Protocol):
    async def get(self, batch_id: UUID) -> Batch | None: ...
    async def add(self, batch: Batch) -> None: ...
    async def increment_enrollment(self, batch_id: UUID) -> int: ...
    async def set_status(
        self, batch_id: UUID, expected: BatchStatus, status: BatchStatus
    ) -> Batch | None: ...


class InMemoryBatchRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Batch] = {}

    async def get(self, batch_id: UUID) -> Batch | None:
        return self._by_id.get(batch_id)

    async def add(self, batch: Batch) -> None:
        if batch.id in self._by_id:
            raise ValueError("batch already exists")
        self._by_id[batch.id] = batch

    async def increment_enrollment(self, batch_id: UUID) -> int:
        """Add one seat and return the new count.

        Runs under the store's writer lock, so read-and-replace here is
        as atomic as the SQL ``current_enrollment + 1`` update.
        """
        batch = self._by_id.get(batch_id)
        if batch is None:
            raise KeyError("batch not found")
        updated = replace(batch, current_enrollment=batch.current_enrollment + 1)
        self._by_id[batch_id] = updated
        return updated.current_enrollment

    async def set_status(
        self, batch_id: UUID, expected: BatchStatus, status: BatchStatus
    ) -> Batch | None:
        """Compare-and-set the lifecycle status.  None if ``expected`` is stale."""
        batch = self._by_id.get(batch_id)
        if batch is None or batch.status != expected:
            return None
        updated = replace(batch, status=status)
        self._by_id[batch_id] = updated
        return updated
