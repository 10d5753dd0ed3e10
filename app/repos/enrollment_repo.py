from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from typing import Any, Protocol
from uuid import UUID

from app.core.errors import ConflictError
from app.models.enrollment import Enrollment, EnrollmentStatus


class EnrollmentRepo(Protocol):
    async def get(self, enrollment_id: UUID) -> Enrollment | None: ...
    async def get_for_learner_batch(
        self, learner_id: str, batch_id: UUID
    ) -> Enrollment | None: ...
    async def list_by_learner(
        self,
        learner_id: str,
        statuses: Iterable[EnrollmentStatus] | None = None,
    ) -> list[Enrollment]: ...
    async def lock_learner(self, learner_id: str) -> None: ...
    async def add(self, enrollment: Enrollment) -> None: ...
    async def transition(
        self,
        enrollment_id: UUID,
        expected: Iterable[EnrollmentStatus],
        status: EnrollmentStatus,
        **changes: Any,
    ) -> Enrollment | None: ...
    async def update(self, enrollment_id: UUID, **changes: Any) -> Enrollment | None: ...


class InMemoryEnrollmentRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Enrollment] = {}
        self._by_pair: dict[tuple[str, UUID], UUID] = {}

    async def get(self, enrollment_id: UUID) -> Enrollment | None:
        return self._by_id.get(enrollment_id)

    async def get_for_learner_batch(
        self, learner_id: str, batch_id: UUID
    ) -> Enrollment | None:
        enrollment_id = self._by_pair.get((learner_id, batch_id))
        if enrollment_id is None:
            return None
        return self._by_id[enrollment_id]

    async def list_by_learner(
        self,
        learner_id: str,
        statuses: Iterable[EnrollmentStatus] | None = None,
    ) -> list[Enrollment]:
        wanted = frozenset(statuses) if statuses is not None else None
        found = [
            e
            for e in self._by_id.values()
            if e.learner_id == learner_id and (wanted is None or e.status in wanted)
        ]
        # newest first
        return sorted(found, key=lambda e: e.created_at, reverse=True)

    async def lock_learner(self, learner_id: str) -> None:
        # InMemoryStore already runs one transaction at a time.
        return None

    async def add(self, enrollment: Enrollment) -> None:
        pair = (enrollment.learner_id, enrollment.batch_id)
        if pair in self._by_pair:
            raise ConflictError("You are already enrolled in this batch")
        self._by_id[enrollment.id] = enrollment
        self._by_pair[pair] = enrollment.id

    async def transition(
        self,
        enrollment_id: UUID,
        expected: Iterable[EnrollmentStatus],
        status: EnrollmentStatus,
        **changes: Any,
    ) -> Enrollment | None:
        """Move to ``status`` only if the current status is in ``expected``.

        Returns None when the row is missing or another writer already
        moved it; the caller re-reads to find out which.
        """
        current = self._by_id.get(enrollment_id)
        if current is None or current.status not in frozenset(expected):
            return None
        updated = replace(current, status=status, **changes)
        self._by_id[enrollment_id] = updated
        return updated

    async def update(self, enrollment_id: UUID, **changes: Any) -> Enrollment | None:
        current = self._by_id.get(enrollment_id)
        if current is None:
            return None
        updated = replace(current, **changes)
        self._by_id[enrollment_id] = updated
        return updated
