from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from typing import Any, Protocol
from uuid import UUID

from app.core.errors import ConflictError
from app.models.payment import Payment, PaymentMethod, PaymentStatus


class PaymentRepo(Protocol):
    async def add(self, payment: Payment) -> None: ...
    async def get_by_transaction_id(self, transaction_id: str) -> Payment | None: ...
    async def find_for_enrollment(
        self, enrollment_id: UUID, statuses: Iterable[PaymentStatus]
    ) -> Payment | None: ...
    async def find_for_learner_batch(
        self, learner_id: str, batch_id: UUID, statuses: Iterable[PaymentStatus]
    ) -> Payment | None: ...
    async def transition(
        self,
        transaction_id: str,
        expected: Iterable[PaymentStatus],
        status: PaymentStatus,
        **changes: Any,
    ) -> Payment | None: ...
    async def update(self, transaction_id: str, **changes: Any) -> Payment | None: ...
    async def list(
        self,
        *,
        status: PaymentStatus | None = None,
        method: PaymentMethod | None = None,
        learner_id: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Payment], int]: ...


class InMemoryPaymentRepo:
    def __init__(self) -> None:
        self._by_txn: dict[str, Payment] = {}

    async def add(self, payment: Payment) -> None:
        if payment.transaction_id in self._by_txn:
            raise ConflictError("Duplicate transaction id")
        self._by_txn[payment.transaction_id] = payment

    async def get_by_transaction_id(self, transaction_id: str) -> Payment | None:
        return self._by_txn.get(transaction_id)

    async def find_for_enrollment(
        self, enrollment_id: UUID, statuses: Iterable[PaymentStatus]
    ) -> Payment | None:
        wanted = frozenset(statuses)
        matches = [
            p
            for p in self._by_txn.values()
            if p.enrollment_id == enrollment_id and p.status in wanted
        ]
        return max(matches, key=lambda p: p.created_at, default=None)

    async def find_for_learner_batch(
        self, learner_id: str, batch_id: UUID, statuses: Iterable[PaymentStatus]
    ) -> Payment | None:
        wanted = frozenset(statuses)
        matches = [
            p
            for p in self._by_txn.values()
            if p.learner_id == learner_id
            and p.batch_id == batch_id
            and p.status in wanted
        ]
        return max(matches, key=lambda p: p.created_at, default=None)

    async def transition(
        self,
        transaction_id: str,
        expected: Iterable[PaymentStatus],
        status: PaymentStatus,
        **changes: Any,
    ) -> Payment | None:
        """Compare-and-set on the payment status.

        None means the payment is missing or no longer in ``expected``:
        a concurrent writer got there first.
        """
        current = self._by_txn.get(transaction_id)
        if current is None or current.status not in frozenset(expected):
            return None
        updated = replace(current, status=status, **changes)
        self._by_txn[transaction_id] = updated
        return updated

    async def update(self, transaction_id: str, **changes: Any) -> Payment | None:
        current = self._by_txn.get(transaction_id)
        if current is None:
            return None
        updated = replace(current, **changes)
        self._by_txn[transaction_id] = updated
        return updated

    async def list(
        self,
        *,
        status: PaymentStatus | None = None,
        method: PaymentMethod | None = None,
        learner_id: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Payment], int]:
        matches = [
            p
            for p in self._by_txn.values()
            if (status is None or p.status == status)
            and (method is None or p.method == method)
            and (learner_id is None or p.learner_id == learner_id)
        ]
        matches.sort(key=lambda p: p.created_at, reverse=True)
        start = (page - 1) * limit
        return matches[start : start + limit], len(matches)
