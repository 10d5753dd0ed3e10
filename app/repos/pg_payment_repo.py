"""PostgreSQL implementation of PaymentRepo."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError
from app.db.tables import PaymentRow
from app.models.payment import Payment, PaymentMethod, PaymentStatus


class PgPaymentRepo:
    """Satisfies the PaymentRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, payment: Payment) -> None:
        self._session.add(
            PaymentRow(
                id=payment.id,
                transaction_id=payment.transaction_id,
                learner_id=payment.learner_id,
                batch_id=payment.batch_id,
                enrollment_id=payment.enrollment_id,
                enrollment_code=payment.enrollment_code,
                amount=payment.amount,
                currency=payment.currency,
                method=payment.method.value,
                status=payment.status.value,
                gateway_response=payment.gateway_response,
                created_at=payment.created_at,
                verified_at=payment.verified_at,
                verified_by=payment.verified_by,
            )
        )
        try:
            await self._session.flush()
        except IntegrityError:
            raise ConflictError("Duplicate transaction id") from None

    async def get_by_transaction_id(self, transaction_id: str) -> Payment | None:
        stmt = select(PaymentRow).where(PaymentRow.transaction_id == transaction_id)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_payment(row)

    async def find_for_enrollment(
        self, enrollment_id: UUID, statuses: Iterable[PaymentStatus]
    ) -> Payment | None:
        stmt = (
            select(PaymentRow)
            .where(PaymentRow.enrollment_id == enrollment_id)
            .where(PaymentRow.status.in_([s.value for s in statuses]))
            .order_by(PaymentRow.created_at.desc())
            .limit(1)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_payment(row)

    async def find_for_learner_batch(
        self, learner_id: str, batch_id: UUID, statuses: Iterable[PaymentStatus]
    ) -> Payment | None:
        stmt = (
            select(PaymentRow)
            .where(PaymentRow.learner_id == learner_id)
            .where(PaymentRow.batch_id == batch_id)
            .where(PaymentRow.status.in_([s.value for s in statuses]))
            .order_by(PaymentRow.created_at.desc())
            .limit(1)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_payment(row)

    async def transition(
        self,
        transaction_id: str,
        expected: Iterable[PaymentStatus],
        status: PaymentStatus,
        **changes: Any,
    ) -> Payment | None:
        """Conditional UPDATE: only rows still in ``expected`` move.

        Two concurrent callers both see the old status on their first read,
        but only one of them gets a row back from this statement.
        """
        stmt = (
            update(PaymentRow)
            .where(PaymentRow.transaction_id == transaction_id)
            .where(PaymentRow.status.in_([s.value for s in expected]))
            .values(status=status.value, **changes)
            .returning(PaymentRow)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_payment(row)

    async def update(self, transaction_id: str, **changes: Any) -> Payment | None:
        stmt = (
            update(PaymentRow)
            .where(PaymentRow.transaction_id == transaction_id)
            .values(**changes)
            .returning(PaymentRow)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_payment(row)

    async def list(
        self,
        *,
        status: PaymentStatus | None = None,
        method: PaymentMethod | None = None,
        learner_id: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Payment], int]:
        filters = []
        if status is not None:
            filters.append(PaymentRow.status == status.value)
        if method is not None:
            filters.append(PaymentRow.method == method.value)
        if learner_id is not None:
            filters.append(PaymentRow.learner_id == learner_id)

        total = (
            await self._session.execute(
                select(func.count()).select_from(PaymentRow).where(*filters)
            )
        ).scalar_one()
        stmt = (
            select(PaymentRow)
            .where(*filters)
            .order_by(PaymentRow.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_payment(r) for r in rows], total


def _row_to_payment(row: PaymentRow) -> Payment:
    return Payment(
        id=row.id,
        transaction_id=row.transaction_id,
        learner_id=row.learner_id,
        batch_id=row.batch_id,
        amount=row.amount,
        currency=row.currency,
        method=PaymentMethod(row.method),
        status=PaymentStatus(row.status),
        created_at=row.created_at,
        enrollment_id=row.enrollment_id,
        enrollment_code=row.enrollment_code,
        gateway_response=dict(row.gateway_response or {}),
        verified_at=row.verified_at,
        verified_by=row.verified_by,
    )
