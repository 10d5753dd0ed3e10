"""PostgreSQL implementation of EnrollmentRepo."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError
from app.db.tables import EnrollmentRow
from app.models.enrollment import Enrollment, EnrollmentStatus


class PgEnrollmentRepo:
    """Satisfies the EnrollmentRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, enrollment_id: UUID) -> Enrollment | None:
        stmt = select(EnrollmentRow).where(EnrollmentRow.id == enrollment_id)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_enrollment(row)

    async def get_for_learner_batch(
        self, learner_id: str, batch_id: UUID
    ) -> Enrollment | None:
        stmt = select(EnrollmentRow).where(
            EnrollmentRow.learner_id == learner_id,
            EnrollmentRow.batch_id == batch_id,
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_enrollment(row)

    async def list_by_learner(
        self,
        learner_id: str,
        statuses: Iterable[EnrollmentStatus] | None = None,
    ) -> list[Enrollment]:
        stmt = select(EnrollmentRow).where(EnrollmentRow.learner_id == learner_id)
        if statuses is not None:
            stmt = stmt.where(EnrollmentRow.status.in_([s.value for s in statuses]))
        stmt = stmt.order_by(EnrollmentRow.created_at.desc())
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_enrollment(r) for r in rows]

    async def lock_learner(self, learner_id: str) -> None:
        """Serialize enrollment writes for one learner until commit.

        A row lock cannot cover enrollments that do not exist yet, so this
        takes a transaction-scoped advisory lock keyed by the learner id.
        """
        await self._session.execute(
            select(func.pg_advisory_xact_lock(func.hashtext(learner_id)))
        )

    async def add(self, enrollment: Enrollment) -> None:
        self._session.add(
            EnrollmentRow(
                id=enrollment.id,
                learner_id=enrollment.learner_id,
                batch_id=enrollment.batch_id,
                status=enrollment.status.value,
                enrollment_code=enrollment.enrollment_code,
                payment_id=enrollment.payment_id,
                created_at=enrollment.created_at,
                enrolled_at=enrollment.enrolled_at,
                completed_at=enrollment.completed_at,
                certificate_issued=enrollment.certificate_issued,
                status_reason=enrollment.status_reason,
            )
        )
        try:
            await self._session.flush()
        except IntegrityError:
            # (learner_id, batch_id) unique constraint: a concurrent request won
            raise ConflictError("You are already enrolled in this batch") from None

    async def transition(
        self,
        enrollment_id: UUID,
        expected: Iterable[EnrollmentStatus],
        status: EnrollmentStatus,
        **changes: Any,
    ) -> Enrollment | None:
        stmt = (
            update(EnrollmentRow)
            .where(EnrollmentRow.id == enrollment_id)
            .where(EnrollmentRow.status.in_([s.value for s in expected]))
            .values(status=status.value, **changes)
            .returning(EnrollmentRow)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_enrollment(row)

    async def update(self, enrollment_id: UUID, **changes: Any) -> Enrollment | None:
        stmt = (
            update(EnrollmentRow)
            .where(EnrollmentRow.id == enrollment_id)
            .values(**changes)
            .returning(EnrollmentRow)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_enrollment(row)


def _row_to_enrollment(row: EnrollmentRow) -> Enrollment:
    return Enrollment(
        id=row.id,
        learner_id=row.learner_id,
        batch_id=row.batch_id,
        status=EnrollmentStatus(row.status),
        created_at=row.created_at,
        enrollment_code=row.enrollment_code,
        payment_id=row.payment_id,
        enrolled_at=row.enrolled_at,
        completed_at=row.completed_at,
        certificate_issued=row.certificate_issued,
        status_reason=row.status_reason,
    )
