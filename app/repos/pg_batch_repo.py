"""PostgreSQL implementation of BatchRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import BatchRow
from app.models.batch import Batch, BatchStatus


class PgBatchRepo:
    """Satisfies the BatchRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, batch_id: UUID) -> Batch | None:
        stmt = select(BatchRow).where(BatchRow.id == batch_id)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_batch(row)

    async def add(self, batch: Batch) -> None:
        self._session.add(
            BatchRow(
                id=batch.id,
                course_id=batch.course_id,
                title=batch.title,
                batch_number=batch.batch_number,
                start_date=batch.start_date,
                end_date=batch.end_date,
                enrollment_start_date=batch.enrollment_start_date,
                enrollment_end_date=batch.enrollment_end_date,
                price=batch.price,
                currency=batch.currency,
                current_enrollment=batch.current_enrollment,
                status=batch.status.value,
            )
        )
        await self._session.flush()

    async def increment_enrollment(self, batch_id: UUID) -> int:
        # Single UPDATE ... SET x = x + 1: no read-modify-write window.
        stmt = (
            update(BatchRow)
            .where(BatchRow.id == batch_id)
            .values(current_enrollment=BatchRow.current_enrollment + 1)
            .returning(BatchRow.current_enrollment)
        )
        value = (await self._session.execute(stmt)).scalar_one_or_none()
        if value is None:
            raise KeyError("batch not found")
        return value

    async def set_status(
        self, batch_id: UUID, expected: BatchStatus, status: BatchStatus
    ) -> Batch | None:
        stmt = (
            update(BatchRow)
            .where(BatchRow.id == batch_id)
            .where(BatchRow.status == expected.value)
            .values(status=status.value)
            .returning(BatchRow)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_batch(row)


def _row_to_batch(row: BatchRow) -> Batch:
    return Batch(
        id=row.id,
        course_id=row.course_id,
        title=row.title,
        batch_number=row.batch_number,
        start_date=row.start_date,
        end_date=row.end_date,
        enrollment_start_date=row.enrollment_start_date,
        enrollment_end_date=row.enrollment_end_date,
        price=row.price,
        currency=row.currency,
        current_enrollment=row.current_enrollment,
        status=BatchStatus(row.status),
    )
