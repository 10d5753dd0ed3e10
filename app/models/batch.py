from __future__ import annotations

import datetime
from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum
from uuid import UUID, uuid4


class BatchStatus(StrEnum):
    DRAFT = "draft"
    UPCOMING = "upcoming"
    RUNNING = "running"
    COMPLETED = "completed"


BATCH_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.DRAFT: frozenset({BatchStatus.UPCOMING, BatchStatus.RUNNING}),
    BatchStatus.UPCOMING: frozenset({BatchStatus.RUNNING}),
    BatchStatus.RUNNING: frozenset({BatchStatus.COMPLETED}),
    BatchStatus.COMPLETED: frozenset(),
}

ENROLLABLE_BATCH_STATUSES = frozenset({BatchStatus.UPCOMING, BatchStatus.RUNNING})


@dataclass(frozen=True, slots=True)
class Batch:
    """A scheduled cohort of a course with its own dates and price.

    ``current_enrollment`` is owned by the store: it only moves through
    BatchRepo.increment_enrollment(), never by writing a new value.
    """

    id: UUID
    course_id: UUID
    title: str
    batch_number: int
    start_date: datetime.datetime
    end_date: datetime.datetime
    enrollment_start_date: datetime.datetime
    enrollment_end_date: datetime.datetime
    price: Decimal
    currency: str = "BDT"
    current_enrollment: int = 0
    status: BatchStatus = BatchStatus.DRAFT

    def is_accepting_enrollments(self, now: datetime.datetime) -> bool:
        return self.status in ENROLLABLE_BATCH_STATUSES and now <= self.enrollment_end_date

    @staticmethod
    def new(
        *,
        course_id: UUID,
        title: str,
        batch_number: int,
        start_date: datetime.datetime,
        end_date: datetime.datetime,
        enrollment_start_date: datetime.datetime,
        enrollment_end_date: datetime.datetime,
        price: Decimal,
        currency: str = "BDT",
        status: BatchStatus = BatchStatus.DRAFT,
    ) -> Batch:
        return Batch(
            id=uuid4(),
            course_id=course_id,
            title=title,
            batch_number=batch_number,
            start_date=start_date,
            end_date=end_date,
            enrollment_start_date=enrollment_start_date,
            enrollment_end_date=enrollment_end_date,
            price=price,
            currency=currency,
            status=status,
        )
