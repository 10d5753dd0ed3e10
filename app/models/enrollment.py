from __future__ import annotations

import datetime
from dataclasses import dataclass
from enum import StrEnum
from uuid import UUID, uuid4


class EnrollmentStatus(StrEnum):
    PENDING = "pending"
    PAYMENT_PENDING = "payment-pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    SUSPENDED = "suspended"
    PAYMENT_FAILED = "payment-failed"


ENROLLMENT_TRANSITIONS: dict[EnrollmentStatus, frozenset[EnrollmentStatus]] = {
    EnrollmentStatus.PENDING: frozenset(
        {
            EnrollmentStatus.ACTIVE,
            EnrollmentStatus.PAYMENT_PENDING,
            EnrollmentStatus.PAYMENT_FAILED,
        }
    ),
    EnrollmentStatus.PAYMENT_PENDING: frozenset(
        {EnrollmentStatus.ACTIVE, EnrollmentStatus.PAYMENT_FAILED}
    ),
    EnrollmentStatus.ACTIVE: frozenset(
        {EnrollmentStatus.COMPLETED, EnrollmentStatus.SUSPENDED}
    ),
    EnrollmentStatus.SUSPENDED: frozenset({EnrollmentStatus.ACTIVE}),
    EnrollmentStatus.COMPLETED: frozenset(),
    EnrollmentStatus.PAYMENT_FAILED: frozenset(),
}

# Statuses that still hold (or are about to hold) a seat.
LIVE_ENROLLMENT_STATUSES = frozenset(
    {
        EnrollmentStatus.PENDING,
        EnrollmentStatus.PAYMENT_PENDING,
        EnrollmentStatus.ACTIVE,
    }
)

AWAITING_PAYMENT_STATUSES = frozenset(
    {EnrollmentStatus.PENDING, EnrollmentStatus.PAYMENT_PENDING}
)

# Statuses that grant access to content and certificates.
ACCESS_STATUSES = frozenset({EnrollmentStatus.ACTIVE, EnrollmentStatus.COMPLETED})


@dataclass(frozen=True, slots=True)
class Enrollment:
    """A learner's claim on a seat in a batch.

    ``enrollment_code`` is the human-facing id (``MA-...``).  It stays None
    until payment is confirmed so abandoned checkouts never consume a
    number from the sequence.
    """

    id: UUID
    learner_id: str
    batch_id: UUID
    status: EnrollmentStatus
    created_at: datetime.datetime
    enrollment_code: str | None = None
    payment_id: UUID | None = None
    enrolled_at: datetime.datetime | None = None
    completed_at: datetime.datetime | None = None
    certificate_issued: bool = False
    status_reason: str | None = None

    @staticmethod
    def new(
        *,
        learner_id: str,
        batch_id: UUID,
        status: EnrollmentStatus = EnrollmentStatus.PENDING,
    ) -> Enrollment:
        return Enrollment(
            id=uuid4(),
            learner_id=learner_id,
            batch_id=batch_id,
            status=status,
            created_at=datetime.datetime.now(datetime.UTC),
        )
