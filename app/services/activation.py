"""Enrollment activation: the one atomic unit every payment path ends in.

Gateway webhook, gateway redirect, status-check reconciliation, admin
approval and a direct confirm call all converge here.  Inside the
caller's transaction it:

  1. assigns the enrollment code (if the enrollment has none yet)
  2. moves the enrollment to ``active`` with a compare-and-set
  3. increments the batch seat counter, once
  4. initializes module progress (idempotent)

Step 2 is the guard for step 3: only the caller whose compare-and-set
succeeds increments the counter, so replays and concurrent confirmations
cannot count a seat twice.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from uuid import UUID

from app.core.errors import ConflictError, NotFoundError
from app.core.metrics import ENROLLMENT_ACTIVATIONS
from app.db.store import Repos
from app.models.enrollment import (
    AWAITING_PAYMENT_STATUSES,
    ENROLLMENT_TRANSITIONS,
    Enrollment,
    EnrollmentStatus,
)
from app.models.payment import PaymentMethod
from app.models.state import ensure_transition
from app.services.notification_service import NotificationEvent, notify
from app.services.profile_service import sync_student_profile
from app.services.progress_service import initialize_progress

logger = logging.getLogger(__name__)

ENROLLMENT_CODE_PREFIX = "MA"


@dataclass(frozen=True, slots=True)
class Activation:
    enrollment: Enrollment
    activated: bool  # False when the enrollment was already active


def format_enrollment_code(batch_number: int, year: int, sequence: int) -> str:
    return f"{ENROLLMENT_CODE_PREFIX}-{batch_number}{year}{sequence:05d}"


async def next_enrollment_code(tx: Repos, batch_number: int, year: int) -> str:
    """Draw the next code from the per-(batch number, year) sequence."""
    sequence = await tx.counters.next_value(f"enrollment:{batch_number}:{year}")
    return format_enrollment_code(batch_number, year, sequence)


async def activate_enrollment(
    tx: Repos,
    enrollment_id: UUID,
    *,
    payment_id: UUID | None,
    method: PaymentMethod,
    enrollment_code: str | None = None,
) -> Activation:
    enrollment = await tx.enrollments.get(enrollment_id)
    if enrollment is None:
        raise NotFoundError("Enrollment not found")
    if enrollment.status == EnrollmentStatus.ACTIVE:
        return Activation(enrollment=enrollment, activated=False)
    if enrollment.status not in AWAITING_PAYMENT_STATUSES:
        raise ConflictError(
            f"Cannot confirm enrollment with status: {enrollment.status.value}"
        )
    ensure_transition(
        "enrollment", ENROLLMENT_TRANSITIONS, enrollment.status, EnrollmentStatus.ACTIVE
    )

    batch = await tx.batches.get(enrollment.batch_id)
    if batch is None:
        raise NotFoundError("Batch not found")

    now = datetime.datetime.now(datetime.UTC)
    code = (
        enrollment.enrollment_code
        or enrollment_code
        or await next_enrollment_code(tx, batch.batch_number, now.year)
    )

    activated = await tx.enrollments.transition(
        enrollment.id,
        AWAITING_PAYMENT_STATUSES,
        EnrollmentStatus.ACTIVE,
        enrollment_code=code,
        payment_id=payment_id,
        enrolled_at=now,
    )
    if activated is None:
        # Lost the race: another writer moved the row after our read.
        current = await tx.enrollments.get(enrollment.id)
        if current is not None and current.status == EnrollmentStatus.ACTIVE:
            return Activation(enrollment=current, activated=False)
        raise ConflictError("Enrollment changed while confirming; retry")

    seats = await tx.batches.increment_enrollment(batch.id)
    await initialize_progress(tx, activated.id, batch.id)

    ENROLLMENT_ACTIVATIONS.labels(method=method.value).inc()
    logger.info(
        "Activated enrollment=%s code=%s batch=%s seats=%d",
        activated.id,
        code,
        batch.id,
        seats,
    )
    return Activation(enrollment=activated, activated=True)


async def after_activation(enrollment: Enrollment) -> None:
    """Post-commit side effects.  Neither may fail the activation."""
    await sync_student_profile(enrollment.learner_id)
    await notify(
        NotificationEvent.ENROLLMENT_CONFIRMED,
        learner_id=enrollment.learner_id,
        enrollment_id=str(enrollment.id),
        batch_id=str(enrollment.batch_id),
        enrollment_code=enrollment.enrollment_code,
    )
