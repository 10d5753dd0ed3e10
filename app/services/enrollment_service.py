"""Enrollment state machine.

  pending ──► payment-pending ──► active ──► completed
     │              │               ▲  │
     │              ▼               │  ▼
     └──────► payment-failed     suspended

Two entry points create enrollments:

  initiate_enrollment         gateway path; ``pending``, no payment yet.
                              Calling it again while payment is open
                              returns the same enrollment (is_existing).
  enroll_with_manual_payment  bank-transfer path; ``payment-pending`` plus
                              a ``review`` payment, in one transaction.

Neither assigns an enrollment code.  Codes are drawn only when the
enrollment activates (app/services/activation.py), so abandoned checkouts
never consume a sequence number.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from uuid import UUID

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.db.store import Repos, store
from app.models.batch import ENROLLABLE_BATCH_STATUSES, Batch
from app.models.enrollment import (
    AWAITING_PAYMENT_STATUSES,
    LIVE_ENROLLMENT_STATUSES,
    Enrollment,
    EnrollmentStatus,
)
from app.models.payment import Payment, PaymentMethod, PaymentStatus
from app.models.progress import ModuleProgressStatus
from app.models.state import ensure_transition
from app.services.activation import activate_enrollment, after_activation
from app.services.notification_service import NotificationEvent, notify
from app.services.progress_service import round_half_up

logger = logging.getLogger(__name__)

# Admin-driven changes.  Activation from pending/payment-pending only
# happens through a payment, never through this table.
ADMIN_STATUS_TRANSITIONS: dict[EnrollmentStatus, frozenset[EnrollmentStatus]] = {
    EnrollmentStatus.ACTIVE: frozenset(
        {EnrollmentStatus.SUSPENDED, EnrollmentStatus.COMPLETED}
    ),
    EnrollmentStatus.SUSPENDED: frozenset({EnrollmentStatus.ACTIVE}),
}


@dataclass(frozen=True, slots=True)
class EnrollmentInitiation:
    enrollment: Enrollment
    batch: Batch
    is_existing: bool


@dataclass(frozen=True, slots=True)
class ManualPaymentEvidence:
    """What the learner submits after a bank/mobile transfer."""

    sender_reference: str
    external_transaction_id: str


@dataclass(frozen=True, slots=True)
class ManualEnrollment:
    enrollment: Enrollment
    payment: Payment

    @property
    def transaction_id(self) -> str:
        return self.payment.transaction_id


@dataclass(frozen=True, slots=True)
class ProgressSummary:
    total_modules: int
    completed_modules: int
    overall_progress: int


@dataclass(frozen=True, slots=True)
class EnrollmentView:
    enrollment: Enrollment
    batch: Batch | None
    progress: ProgressSummary


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


async def initiate_enrollment(learner_id: str, batch_id: UUID) -> EnrollmentInitiation:
    async with store.transaction() as tx:
        result = await initiate_in(tx, learner_id, batch_id)
    if not result.is_existing:
        logger.info(
            "Initiated enrollment=%s learner=%s batch=%s",
            result.enrollment.id,
            learner_id,
            batch_id,
        )
    return result


async def initiate_in(tx: Repos, learner_id: str, batch_id: UUID) -> EnrollmentInitiation:
    """initiate_enrollment inside an existing transaction."""
    await tx.enrollments.lock_learner(learner_id)
    existing = await tx.enrollments.get_for_learner_batch(learner_id, batch_id)
    if existing is not None and existing.status in AWAITING_PAYMENT_STATUSES:
        batch = await tx.batches.get(batch_id)
        if batch is None:
            raise NotFoundError("Batch not found")
        return EnrollmentInitiation(enrollment=existing, batch=batch, is_existing=True)

    batch = await _enrollable_batch(tx, batch_id)
    if existing is not None:
        raise ConflictError("You are already enrolled in this batch")
    await _ensure_no_live_course_enrollment(tx, learner_id, batch)

    enrollment = Enrollment.new(learner_id=learner_id, batch_id=batch.id)
    await tx.enrollments.add(enrollment)
    return EnrollmentInitiation(enrollment=enrollment, batch=batch, is_existing=False)


async def enroll_with_manual_payment(
    learner_id: str, batch_id: UUID, evidence: ManualPaymentEvidence
) -> ManualEnrollment:
    if not evidence.sender_reference.strip() or not evidence.external_transaction_id.strip():
        raise ValidationError("Sender reference and transaction id are required")

    async with store.transaction() as tx:
        await tx.enrollments.lock_learner(learner_id)
        existing = await tx.enrollments.get_for_learner_batch(learner_id, batch_id)
        if existing is not None and existing.status == EnrollmentStatus.ACTIVE:
            raise ConflictError("You are already enrolled in this batch")
        if existing is not None and existing.status in AWAITING_PAYMENT_STATUSES:
            raise ConflictError(
                "You already have a pending enrollment for this batch. "
                "Please wait for payment verification."
            )

        batch = await _enrollable_batch(tx, batch_id)
        if existing is not None:
            raise ConflictError("You are already enrolled in this batch")
        await _ensure_no_live_course_enrollment(tx, learner_id, batch)

        enrollment = Enrollment.new(
            learner_id=learner_id,
            batch_id=batch.id,
            status=EnrollmentStatus.PAYMENT_PENDING,
        )
        await tx.enrollments.add(enrollment)

        # No enrollment link yet: manual payments are tied to their
        # enrollment when an admin decides on them.
        payment = Payment.new(
            learner_id=learner_id,
            batch_id=batch.id,
            amount=batch.price,
            currency=batch.currency,
            method=PaymentMethod.MANUAL_TRANSFER,
            status=PaymentStatus.REVIEW,
            gateway_response={
                "sender_reference": evidence.sender_reference.strip(),
                "external_transaction_id": evidence.external_transaction_id.strip(),
                "submitted_at": _now().isoformat(),
            },
        )
        await tx.payments.add(payment)

    logger.info(
        "Manual payment submitted enrollment=%s transaction=%s",
        enrollment.id,
        payment.transaction_id,
    )
    await notify(
        NotificationEvent.WAITING_VERIFICATION,
        learner_id=learner_id,
        enrollment_id=str(enrollment.id),
        transaction_id=payment.transaction_id,
    )
    await notify(
        NotificationEvent.PAYMENT_UNDER_REVIEW,
        audience="admins",
        learner_id=learner_id,
        transaction_id=payment.transaction_id,
        amount=str(payment.amount),
        currency=payment.currency,
    )
    return ManualEnrollment(enrollment=enrollment, payment=payment)


async def _enrollable_batch(tx: Repos, batch_id: UUID) -> Batch:
    batch = await tx.batches.get(batch_id)
    if batch is None:
        raise NotFoundError("Batch not found")
    if batch.status not in ENROLLABLE_BATCH_STATUSES:
        raise ValidationError("This batch is not accepting new enrollments")
    if _now() > batch.enrollment_end_date:
        raise ValidationError("Enrollment period has ended for this batch")
    return batch


async def _ensure_no_live_course_enrollment(
    tx: Repos, learner_id: str, batch: Batch
) -> None:
    """One live enrollment per course among upcoming/running batches."""
    for other in await tx.enrollments.list_by_learner(
        learner_id, LIVE_ENROLLMENT_STATUSES
    ):
        other_batch = await tx.batches.get(other.batch_id)
        if (
            other_batch is not None
            and other_batch.course_id == batch.course_id
            and other_batch.status in ENROLLABLE_BATCH_STATUSES
        ):
            raise ConflictError(
                "You are already enrolled in a current batch of this course. "
                "You can only enroll in one batch at a time.",
                {"existing_enrollment_id": str(other.id)},
            )


# ---------------------------------------------------------------------------
# Confirmation and admin changes
# ---------------------------------------------------------------------------


async def confirm_enrollment(
    enrollment_id: UUID,
    payment_id: UUID | None,
    method: PaymentMethod = PaymentMethod.GATEWAY,
) -> Enrollment:
    """Activate after payment.  Calling it again is a no-op."""
    async with store.transaction() as tx:
        activation = await activate_enrollment(
            tx, enrollment_id, payment_id=payment_id, method=method
        )
    if activation.activated:
        await after_activation(activation.enrollment)
    return activation.enrollment


async def update_enrollment_status(
    enrollment_id: UUID,
    status: EnrollmentStatus,
    *,
    reason: str | None = None,
    changed_by: str | None = None,
) -> Enrollment:
    async with store.transaction() as tx:
        enrollment = await tx.enrollments.get(enrollment_id)
        if enrollment is None:
            raise NotFoundError("Enrollment not found")
        ensure_transition(
            "enrollment", ADMIN_STATUS_TRANSITIONS, enrollment.status, status
        )
        changes = {"status_reason": reason}
        if status == EnrollmentStatus.COMPLETED:
            changes["completed_at"] = _now()
        updated = await tx.enrollments.transition(
            enrollment_id, [enrollment.status], status, **changes
        )
        if updated is None:
            raise ConflictError("Enrollment changed concurrently; retry")

    logger.info(
        "Enrollment %s status %s -> %s by=%s reason=%s",
        enrollment_id,
        enrollment.status.value,
        status.value,
        changed_by,
        reason,
    )
    return updated


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_user_enrollments(
    learner_id: str, status: EnrollmentStatus | None = None
) -> list[EnrollmentView]:
    async with store.transaction() as tx:
        enrollments = await tx.enrollments.list_by_learner(
            learner_id, [status] if status is not None else None
        )
        return [await _view(tx, e) for e in enrollments]


async def get_enrollment_details(
    enrollment_id: UUID, learner_id: str | None = None
) -> EnrollmentView:
    """One enrollment with batch and progress summary.

    ``learner_id`` scopes the lookup to the owner; admins pass None.
    """
    async with store.transaction() as tx:
        enrollment = await tx.enrollments.get(enrollment_id)
        if enrollment is None or (
            learner_id is not None and enrollment.learner_id != learner_id
        ):
            raise NotFoundError("Enrollment not found")
        return await _view(tx, enrollment)


async def _view(tx: Repos, enrollment: Enrollment) -> EnrollmentView:
    modules = await tx.progress.list_module_progress(enrollment.id)
    total = len(modules)
    completed = sum(1 for m in modules if m.status == ModuleProgressStatus.COMPLETED)
    overall = round_half_up(100 * completed / total) if total else 0
    return EnrollmentView(
        enrollment=enrollment,
        batch=await tx.batches.get(enrollment.batch_id),
        progress=ProgressSummary(
            total_modules=total,
            completed_modules=completed,
            overall_progress=overall,
        ),
    )
