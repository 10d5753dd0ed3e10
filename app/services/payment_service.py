"""Payment ledger: every payment state change goes through apply_payment_status.

    pending ──► success | failed | cancel
    review  ──► success | failed             (manual transfers)

Four paths feed it:

  gateway IPN webhook        handle_gateway_notification
  gateway success redirect   handle_gateway_notification (same checks)
  status-check polling       check_payment_status
  admin decision             verify_manual_payment

IDEMPOTENCY
------------
The transaction id is the idempotency key.  Gateways retry webhooks and
browsers replay redirects, so the same "success" can arrive many times.
Applying a status the payment already has is a no-op, and the write
itself is a compare-and-set on the current status: of two concurrent
appliers exactly one moves the row, the other sees "already processed".
The enrollment activation it cascades into is guarded the same way, so
the batch seat counter moves once no matter how many deliveries arrive.

WEBHOOK VERIFICATION
---------------------
A webhook body is untrusted.  We never take its word for the amount:
the one-time val_id is resolved against the gateway's validation API
(outside any transaction, with a timeout), and the validated amount,
currency and transaction id must match the stored payment exactly.
A mismatch is a tamper signal: logged at ERROR, counted, nothing
written.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any
from uuid import UUID

from app.core.errors import (
    ConflictError,
    IntegrityViolationError,
    NotFoundError,
    ValidationError,
)
from app.core.metrics import PAYMENT_STATUS_TRANSITIONS, WEBHOOK_OUTCOMES
from app.db.store import Repos, store
from app.models.enrollment import AWAITING_PAYMENT_STATUSES, Enrollment, EnrollmentStatus
from app.models.payment import (
    PAYMENT_TRANSITIONS,
    Payment,
    PaymentMethod,
    PaymentStatus,
)
from app.models.state import ensure_transition
from app.services.activation import activate_enrollment, after_activation
from app.services.enrollment_service import initiate_in
from app.services.gateway import CheckoutRequest, GatewayValidation, gateway
from app.services.notification_service import NotificationEvent, notify

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class WebhookAck(StrEnum):
    PROCESSED = "processed"
    ALREADY_PROCESSED = "already_processed"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class PaymentOutcome:
    payment: Payment
    enrollment: Enrollment | None
    applied: bool  # False: the payment already had this status
    activated: bool = False


@dataclass(frozen=True, slots=True)
class WebhookResult:
    ack: WebhookAck
    payment: Payment


@dataclass(frozen=True, slots=True)
class Checkout:
    enrollment: Enrollment
    payment: Payment
    redirect_url: str
    is_existing: bool


@dataclass(frozen=True, slots=True)
class PaymentPage:
    items: list[Payment]
    total: int
    page: int
    limit: int


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


# ---------------------------------------------------------------------------
# Gateway checkout
# ---------------------------------------------------------------------------


async def record_gateway_attempt(enrollment_id: UUID) -> Payment:
    async with store.transaction() as tx:
        enrollment = await tx.enrollments.get(enrollment_id)
        if enrollment is None:
            raise NotFoundError("Enrollment not found")
        return await _record_gateway_attempt(tx, enrollment)


async def _record_gateway_attempt(tx: Repos, enrollment: Enrollment) -> Payment:
    if enrollment.status == EnrollmentStatus.PAYMENT_PENDING:
        # a manual transfer is already awaiting review for this seat
        raise ConflictError(
            "A manual payment for this enrollment is awaiting verification"
        )
    if enrollment.status != EnrollmentStatus.PENDING:
        raise ConflictError(
            f"Enrollment is {enrollment.status.value}; no payment is expected"
        )
    batch = await tx.batches.get(enrollment.batch_id)
    if batch is None:
        raise NotFoundError("Batch not found")

    # Gateway attempts are linked to their enrollment from the start.
    payment = Payment.new(
        learner_id=enrollment.learner_id,
        batch_id=batch.id,
        amount=batch.price,
        currency=batch.currency,
        method=PaymentMethod.GATEWAY,
        enrollment_id=enrollment.id,
    )
    await tx.payments.add(payment)
    logger.info(
        "Recorded gateway attempt transaction=%s enrollment=%s amount=%s %s",
        payment.transaction_id,
        enrollment.id,
        payment.amount,
        payment.currency,
    )
    return payment


async def start_gateway_checkout(learner_id: str, batch_id: UUID) -> Checkout:
    """Initiate (or resume) an enrollment and open a hosted checkout.

    A learner who comes back while payment is still open gets the same
    enrollment and the same pending payment.  If the gateway is down the
    payment stays ``pending`` and ExternalDependencyError propagates; the
    learner can simply try again.
    """
    async with store.transaction() as tx:
        initiation = await initiate_in(tx, learner_id, batch_id)
        payment = await tx.payments.find_for_enrollment(
            initiation.enrollment.id, [PaymentStatus.PENDING]
        )
        if payment is None:
            payment = await _record_gateway_attempt(tx, initiation.enrollment)
        course = await tx.catalog.get_course(initiation.batch.course_id)

    redirect_url = await gateway.initiate(
        CheckoutRequest(
            transaction_id=payment.transaction_id,
            amount=payment.amount,
            currency=payment.currency,
            product_name=course.title if course else initiation.batch.title,
            customer_id=learner_id,
        )
    )
    return Checkout(
        enrollment=initiation.enrollment,
        payment=payment,
        redirect_url=redirect_url,
        is_existing=initiation.is_existing,
    )


# ---------------------------------------------------------------------------
# The single mutation point
# ---------------------------------------------------------------------------


async def apply_payment_status(
    transaction_id: str,
    new_status: PaymentStatus,
    gateway_payload: dict[str, Any] | None = None,
    *,
    verified_by: str | None = None,
) -> PaymentOutcome:
    async with store.transaction() as tx:
        outcome = await _apply_status(
            tx, transaction_id, new_status, gateway_payload, verified_by=verified_by
        )
    await _after_commit(outcome)
    return outcome


async def _apply_status(
    tx: Repos,
    transaction_id: str,
    new_status: PaymentStatus,
    gateway_payload: dict[str, Any] | None,
    *,
    verified_by: str | None = None,
) -> PaymentOutcome:
    payment = await tx.payments.get_by_transaction_id(transaction_id)
    if payment is None:
        raise NotFoundError("Payment not found")

    if payment.status == new_status:
        return PaymentOutcome(
            payment=payment,
            enrollment=await _linked_enrollment(tx, payment),
            applied=False,
        )
    ensure_transition("payment", PAYMENT_TRANSITIONS, payment.status, new_status)

    changes: dict[str, Any] = {}
    if gateway_payload:
        changes["gateway_response"] = {**payment.gateway_response, **gateway_payload}
    if new_status in (PaymentStatus.SUCCESS, PaymentStatus.FAILED):
        changes["verified_at"] = _now()
        changes["verified_by"] = verified_by

    updated = await tx.payments.transition(
        transaction_id, [payment.status], new_status, **changes
    )
    if updated is None:
        current = await tx.payments.get_by_transaction_id(transaction_id)
        if current is not None and current.status == new_status:
            return PaymentOutcome(
                payment=current,
                enrollment=await _linked_enrollment(tx, current),
                applied=False,
            )
        raise ConflictError("Payment changed concurrently; retry")

    PAYMENT_STATUS_TRANSITIONS.labels(status=new_status.value).inc()
    logger.info(
        "Payment %s %s -> %s",
        transaction_id,
        payment.status.value,
        new_status.value,
    )

    enrollment = None
    activated = False
    if updated.enrollment_id is not None:
        if new_status == PaymentStatus.SUCCESS:
            activation = await activate_enrollment(
                tx,
                updated.enrollment_id,
                payment_id=updated.id,
                method=updated.method,
            )
            enrollment = activation.enrollment
            activated = activation.activated
            updated = await tx.payments.update(
                transaction_id, enrollment_code=enrollment.enrollment_code
            ) or updated
        elif new_status == PaymentStatus.FAILED:
            enrollment = await _fail_enrollment(tx, updated.enrollment_id)
        else:
            # cancel: enrollment stays pending so the learner can retry
            enrollment = await tx.enrollments.get(updated.enrollment_id)

    return PaymentOutcome(
        payment=updated, enrollment=enrollment, applied=True, activated=activated
    )


async def _fail_enrollment(tx: Repos, enrollment_id: UUID) -> Enrollment | None:
    enrollment = await tx.enrollments.get(enrollment_id)
    if enrollment is None or enrollment.status not in AWAITING_PAYMENT_STATUSES:
        return enrollment
    failed = await tx.enrollments.transition(
        enrollment_id,
        AWAITING_PAYMENT_STATUSES,
        EnrollmentStatus.PAYMENT_FAILED,
        status_reason="Payment failed",
    )
    return failed or await tx.enrollments.get(enrollment_id)


async def _linked_enrollment(tx: Repos, payment: Payment) -> Enrollment | None:
    if payment.enrollment_id is None:
        return None
    return await tx.enrollments.get(payment.enrollment_id)


async def _after_commit(outcome: PaymentOutcome) -> None:
    if not outcome.applied:
        return
    payment = outcome.payment
    if payment.status == PaymentStatus.SUCCESS:
        await notify(
            NotificationEvent.PAYMENT_SUCCEEDED,
            learner_id=payment.learner_id,
            transaction_id=payment.transaction_id,
            amount=str(payment.amount),
            currency=payment.currency,
        )
    elif payment.status == PaymentStatus.FAILED:
        await notify(
            NotificationEvent.PAYMENT_FAILED,
            learner_id=payment.learner_id,
            transaction_id=payment.transaction_id,
        )
    if outcome.activated and outcome.enrollment is not None:
        await after_activation(outcome.enrollment)


# ---------------------------------------------------------------------------
# Gateway confirmations
# ---------------------------------------------------------------------------


async def handle_gateway_notification(transaction_id: str, val_id: str) -> WebhookResult:
    """Verify and apply a gateway IPN (or success redirect)."""
    payment = await get_payment(transaction_id)

    if payment.method != PaymentMethod.GATEWAY:
        # manual transfers are settled by an admin only
        WEBHOOK_OUTCOMES.labels(outcome=WebhookAck.REJECTED.value).inc()
        logger.warning(
            "Webhook for non-gateway transaction=%s method=%s ignored",
            transaction_id,
            payment.method.value,
        )
        return WebhookResult(ack=WebhookAck.REJECTED, payment=payment)

    if payment.status == PaymentStatus.SUCCESS:
        WEBHOOK_OUTCOMES.labels(outcome=WebhookAck.ALREADY_PROCESSED.value).inc()
        logger.info("Webhook replay for settled transaction=%s", transaction_id)
        return WebhookResult(ack=WebhookAck.ALREADY_PROCESSED, payment=payment)

    # Outside any transaction: a slow gateway must not hold the store.
    validation = await gateway.validate(val_id)

    if not validation.is_valid:
        logger.warning(
            "Gateway rejected transaction=%s status=%s",
            transaction_id,
            validation.status,
        )
        if not payment.is_terminal:
            outcome = await apply_payment_status(
                transaction_id,
                PaymentStatus.FAILED,
                {"validation_status": validation.status},
            )
            payment = outcome.payment
        WEBHOOK_OUTCOMES.labels(outcome=WebhookAck.REJECTED.value).inc()
        return WebhookResult(ack=WebhookAck.REJECTED, payment=payment)

    _ensure_matches(payment, validation)

    outcome = await apply_payment_status(
        transaction_id, PaymentStatus.SUCCESS, _payload(validation)
    )
    ack = WebhookAck.PROCESSED if outcome.applied else WebhookAck.ALREADY_PROCESSED
    WEBHOOK_OUTCOMES.labels(outcome=ack.value).inc()
    return WebhookResult(ack=ack, payment=outcome.payment)


async def record_gateway_redirect(
    transaction_id: str, status: PaymentStatus
) -> Payment:
    """Handle the learner's browser coming back from a fail/cancel page.

    These redirects are unauthenticated, so they may only close a payment
    that is still open; a settled payment is returned untouched.
    """
    if status not in (PaymentStatus.FAILED, PaymentStatus.CANCEL):
        raise ValidationError("Only fail and cancel redirects are recorded directly")
    payment = await get_payment(transaction_id)
    if payment.status != PaymentStatus.PENDING:
        return payment
    outcome = await apply_payment_status(
        transaction_id, status, {"redirect": status.value}
    )
    return outcome.payment


async def check_payment_status(transaction_id: str) -> PaymentOutcome:
    """Reconcile a pending payment against the gateway's own record."""
    payment = await get_payment(transaction_id)
    if payment.is_terminal or payment.method != PaymentMethod.GATEWAY:
        async with store.transaction() as tx:
            enrollment = await _linked_enrollment(tx, payment)
        return PaymentOutcome(payment=payment, enrollment=enrollment, applied=False)

    validation = await gateway.query_transaction(transaction_id)
    target = _reconciled_status(validation)
    if validation is None or target is None:
        async with store.transaction() as tx:
            enrollment = await _linked_enrollment(tx, payment)
        return PaymentOutcome(payment=payment, enrollment=enrollment, applied=False)

    if target == PaymentStatus.SUCCESS:
        _ensure_matches(payment, validation)
    return await apply_payment_status(transaction_id, target, _payload(validation))


def _reconciled_status(validation: GatewayValidation | None) -> PaymentStatus | None:
    if validation is None:
        return None
    if validation.is_valid:
        return PaymentStatus.SUCCESS
    if validation.status in ("FAILED", "INVALID_TRANSACTION", "EXPIRED"):
        return PaymentStatus.FAILED
    if validation.status in ("CANCELLED", "CANCEL"):
        return PaymentStatus.CANCEL
    # PENDING / UNATTEMPTED: nothing to reconcile yet
    return None


def _ensure_matches(payment: Payment, validation: GatewayValidation) -> None:
    mismatches = {}
    if validation.transaction_id != payment.transaction_id:
        mismatches["transaction_id"] = (payment.transaction_id, validation.transaction_id)
    if validation.amount is None or validation.amount != payment.amount:
        mismatches["amount"] = (str(payment.amount), str(validation.amount))
    if (validation.currency or "").upper() != payment.currency.upper():
        mismatches["currency"] = (payment.currency, validation.currency)
    if mismatches:
        WEBHOOK_OUTCOMES.labels(outcome="integrity_violation").inc()
        logger.error(
            "Gateway validation mismatch for transaction=%s: %s",
            payment.transaction_id,
            mismatches,
        )
        raise IntegrityViolationError(
            {"transaction_id": payment.transaction_id, "mismatches": mismatches}
        )


def _payload(validation: GatewayValidation) -> dict[str, Any]:
    return {
        "validation_status": validation.status,
        "val_id": validation.val_id,
        "gateway": validation.raw,
    }


# ---------------------------------------------------------------------------
# Manual transfers
# ---------------------------------------------------------------------------


async def verify_manual_payment(
    transaction_id: str, approved: bool, admin_id: str
) -> PaymentOutcome:
    """Admin decision on a manual transfer in ``review``.

    The payment is linked to the learner's enrollment for this batch at
    decision time, then the usual cascade applies: approval activates the
    enrollment and assigns its code, rejection marks it payment-failed.
    """
    async with store.transaction() as tx:
        payment = await tx.payments.get_by_transaction_id(transaction_id)
        if payment is None:
            raise NotFoundError("Payment not found")
        if payment.status != PaymentStatus.REVIEW:
            raise ConflictError(
                f"Payment is {payment.status.value}, not awaiting review"
            )

        if payment.enrollment_id is None:
            enrollment = await tx.enrollments.get_for_learner_batch(
                payment.learner_id, payment.batch_id
            )
            if enrollment is None and approved:
                raise NotFoundError("No enrollment found for this payment")
        else:
            enrollment = await tx.enrollments.get(payment.enrollment_id)

        if (
            approved
            and enrollment is not None
            and enrollment.status not in AWAITING_PAYMENT_STATUSES
        ):
            # the seat was paid for (or closed) by another payment
            raise ConflictError(
                f"Enrollment is {enrollment.status.value}; "
                "this payment cannot be approved"
            )
        if payment.enrollment_id is None and enrollment is not None:
            await tx.payments.update(transaction_id, enrollment_id=enrollment.id)

        outcome = await _apply_status(
            tx,
            transaction_id,
            PaymentStatus.SUCCESS if approved else PaymentStatus.FAILED,
            {"decision": "approved" if approved else "rejected"},
            verified_by=admin_id,
        )

    logger.info(
        "Manual payment %s %s by admin=%s",
        transaction_id,
        "approved" if approved else "rejected",
        admin_id,
    )
    await _after_commit(outcome)
    return outcome


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_payment(transaction_id: str) -> Payment:
    async with store.transaction() as tx:
        payment = await tx.payments.get_by_transaction_id(transaction_id)
    if payment is None:
        raise NotFoundError("Payment not found")
    return payment


async def get_payment_history(
    *,
    status: PaymentStatus | None = None,
    method: PaymentMethod | None = None,
    learner_id: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> PaymentPage:
    if page < 1 or not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"page must be >= 1 and limit in 1..{MAX_PAGE_SIZE}")
    async with store.transaction() as tx:
        items, total = await tx.payments.list(
            status=status, method=method, learner_id=learner_id, page=page, limit=limit
        )
    return PaymentPage(items=items, total=total, page=page, limit=limit)
