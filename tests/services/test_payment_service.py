"""Payment ledger: checkout, webhook verification, redirects, reconciliation
and manual review, plus the enrollment cascade each of them triggers."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from app.core.errors import (
    ConflictError,
    ExternalDependencyError,
    IntegrityViolationError,
    ValidationError,
)
from app.db.store import store
from app.models.enrollment import EnrollmentStatus
from app.models.payment import PaymentMethod, PaymentStatus
from app.services import enrollment_service, payment_service
from app.services.enrollment_service import ManualPaymentEvidence
from app.services.gateway import GatewayValidation
from app.services.payment_service import WebhookAck
from tests.conftest import ADMIN, LEARNER, StubGateway, queued_events, seed_catalog


async def _read(fn):
    async with store.transaction() as tx:
        return await fn(tx)


def _enrollment(enrollment_id):
    return asyncio.run(_read(lambda tx: tx.enrollments.get(enrollment_id)))


def _seats(batch_id) -> int:
    return asyncio.run(_read(lambda tx: tx.batches.get(batch_id))).current_enrollment


def _checkout(batch_id, learner: str = LEARNER):
    return asyncio.run(payment_service.start_gateway_checkout(learner, batch_id))


# ---- checkout ----


def test_checkout_records_pending_gateway_payment(gateway: StubGateway) -> None:
    seeded = seed_catalog()
    checkout = _checkout(seeded.batch.id)

    payment = checkout.payment
    assert payment.status == PaymentStatus.PENDING
    assert payment.method == PaymentMethod.GATEWAY
    assert payment.enrollment_id == checkout.enrollment.id
    assert payment.amount == Decimal("1500.00")
    assert checkout.redirect_url.endswith(payment.transaction_id)
    assert gateway.checkouts[0].product_name == seeded.course.title


def test_checkout_again_reuses_enrollment_and_payment(gateway: StubGateway) -> None:
    seeded = seed_catalog()
    first = _checkout(seeded.batch.id)
    second = _checkout(seeded.batch.id)

    assert second.is_existing is True
    assert second.enrollment.id == first.enrollment.id
    assert second.payment.transaction_id == first.payment.transaction_id


def test_checkout_gateway_outage_keeps_payment_pending(gateway: StubGateway) -> None:
    seeded = seed_catalog()
    gateway.fail_with = ExternalDependencyError("Payment gateway timed out")

    with pytest.raises(ExternalDependencyError):
        _checkout(seeded.batch.id)

    page = asyncio.run(payment_service.get_payment_history(learner_id=LEARNER))
    assert page.total == 1
    assert page.items[0].status == PaymentStatus.PENDING


# ---- webhook ----


def test_valid_webhook_activates_enrollment(gateway: StubGateway) -> None:
    seeded = seed_catalog()
    checkout = _checkout(seeded.batch.id)
    txn = checkout.payment.transaction_id
    gateway.approve("val-1", txn)

    result = asyncio.run(payment_service.handle_gateway_notification(txn, "val-1"))

    assert result.ack == WebhookAck.PROCESSED
    assert result.payment.status == PaymentStatus.SUCCESS
    enrollment = _enrollment(checkout.enrollment.id)
    assert enrollment.status == EnrollmentStatus.ACTIVE
    assert enrollment.payment_id == checkout.payment.id
    assert result.payment.enrollment_code == enrollment.enrollment_code
    assert _seats(seeded.batch.id) == 1

    events = [e["event"] for e in queued_events()]
    assert "payment_succeeded" in events
    assert "enrollment_confirmed" in events


def test_webhook_replay_is_acknowledged_without_side_effects(
    gateway: StubGateway,
) -> None:
    seeded = seed_catalog()
    txn = _checkout(seeded.batch.id).payment.transaction_id
    gateway.approve("val-1", txn)

    asyncio.run(payment_service.handle_gateway_notification(txn, "val-1"))
    replay = asyncio.run(payment_service.handle_gateway_notification(txn, "val-1"))

    assert replay.ack == WebhookAck.ALREADY_PROCESSED
    assert gateway.validate_calls == ["val-1"]
    assert _seats(seeded.batch.id) == 1


def test_concurrent_webhooks_count_one_seat(gateway: StubGateway) -> None:
    seeded = seed_catalog()
    txn = _checkout(seeded.batch.id).payment.transaction_id
    gateway.approve("val-1", txn)

    async def both():
        return await asyncio.gather(
            payment_service.handle_gateway_notification(txn, "val-1"),
            payment_service.handle_gateway_notification(txn, "val-1"),
        )

    acks = sorted(r.ack.value for r in asyncio.run(both()))
    assert acks == ["already_processed", "processed"]
    assert _seats(seeded.batch.id) == 1


def test_webhook_amount_mismatch_writes_nothing(gateway: StubGateway) -> None:
    seeded = seed_catalog()
    checkout = _checkout(seeded.batch.id)
    txn = checkout.payment.transaction_id
    gateway.approve("val-1", txn, amount="15.00")

    with pytest.raises(IntegrityViolationError) as excinfo:
        asyncio.run(payment_service.handle_gateway_notification(txn, "val-1"))

    assert "amount" in excinfo.value.details["mismatches"]
    assert asyncio.run(payment_service.get_payment(txn)).status == PaymentStatus.PENDING
    assert _enrollment(checkout.enrollment.id).status == EnrollmentStatus.PENDING
    assert _seats(seeded.batch.id) == 0


def test_webhook_for_another_transaction_is_rejected(gateway: StubGateway) -> None:
    seeded = seed_catalog()
    txn = _checkout(seeded.batch.id).payment.transaction_id
    gateway.approve("val-1", "TXN-0-OTHER")

    with pytest.raises(IntegrityViolationError):
        asyncio.run(payment_service.handle_gateway_notification(txn, "val-1"))


def test_invalid_validation_fails_payment_and_enrollment(gateway: StubGateway) -> None:
    seeded = seed_catalog()
    checkout = _checkout(seeded.batch.id)
    txn = checkout.payment.transaction_id

    result = asyncio.run(payment_service.handle_gateway_notification(txn, "bogus"))

    assert result.ack == WebhookAck.REJECTED
    assert result.payment.status == PaymentStatus.FAILED
    enrollment = _enrollment(checkout.enrollment.id)
    assert enrollment.status == EnrollmentStatus.PAYMENT_FAILED
    assert enrollment.enrollment_code is None


# ---- redirects ----


def test_cancel_redirect_keeps_enrollment_pending(gateway: StubGateway) -> None:
    seeded = seed_catalog()
    checkout = _checkout(seeded.batch.id)
    txn = checkout.payment.transaction_id

    payment = asyncio.run(
        payment_service.record_gateway_redirect(txn, PaymentStatus.CANCEL)
    )

    assert payment.status == PaymentStatus.CANCEL
    assert _enrollment(checkout.enrollment.id).status == EnrollmentStatus.PENDING

    retry = _checkout(seeded.batch.id)
    assert retry.enrollment.id == checkout.enrollment.id
    assert retry.payment.transaction_id != txn


def test_fail_redirect_cannot_undo_a_success(gateway: StubGateway) -> None:
    seeded = seed_catalog()
    txn = _checkout(seeded.batch.id).payment.transaction_id
    gateway.approve("val-1", txn)
    asyncio.run(payment_service.handle_gateway_notification(txn, "val-1"))

    payment = asyncio.run(
        payment_service.record_gateway_redirect(txn, PaymentStatus.FAILED)
    )
    assert payment.status == PaymentStatus.SUCCESS


def test_success_cannot_be_recorded_from_a_redirect(gateway: StubGateway) -> None:
    seeded = seed_catalog()
    txn = _checkout(seeded.batch.id).payment.transaction_id
    with pytest.raises(ValidationError):
        asyncio.run(payment_service.record_gateway_redirect(txn, PaymentStatus.SUCCESS))


def test_illegal_transition_is_conflict(gateway: StubGateway) -> None:
    seeded = seed_catalog()
    txn = _checkout(seeded.batch.id).payment.transaction_id
    asyncio.run(payment_service.apply_payment_status(txn, PaymentStatus.CANCEL))

    with pytest.raises(ConflictError):
        asyncio.run(payment_service.apply_payment_status(txn, PaymentStatus.SUCCESS))


# ---- status check ----


def test_status_check_applies_captured_payment(gateway: StubGateway) -> None:
    seeded = seed_catalog()
    checkout = _checkout(seeded.batch.id)
    txn = checkout.payment.transaction_id
    gateway.records[txn] = GatewayValidation(
        status="VALIDATED", transaction_id=txn, amount=Decimal("1500"), currency="BDT"
    )

    outcome = asyncio.run(payment_service.check_payment_status(txn))

    assert outcome.applied is True
    assert outcome.payment.status == PaymentStatus.SUCCESS
    assert outcome.enrollment.status == EnrollmentStatus.ACTIVE


def test_status_check_with_nothing_new_changes_nothing(gateway: StubGateway) -> None:
    seeded = seed_catalog()
    txn = _checkout(seeded.batch.id).payment.transaction_id
    gateway.records[txn] = GatewayValidation(
        status="PENDING", transaction_id=txn, amount=None, currency=None
    )

    outcome = asyncio.run(payment_service.check_payment_status(txn))
    assert outcome.applied is False
    assert outcome.payment.status == PaymentStatus.PENDING


def test_status_check_applies_gateway_failure(gateway: StubGateway) -> None:
    seeded = seed_catalog()
    txn = _checkout(seeded.batch.id).payment.transaction_id
    gateway.records[txn] = GatewayValidation(
        status="FAILED", transaction_id=txn, amount=None, currency=None
    )

    outcome = asyncio.run(payment_service.check_payment_status(txn))
    assert outcome.payment.status == PaymentStatus.FAILED
    assert outcome.enrollment.status == EnrollmentStatus.PAYMENT_FAILED


# ---- manual review ----


def _manual(batch_id):
    return asyncio.run(
        enrollment_service.enroll_with_manual_payment(
            LEARNER,
            batch_id,
            ManualPaymentEvidence(
                sender_reference="01711111111", external_transaction_id="BK-1"
            ),
        )
    )


def test_approving_manual_payment_activates_enrollment() -> None:
    seeded = seed_catalog()
    manual = _manual(seeded.batch.id)

    outcome = asyncio.run(
        payment_service.verify_manual_payment(manual.transaction_id, True, ADMIN)
    )

    assert outcome.payment.status == PaymentStatus.SUCCESS
    assert outcome.payment.verified_by == ADMIN
    assert outcome.payment.enrollment_id == manual.enrollment.id
    assert outcome.enrollment.status == EnrollmentStatus.ACTIVE
    assert outcome.payment.enrollment_code == outcome.enrollment.enrollment_code
    assert _seats(seeded.batch.id) == 1


def test_rejecting_manual_payment_fails_enrollment() -> None:
    seeded = seed_catalog()
    manual = _manual(seeded.batch.id)

    outcome = asyncio.run(
        payment_service.verify_manual_payment(manual.transaction_id, False, ADMIN)
    )

    assert outcome.payment.status == PaymentStatus.FAILED
    assert _enrollment(manual.enrollment.id).status == EnrollmentStatus.PAYMENT_FAILED
    assert _seats(seeded.batch.id) == 0


def test_manual_payment_is_decided_once() -> None:
    seeded = seed_catalog()
    manual = _manual(seeded.batch.id)
    asyncio.run(payment_service.verify_manual_payment(manual.transaction_id, True, ADMIN))

    with pytest.raises(ConflictError, match="not awaiting review"):
        asyncio.run(
            payment_service.verify_manual_payment(manual.transaction_id, False, ADMIN)
        )


# ---- history ----


def test_history_filters_and_paginates(gateway: StubGateway) -> None:
    for index in range(3):
        seeded = seed_catalog(slug=f"course-{index}")
        _checkout(seeded.batch.id)
    seeded = seed_catalog(slug="manual-course")
    _manual(seeded.batch.id)

    page = asyncio.run(payment_service.get_payment_history(page=1, limit=2))
    assert page.total == 4
    assert len(page.items) == 2

    manual = asyncio.run(
        payment_service.get_payment_history(method=PaymentMethod.MANUAL_TRANSFER)
    )
    assert [p.status for p in manual.items] == [PaymentStatus.REVIEW]


def test_history_rejects_oversized_pages() -> None:
    with pytest.raises(ValidationError):
        asyncio.run(payment_service.get_payment_history(limit=1000))


def test_gateway_attempt_needs_an_open_enrollment(gateway: StubGateway) -> None:
    seeded = seed_catalog()
    pending = asyncio.run(
        enrollment_service.initiate_enrollment(LEARNER, seeded.batch.id)
    ).enrollment

    attempt = asyncio.run(payment_service.record_gateway_attempt(pending.id))
    assert attempt.enrollment_id == pending.id
    assert attempt.status == PaymentStatus.PENDING

    asyncio.run(enrollment_service.confirm_enrollment(pending.id, attempt.id))
    with pytest.raises(ConflictError, match="no payment is expected"):
        asyncio.run(payment_service.record_gateway_attempt(pending.id))


def test_webhook_currency_mismatch_writes_nothing(gateway: StubGateway) -> None:
    seeded = seed_catalog()
    checkout = _checkout(seeded.batch.id)
    txn = checkout.payment.transaction_id
    gateway.approve("val-1", txn, currency="USD")

    with pytest.raises(IntegrityViolationError) as excinfo:
        asyncio.run(payment_service.handle_gateway_notification(txn, "val-1"))

    assert "currency" in excinfo.value.details["mismatches"]
    assert asyncio.run(payment_service.get_payment(txn)).status == PaymentStatus.PENDING
    assert _enrollment(checkout.enrollment.id).status == EnrollmentStatus.PENDING
    assert _seats(seeded.batch.id) == 0


def test_webhook_cannot_settle_a_manual_transfer(gateway: StubGateway) -> None:
    seeded = seed_catalog()
    manual = _manual(seeded.batch.id)

    result = asyncio.run(
        payment_service.handle_gateway_notification(manual.transaction_id, "bogus")
    )

    assert result.ack == WebhookAck.REJECTED
    assert gateway.validate_calls == []
    payment = asyncio.run(payment_service.get_payment(manual.transaction_id))
    assert payment.status == PaymentStatus.REVIEW
    assert _enrollment(manual.enrollment.id).status == EnrollmentStatus.PAYMENT_PENDING

    outcome = asyncio.run(
        payment_service.verify_manual_payment(manual.transaction_id, True, ADMIN)
    )
    assert outcome.enrollment.status == EnrollmentStatus.ACTIVE


def test_no_gateway_checkout_while_manual_payment_is_in_review(
    gateway: StubGateway,
) -> None:
    seeded = seed_catalog()
    _manual(seeded.batch.id)

    with pytest.raises(ConflictError, match="awaiting verification"):
        _checkout(seeded.batch.id)

    page = asyncio.run(payment_service.get_payment_history(learner_id=LEARNER))
    assert [p.method for p in page.items] == [PaymentMethod.MANUAL_TRANSFER]
    assert gateway.checkouts == []


def test_manual_payment_cannot_be_approved_for_a_paid_seat() -> None:
    seeded = seed_catalog()
    manual = _manual(seeded.batch.id)
    asyncio.run(
        enrollment_service.confirm_enrollment(
            manual.enrollment.id, None, PaymentMethod.MANUAL_TRANSFER
        )
    )

    with pytest.raises(ConflictError, match="cannot be approved"):
        asyncio.run(
            payment_service.verify_manual_payment(manual.transaction_id, True, ADMIN)
        )

    payment = asyncio.run(payment_service.get_payment(manual.transaction_id))
    assert payment.status == PaymentStatus.REVIEW
    assert _seats(seeded.batch.id) == 1
