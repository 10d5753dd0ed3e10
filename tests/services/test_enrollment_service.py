"""Enrollment state machine: creation, confirmation, admin changes, reads."""

from __future__ import annotations

import asyncio
import datetime
import uuid

import pytest

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.db.store import store
from app.models.batch import BatchStatus
from app.models.enrollment import EnrollmentStatus
from app.models.payment import PaymentMethod, PaymentStatus
from app.models.progress import ModuleProgressStatus
from app.services import enrollment_service
from app.services.enrollment_service import ManualPaymentEvidence
from tests.conftest import LEARNER, add_batch, queued_events, seed_catalog

EVIDENCE = ManualPaymentEvidence(
    sender_reference="01711111111", external_transaction_id="BKASH-8842"
)


async def _read(fn):
    async with store.transaction() as tx:
        return await fn(tx)


def _batch(batch_id):
    return asyncio.run(_read(lambda tx: tx.batches.get(batch_id)))


def _modules(enrollment_id):
    return asyncio.run(_read(lambda tx: tx.progress.list_module_progress(enrollment_id)))


# ---- initiation ----


def test_initiate_creates_pending_enrollment_without_code() -> None:
    seeded = seed_catalog()
    result = asyncio.run(enrollment_service.initiate_enrollment(LEARNER, seeded.batch.id))

    assert result.is_existing is False
    assert result.enrollment.status == EnrollmentStatus.PENDING
    assert result.enrollment.enrollment_code is None
    assert result.batch.id == seeded.batch.id


def test_initiate_twice_returns_the_same_enrollment() -> None:
    seeded = seed_catalog()
    first = asyncio.run(enrollment_service.initiate_enrollment(LEARNER, seeded.batch.id))
    second = asyncio.run(enrollment_service.initiate_enrollment(LEARNER, seeded.batch.id))

    assert second.is_existing is True
    assert second.enrollment.id == first.enrollment.id


def test_initiate_unknown_batch_is_not_found() -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(enrollment_service.initiate_enrollment(LEARNER, uuid.uuid4()))


def test_initiate_rejects_draft_batch() -> None:
    seeded = seed_catalog(status=BatchStatus.DRAFT)
    with pytest.raises(ValidationError, match="not accepting"):
        asyncio.run(enrollment_service.initiate_enrollment(LEARNER, seeded.batch.id))


def test_initiate_rejects_closed_enrollment_window() -> None:
    seeded = seed_catalog(enrollment_closes_in=datetime.timedelta(days=-1))
    with pytest.raises(ValidationError, match="Enrollment period has ended"):
        asyncio.run(enrollment_service.initiate_enrollment(LEARNER, seeded.batch.id))


def test_one_live_enrollment_per_course() -> None:
    seeded = seed_catalog()
    other = add_batch(seeded.course.id, batch_number=8)
    asyncio.run(enrollment_service.initiate_enrollment(LEARNER, seeded.batch.id))

    with pytest.raises(ConflictError, match="one batch at a time"):
        asyncio.run(enrollment_service.initiate_enrollment(LEARNER, other.id))


def test_concurrent_initiations_for_one_course_keep_one_live_enrollment() -> None:
    seeded = seed_catalog()
    other = add_batch(seeded.course.id, batch_number=8)

    async def both():
        return await asyncio.gather(
            enrollment_service.initiate_enrollment(LEARNER, seeded.batch.id),
            enrollment_service.initiate_enrollment(LEARNER, other.id),
            return_exceptions=True,
        )

    results = asyncio.run(both())
    conflicts = [r for r in results if isinstance(r, ConflictError)]
    assert len(conflicts) == 1

    async def live():
        async with store.transaction() as tx:
            return await tx.enrollments.list_by_learner(LEARNER)

    assert len(asyncio.run(live())) == 1


def test_finished_batch_does_not_block_a_new_one() -> None:
    seeded = seed_catalog()
    old = add_batch(seeded.course.id, batch_number=3, status=BatchStatus.RUNNING)
    first = asyncio.run(enrollment_service.initiate_enrollment(LEARNER, old.id))
    asyncio.run(enrollment_service.confirm_enrollment(first.enrollment.id, None))
    asyncio.run(enrollment_service.update_enrollment_status(
        first.enrollment.id, EnrollmentStatus.COMPLETED
    ))

    result = asyncio.run(enrollment_service.initiate_enrollment(LEARNER, seeded.batch.id))
    assert result.is_existing is False


# ---- manual transfer ----


def test_manual_enrollment_creates_review_payment() -> None:
    seeded = seed_catalog()
    result = asyncio.run(
        enrollment_service.enroll_with_manual_payment(LEARNER, seeded.batch.id, EVIDENCE)
    )

    assert result.enrollment.status == EnrollmentStatus.PAYMENT_PENDING
    assert result.enrollment.enrollment_code is None
    assert result.payment.status == PaymentStatus.REVIEW
    assert result.payment.method == PaymentMethod.MANUAL_TRANSFER
    assert result.payment.amount == seeded.batch.price
    assert result.payment.enrollment_id is None
    assert result.payment.gateway_response["external_transaction_id"] == "BKASH-8842"
    assert result.transaction_id.startswith("TXN-")

    events = [e["event"] for e in queued_events()]
    assert events == ["waiting_verification", "payment_under_review"]


def test_manual_enrollment_requires_evidence() -> None:
    seeded = seed_catalog()
    blank = ManualPaymentEvidence(sender_reference=" ", external_transaction_id="X")
    with pytest.raises(ValidationError):
        asyncio.run(
            enrollment_service.enroll_with_manual_payment(LEARNER, seeded.batch.id, blank)
        )


def test_manual_enrollment_while_pending_is_conflict() -> None:
    seeded = seed_catalog()
    asyncio.run(
        enrollment_service.enroll_with_manual_payment(LEARNER, seeded.batch.id, EVIDENCE)
    )
    with pytest.raises(ConflictError, match="pending enrollment"):
        asyncio.run(
            enrollment_service.enroll_with_manual_payment(
                LEARNER, seeded.batch.id, EVIDENCE
            )
        )


# ---- confirmation ----


def test_confirm_activates_assigns_code_and_counts_the_seat() -> None:
    seeded = seed_catalog()
    pending = asyncio.run(
        enrollment_service.initiate_enrollment(LEARNER, seeded.batch.id)
    ).enrollment

    active = asyncio.run(enrollment_service.confirm_enrollment(pending.id, None))

    year = datetime.datetime.now(datetime.UTC).year
    assert active.status == EnrollmentStatus.ACTIVE
    assert active.enrollment_code == f"MA-7{year}00001"
    assert active.enrolled_at is not None
    assert _batch(seeded.batch.id).current_enrollment == 1

    modules = {m.module_id: m for m in _modules(pending.id)}
    assert modules[seeded.modules[0].id].status == ModuleProgressStatus.UNLOCKED
    assert modules[seeded.modules[1].id].status == ModuleProgressStatus.LOCKED


def test_confirm_twice_counts_one_seat() -> None:
    seeded = seed_catalog()
    pending = asyncio.run(
        enrollment_service.initiate_enrollment(LEARNER, seeded.batch.id)
    ).enrollment

    first = asyncio.run(enrollment_service.confirm_enrollment(pending.id, None))
    second = asyncio.run(enrollment_service.confirm_enrollment(pending.id, None))

    assert second.enrollment_code == first.enrollment_code
    assert _batch(seeded.batch.id).current_enrollment == 1
    assert len(_modules(pending.id)) == 2


def test_codes_follow_the_batch_sequence() -> None:
    seeded = seed_catalog()
    codes = []
    for learner in ("a", "b", "c"):
        pending = asyncio.run(
            enrollment_service.initiate_enrollment(learner, seeded.batch.id)
        ).enrollment
        codes.append(
            asyncio.run(enrollment_service.confirm_enrollment(pending.id, None)).enrollment_code
        )

    assert [c[-5:] for c in codes] == ["00001", "00002", "00003"]


def test_confirm_sends_enrollment_confirmed_and_builds_profile() -> None:
    seeded = seed_catalog()
    pending = asyncio.run(
        enrollment_service.initiate_enrollment(LEARNER, seeded.batch.id)
    ).enrollment
    active = asyncio.run(enrollment_service.confirm_enrollment(pending.id, None))

    confirmed = [e for e in queued_events() if e["event"] == "enrollment_confirmed"]
    assert confirmed[0]["enrollment_code"] == active.enrollment_code

    profile = asyncio.run(_read(lambda tx: tx.profiles.get(LEARNER)))
    assert profile.enrollment_codes == (active.enrollment_code,)


# ---- admin status changes ----


def test_admin_can_suspend_and_reinstate() -> None:
    seeded = seed_catalog()
    pending = asyncio.run(
        enrollment_service.initiate_enrollment(LEARNER, seeded.batch.id)
    ).enrollment
    asyncio.run(enrollment_service.confirm_enrollment(pending.id, None))

    suspended = asyncio.run(
        enrollment_service.update_enrollment_status(
            pending.id, EnrollmentStatus.SUSPENDED, reason="chargeback", changed_by="admin"
        )
    )
    assert suspended.status == EnrollmentStatus.SUSPENDED
    assert suspended.status_reason == "chargeback"

    reinstated = asyncio.run(
        enrollment_service.update_enrollment_status(pending.id, EnrollmentStatus.ACTIVE)
    )
    assert reinstated.status == EnrollmentStatus.ACTIVE


def test_admin_cannot_activate_unpaid_enrollment() -> None:
    seeded = seed_catalog()
    pending = asyncio.run(
        enrollment_service.initiate_enrollment(LEARNER, seeded.batch.id)
    ).enrollment
    with pytest.raises(ConflictError):
        asyncio.run(
            enrollment_service.update_enrollment_status(pending.id, EnrollmentStatus.ACTIVE)
        )


# ---- reads ----


def test_details_are_scoped_to_the_owner() -> None:
    seeded = seed_catalog()
    pending = asyncio.run(
        enrollment_service.initiate_enrollment(LEARNER, seeded.batch.id)
    ).enrollment

    view = asyncio.run(enrollment_service.get_enrollment_details(pending.id, LEARNER))
    assert view.batch.id == seeded.batch.id
    assert view.progress.total_modules == 0

    with pytest.raises(NotFoundError):
        asyncio.run(enrollment_service.get_enrollment_details(pending.id, "someone-else"))


def test_user_enrollments_filter_by_status() -> None:
    seeded = seed_catalog()
    other = seed_catalog(slug="data-science")
    first = asyncio.run(
        enrollment_service.initiate_enrollment(LEARNER, seeded.batch.id)
    ).enrollment
    asyncio.run(enrollment_service.initiate_enrollment(LEARNER, other.batch.id))
    asyncio.run(enrollment_service.confirm_enrollment(first.id, None))

    everything = asyncio.run(enrollment_service.get_user_enrollments(LEARNER))
    active = asyncio.run(
        enrollment_service.get_user_enrollments(LEARNER, EnrollmentStatus.ACTIVE)
    )
    assert len(everything) == 2
    assert [v.enrollment.id for v in active] == [first.id]
    assert active[0].progress.total_modules == 2
