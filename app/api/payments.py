"""Payment endpoints.

Gateway-facing (unauthenticated, form-encoded like the gateway sends them):
  POST /v1/payments/ipn        server-to-server notification
  POST /v1/payments/success    browser redirect after a successful payment
  POST /v1/payments/fail       browser redirect after a failed payment
  POST /v1/payments/cancel     browser redirect after the learner cancelled

Neither redirects nor the IPN are trusted on their own: success is only
applied after the gateway's validation API confirms it, and fail/cancel
can only close a payment that is still pending.

Authenticated:
  GET  /v1/payments/me                    own payment history
  GET  /v1/payments/history               admin: filtered, paginated
  GET  /v1/payments/{txn}                 one payment (owner or admin)
  POST /v1/payments/{txn}/status-check    reconcile against the gateway
  POST /v1/payments/{txn}/verify          admin: approve/reject manual transfer
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Form, Query
from pydantic import BaseModel

from app.api.dependencies import AdminUser, CurrentUser, learner_scope
from app.api.schemas import EnrollmentOut, PaymentOut
from app.core.errors import NotFoundError
from app.models.payment import Payment, PaymentMethod, PaymentStatus
from app.models.principal import Principal
from app.services import payment_service
from app.services.payment_service import PaymentOutcome, PaymentPage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/payments", tags=["payments"])


class WebhookOut(BaseModel):
    status: str
    transaction_id: str
    payment_status: str


class OutcomeOut(BaseModel):
    payment: PaymentOut
    enrollment: EnrollmentOut | None
    applied: bool


class VerifyIn(BaseModel):
    approved: bool


class PaymentPageOut(BaseModel):
    items: list[PaymentOut]
    total: int
    page: int
    limit: int


def _outcome(outcome: PaymentOutcome) -> OutcomeOut:
    return OutcomeOut(
        payment=PaymentOut.model_validate(outcome.payment),
        enrollment=(
            EnrollmentOut.model_validate(outcome.enrollment)
            if outcome.enrollment
            else None
        ),
        applied=outcome.applied,
    )


def _page(page: PaymentPage) -> PaymentPageOut:
    return PaymentPageOut(
        items=[PaymentOut.model_validate(p) for p in page.items],
        total=page.total,
        page=page.page,
        limit=page.limit,
    )


async def _owned_payment(transaction_id: str, principal: Principal) -> Payment:
    payment = await payment_service.get_payment(transaction_id)
    scope = learner_scope(principal)
    if scope is not None and payment.learner_id != scope:
        # same answer as a missing payment: ids are not probeable
        raise NotFoundError("Payment not found")
    return payment


# ---------------------------------------------------------------------------
# Gateway callbacks
# ---------------------------------------------------------------------------


@router.post("/ipn", response_model=WebhookOut)
async def gateway_ipn(
    tran_id: Annotated[str, Form()],
    val_id: Annotated[str, Form()],
) -> WebhookOut:
    result = await payment_service.handle_gateway_notification(tran_id, val_id)
    return WebhookOut(
        status=result.ack.value,
        transaction_id=tran_id,
        payment_status=result.payment.status.value,
    )


@router.post("/success", response_model=WebhookOut)
async def gateway_success(
    tran_id: Annotated[str, Form()],
    val_id: Annotated[str, Form()],
) -> WebhookOut:
    result = await payment_service.handle_gateway_notification(tran_id, val_id)
    return WebhookOut(
        status=result.ack.value,
        transaction_id=tran_id,
        payment_status=result.payment.status.value,
    )


@router.post("/fail", response_model=PaymentOut)
async def gateway_fail(tran_id: Annotated[str, Form()]) -> PaymentOut:
    payment = await payment_service.record_gateway_redirect(
        tran_id, PaymentStatus.FAILED
    )
    return PaymentOut.model_validate(payment)


@router.post("/cancel", response_model=PaymentOut)
async def gateway_cancel(tran_id: Annotated[str, Form()]) -> PaymentOut:
    payment = await payment_service.record_gateway_redirect(
        tran_id, PaymentStatus.CANCEL
    )
    return PaymentOut.model_validate(payment)


# ---------------------------------------------------------------------------
# Authenticated
# ---------------------------------------------------------------------------


@router.get("/me", response_model=PaymentPageOut)
async def my_payments(
    principal: CurrentUser,
    page: int = 1,
    limit: int = 10,
) -> PaymentPageOut:
    result = await payment_service.get_payment_history(
        learner_id=principal.user_id, page=page, limit=limit
    )
    return _page(result)


@router.get("/history", response_model=PaymentPageOut)
async def payment_history(
    _admin: AdminUser,
    status_filter: Annotated[PaymentStatus | None, Query(alias="status")] = None,
    method: PaymentMethod | None = None,
    learner_id: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> PaymentPageOut:
    result = await payment_service.get_payment_history(
        status=status_filter,
        method=method,
        learner_id=learner_id,
        page=page,
        limit=limit,
    )
    return _page(result)


@router.get("/{transaction_id}", response_model=PaymentOut)
async def get_payment(transaction_id: str, principal: CurrentUser) -> PaymentOut:
    payment = await _owned_payment(transaction_id, principal)
    return PaymentOut.model_validate(payment)


@router.post("/{transaction_id}/status-check", response_model=OutcomeOut)
async def status_check(transaction_id: str, principal: CurrentUser) -> OutcomeOut:
    await _owned_payment(transaction_id, principal)
    outcome = await payment_service.check_payment_status(transaction_id)
    return _outcome(outcome)


@router.post("/{transaction_id}/verify", response_model=OutcomeOut)
async def verify_manual(
    transaction_id: str, body: VerifyIn, admin: AdminUser
) -> OutcomeOut:
    outcome = await payment_service.verify_manual_payment(
        transaction_id, body.approved, admin.user_id
    )
    return _outcome(outcome)
