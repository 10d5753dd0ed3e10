from __future__ import annotations

import datetime
import secrets
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from typing import Any
from uuid import UUID, uuid4


class PaymentStatus(StrEnum):
    PENDING = "pending"
    REVIEW = "review"
    SUCCESS = "success"
    FAILED = "failed"
    CANCEL = "cancel"


class PaymentMethod(StrEnum):
    GATEWAY = "gateway"
    MANUAL_TRANSFER = "manual-transfer"


PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {
            PaymentStatus.SUCCESS,
            PaymentStatus.FAILED,
            PaymentStatus.CANCEL,
        }
    ),
    PaymentStatus.REVIEW: frozenset({PaymentStatus.SUCCESS, PaymentStatus.FAILED}),
    PaymentStatus.SUCCESS: frozenset(),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCEL: frozenset(),
}

TERMINAL_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.SUCCESS, PaymentStatus.FAILED, PaymentStatus.CANCEL}
)


def generate_transaction_id() -> str:
    """TXN-<epoch millis>-<8 hex>: sortable by creation, unguessable suffix."""
    return f"TXN-{int(time.time() * 1000)}-{secrets.token_hex(4).upper()}"


@dataclass(frozen=True, slots=True)
class Payment:
    """One payment attempt, keyed by its transaction id.

    Gateway attempts link ``enrollment_id`` at creation.  Manual-transfer
    attempts leave it empty until an admin approves them.
    """

    id: UUID
    transaction_id: str
    learner_id: str
    batch_id: UUID
    amount: Decimal
    currency: str
    method: PaymentMethod
    status: PaymentStatus
    created_at: datetime.datetime
    enrollment_id: UUID | None = None
    enrollment_code: str | None = None
    gateway_response: dict[str, Any] = field(default_factory=dict)
    verified_at: datetime.datetime | None = None
    verified_by: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PAYMENT_STATUSES

    @staticmethod
    def new(
        *,
        learner_id: str,
        batch_id: UUID,
        amount: Decimal,
        currency: str,
        method: PaymentMethod,
        status: PaymentStatus = PaymentStatus.PENDING,
        enrollment_id: UUID | None = None,
        gateway_response: dict[str, Any] | None = None,
    ) -> Payment:
        return Payment(
            id=uuid4(),
            transaction_id=generate_transaction_id(),
            learner_id=learner_id,
            batch_id=batch_id,
            amount=amount,
            currency=currency,
            method=method,
            status=status,
            created_at=datetime.datetime.now(datetime.UTC),
            enrollment_id=enrollment_id,
            gateway_response=dict(gateway_response or {}),
        )
