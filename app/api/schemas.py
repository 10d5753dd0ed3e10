"""Response schemas shared by several routers.

Domain objects are frozen dataclasses; these pydantic models are the
wire shape.  ``from_attributes`` lets each route hand the dataclass
straight to ``model_validate``.
"""

from __future__ import annotations

import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class _Out(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class BatchOut(_Out):
    id: UUID
    course_id: UUID
    title: str
    batch_number: int
    start_date: datetime.datetime
    end_date: datetime.datetime
    enrollment_start_date: datetime.datetime
    enrollment_end_date: datetime.datetime
    price: Decimal
    currency: str
    current_enrollment: int
    status: str


class EnrollmentOut(_Out):
    id: UUID
    learner_id: str
    batch_id: UUID
    status: str
    created_at: datetime.datetime
    enrollment_code: str | None
    payment_id: UUID | None
    enrolled_at: datetime.datetime | None
    completed_at: datetime.datetime | None
    certificate_issued: bool
    status_reason: str | None


class PaymentOut(_Out):
    """Payment as seen by its owner and admins.

    The raw gateway payload stays server-side.
    """

    id: UUID
    transaction_id: str
    learner_id: str
    batch_id: UUID
    enrollment_id: UUID | None
    enrollment_code: str | None
    amount: Decimal
    currency: str
    method: str
    status: str
    created_at: datetime.datetime
    verified_at: datetime.datetime | None
    verified_by: str | None
