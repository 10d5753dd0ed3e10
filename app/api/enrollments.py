"""Enrollment endpoints.

  POST  /v1/enrollments                 start (or resume) a pending enrollment
  POST  /v1/enrollments/checkout        same, plus a gateway redirect URL
  POST  /v1/enrollments/manual          enroll with manual-transfer evidence
  GET   /v1/enrollments/me              own enrollments with progress summary
  GET   /v1/enrollments/profile         own denormalized student profile
  GET   /v1/enrollments/{id}            one enrollment (owner or admin)
  POST  /v1/enrollments/{id}/confirm    admin: activate after payment
  PATCH /v1/enrollments/{id}/status     admin: suspend / reinstate / complete

The learner id always comes from the bearer token, never from the body.
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query, Response, status
from pydantic import BaseModel

from app.api.dependencies import AdminUser, CurrentUser, learner_scope
from app.api.schemas import BatchOut, EnrollmentOut, PaymentOut
from app.core.errors import NotFoundError
from app.models.enrollment import EnrollmentStatus
from app.models.payment import PaymentMethod
from app.services import enrollment_service, payment_service, profile_service
from app.services.enrollment_service import EnrollmentView, ManualPaymentEvidence

router = APIRouter(prefix="/v1/enrollments", tags=["enrollments"])


class EnrollIn(BaseModel):
    batch_id: UUID


class ManualEnrollIn(BaseModel):
    batch_id: UUID
    sender_reference: str
    external_transaction_id: str


class ConfirmIn(BaseModel):
    payment_id: UUID | None = None
    method: PaymentMethod = PaymentMethod.GATEWAY


class StatusUpdateIn(BaseModel):
    status: EnrollmentStatus
    reason: str | None = None


class InitiationOut(BaseModel):
    enrollment: EnrollmentOut
    batch: BatchOut
    is_existing: bool


class CheckoutOut(BaseModel):
    enrollment: EnrollmentOut
    transaction_id: str
    redirect_url: str
    is_existing: bool


class ManualEnrollmentOut(BaseModel):
    enrollment: EnrollmentOut
    payment: PaymentOut
    transaction_id: str


class ProgressSummaryOut(BaseModel):
    total_modules: int
    completed_modules: int
    overall_progress: int


class EnrollmentDetailOut(BaseModel):
    enrollment: EnrollmentOut
    batch: BatchOut | None
    progress: ProgressSummaryOut


class ProfileOut(BaseModel):
    learner_id: str
    enrollment_codes: list[str]
    batch_ids: list[str]
    last_enrolled_at: str | None


def _detail(view: EnrollmentView) -> EnrollmentDetailOut:
    return EnrollmentDetailOut(
        enrollment=EnrollmentOut.model_validate(view.enrollment),
        batch=BatchOut.model_validate(view.batch) if view.batch else None,
        progress=ProgressSummaryOut(
            total_modules=view.progress.total_modules,
            completed_modules=view.progress.completed_modules,
            overall_progress=view.progress.overall_progress,
        ),
    )


@router.post("", response_model=InitiationOut)
async def initiate(
    body: EnrollIn, principal: CurrentUser, response: Response
) -> InitiationOut:
    result = await enrollment_service.initiate_enrollment(
        principal.user_id, body.batch_id
    )
    response.status_code = (
        status.HTTP_200_OK if result.is_existing else status.HTTP_201_CREATED
    )
    return InitiationOut(
        enrollment=EnrollmentOut.model_validate(result.enrollment),
        batch=BatchOut.model_validate(result.batch),
        is_existing=result.is_existing,
    )


@router.post("/checkout", response_model=CheckoutOut)
async def checkout(body: EnrollIn, principal: CurrentUser) -> CheckoutOut:
    result = await payment_service.start_gateway_checkout(
        principal.user_id, body.batch_id
    )
    return CheckoutOut(
        enrollment=EnrollmentOut.model_validate(result.enrollment),
        transaction_id=result.payment.transaction_id,
        redirect_url=result.redirect_url,
        is_existing=result.is_existing,
    )


@router.post(
    "/manual",
    response_model=ManualEnrollmentOut,
    status_code=status.HTTP_201_CREATED,
)
async def enroll_manual(
    body: ManualEnrollIn, principal: CurrentUser
) -> ManualEnrollmentOut:
    result = await enrollment_service.enroll_with_manual_payment(
        principal.user_id,
        body.batch_id,
        ManualPaymentEvidence(
            sender_reference=body.sender_reference,
            external_transaction_id=body.external_transaction_id,
        ),
    )
    return ManualEnrollmentOut(
        enrollment=EnrollmentOut.model_validate(result.enrollment),
        payment=PaymentOut.model_validate(result.payment),
        transaction_id=result.transaction_id,
    )


@router.get("/me", response_model=list[EnrollmentDetailOut])
async def my_enrollments(
    principal: CurrentUser,
    status_filter: Annotated[EnrollmentStatus | None, Query(alias="status")] = None,
) -> list[EnrollmentDetailOut]:
    views = await enrollment_service.get_user_enrollments(
        principal.user_id, status_filter
    )
    return [_detail(v) for v in views]


@router.get("/profile", response_model=ProfileOut)
async def my_profile(principal: CurrentUser) -> ProfileOut:
    profile = await profile_service.get_student_profile(principal.user_id)
    if profile is None:
        raise NotFoundError("No profile yet; it is created on first activation")
    return ProfileOut(
        learner_id=profile.learner_id,
        enrollment_codes=list(profile.enrollment_codes),
        batch_ids=list(profile.batch_ids),
        last_enrolled_at=(
            profile.last_enrolled_at.isoformat() if profile.last_enrolled_at else None
        ),
    )


@router.get("/{enrollment_id}", response_model=EnrollmentDetailOut)
async def get_enrollment(
    enrollment_id: UUID, principal: CurrentUser
) -> EnrollmentDetailOut:
    view = await enrollment_service.get_enrollment_details(
        enrollment_id, learner_scope(principal)
    )
    return _detail(view)


@router.post("/{enrollment_id}/confirm", response_model=EnrollmentOut)
async def confirm(
    enrollment_id: UUID, body: ConfirmIn, _admin: AdminUser
) -> EnrollmentOut:
    enrollment = await enrollment_service.confirm_enrollment(
        enrollment_id, body.payment_id, body.method
    )
    return EnrollmentOut.model_validate(enrollment)


@router.patch("/{enrollment_id}/status", response_model=EnrollmentOut)
async def update_status(
    enrollment_id: UUID, body: StatusUpdateIn, admin: AdminUser
) -> EnrollmentOut:
    enrollment = await enrollment_service.update_enrollment_status(
        enrollment_id, body.status, reason=body.reason, changed_by=admin.user_id
    )
    return EnrollmentOut.model_validate(enrollment)
