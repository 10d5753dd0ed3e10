"""Certificate endpoints.

  GET  /v1/certificates/eligibility/{enrollment_id}   can this enrollment get one?
  POST /v1/certificates/request                       learner request (pending)
  GET  /v1/certificates/enrollment/{enrollment_id}    owner or admin
  POST /v1/certificates/{code}/approve                admin: pending -> active
  POST /v1/certificates/issue                         admin: issue directly
  GET  /v1/certificates/verify/{code}                 public, active only
"""

from __future__ import annotations

import datetime
from uuid import UUID

from fastapi import APIRouter, status
from pydantic import BaseModel, ConfigDict

from app.api.dependencies import AdminUser, CurrentUser, learner_scope
from app.services import certificate_service, enrollment_service

router = APIRouter(prefix="/v1/certificates", tags=["certificates"])


class CertificateRequestIn(BaseModel):
    enrollment_id: UUID


class CertificateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    certificate_code: str
    enrollment_id: UUID
    learner_id: str
    course_id: UUID
    status: str
    requested_at: datetime.datetime
    issued_at: datetime.datetime | None
    approved_by: str | None
    verification_url: str | None


class EligibilityOut(BaseModel):
    enrollment_id: UUID
    eligible: bool


class VerificationOut(BaseModel):
    certificate_code: str
    course_id: UUID
    issued_at: datetime.datetime | None
    valid: bool


@router.get("/eligibility/{enrollment_id}", response_model=EligibilityOut)
async def eligibility(enrollment_id: UUID, principal: CurrentUser) -> EligibilityOut:
    await enrollment_service.get_enrollment_details(
        enrollment_id, learner_scope(principal)
    )
    eligible = await certificate_service.check_certificate_eligibility(enrollment_id)
    return EligibilityOut(enrollment_id=enrollment_id, eligible=eligible)


@router.post(
    "/request",
    response_model=CertificateOut,
    status_code=status.HTTP_201_CREATED,
)
async def request_certificate(
    body: CertificateRequestIn, principal: CurrentUser
) -> CertificateOut:
    certificate = await certificate_service.request_certificate(
        body.enrollment_id, principal.user_id
    )
    return CertificateOut.model_validate(certificate)


@router.get("/enrollment/{enrollment_id}", response_model=CertificateOut)
async def by_enrollment(enrollment_id: UUID, principal: CurrentUser) -> CertificateOut:
    certificate = await certificate_service.get_certificate_by_enrollment(
        enrollment_id, learner_scope(principal)
    )
    return CertificateOut.model_validate(certificate)


@router.post("/{certificate_code}/approve", response_model=CertificateOut)
async def approve(certificate_code: str, admin: AdminUser) -> CertificateOut:
    certificate = await certificate_service.approve_certificate(
        certificate_code, admin.user_id
    )
    return CertificateOut.model_validate(certificate)


@router.post(
    "/issue",
    response_model=CertificateOut,
    status_code=status.HTTP_201_CREATED,
)
async def issue(body: CertificateRequestIn, admin: AdminUser) -> CertificateOut:
    certificate = await certificate_service.issue_certificate(
        body.enrollment_id, admin.user_id
    )
    return CertificateOut.model_validate(certificate)


@router.get("/verify/{certificate_code}", response_model=VerificationOut)
async def verify(certificate_code: str) -> VerificationOut:
    certificate = await certificate_service.verify_certificate(certificate_code)
    return VerificationOut(
        certificate_code=certificate.certificate_code,
        course_id=certificate.course_id,
        issued_at=certificate.issued_at,
        valid=True,
    )
