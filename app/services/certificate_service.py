"""Certificate eligibility gate and issuance.

Eligibility is a read over progress: the enrollment grants access
(active or completed) and every module row is at 100%.  An enrollment
with no module rows at all is NOT eligible; "nothing tracked" must never
read as "everything done".

Issuance has two routes:

  request_certificate  learner asks; certificate is ``pending`` until an
                       admin calls approve_certificate
  issue_certificate    admin issues directly, ``active`` at once

Both end with the enrollment ``completed`` and its certificate flag set.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import replace
from uuid import UUID

from app.core.config import SETTINGS
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.db.store import Repos, store
from app.models.certificate import Certificate, CertificateStatus
from app.models.enrollment import ACCESS_STATUSES, Enrollment, EnrollmentStatus
from app.services.notification_service import NotificationEvent, notify

logger = logging.getLogger(__name__)


async def check_certificate_eligibility(enrollment_id: UUID) -> bool:
    async with store.transaction() as tx:
        return await _is_eligible(tx, enrollment_id)


async def _is_eligible(tx: Repos, enrollment_id: UUID) -> bool:
    enrollment = await tx.enrollments.get(enrollment_id)
    if enrollment is None or enrollment.status not in ACCESS_STATUSES:
        return False
    modules = await tx.progress.list_module_progress(enrollment_id)
    return bool(modules) and all(m.completion_percentage == 100 for m in modules)


async def request_certificate(enrollment_id: UUID, learner_id: str) -> Certificate:
    async with store.transaction() as tx:
        enrollment = await tx.enrollments.get(enrollment_id)
        if enrollment is None or enrollment.learner_id != learner_id:
            raise NotFoundError("Enrollment not found")
        await _ensure_no_certificate(tx, enrollment_id)
        if not await _is_eligible(tx, enrollment_id):
            raise ValidationError(
                "You must complete all modules (100%) before requesting a certificate"
            )
        certificate = await _create(tx, enrollment, CertificateStatus.PENDING)

    logger.info(
        "Certificate %s requested for enrollment=%s",
        certificate.certificate_code,
        enrollment_id,
    )
    return certificate


async def approve_certificate(certificate_code: str, approved_by: str) -> Certificate:
    async with store.transaction() as tx:
        certificate = await tx.certificates.get_by_code(certificate_code)
        if certificate is None:
            raise NotFoundError("Certificate not found")
        if certificate.status != CertificateStatus.PENDING:
            raise ConflictError("Certificate is not pending approval")

        approved = replace(
            certificate,
            status=CertificateStatus.ACTIVE,
            issued_at=datetime.datetime.now(datetime.UTC),
            approved_by=approved_by,
        )
        await tx.certificates.save(approved)
        await _complete_enrollment(tx, certificate.enrollment_id)

    logger.info("Certificate %s approved by=%s", certificate_code, approved_by)
    await _notify_issued(approved)
    return approved


async def issue_certificate(enrollment_id: UUID, issued_by: str) -> Certificate:
    async with store.transaction() as tx:
        enrollment = await tx.enrollments.get(enrollment_id)
        if enrollment is None:
            raise NotFoundError("Enrollment not found")
        await _ensure_no_certificate(tx, enrollment_id)
        if not await _is_eligible(tx, enrollment_id):
            raise ValidationError(
                "Enrollment is not eligible for certificate. "
                "All modules must be completed."
            )
        certificate = await _create(
            tx, enrollment, CertificateStatus.ACTIVE, approved_by=issued_by
        )
        await _complete_enrollment(tx, enrollment_id)

    logger.info(
        "Certificate %s issued for enrollment=%s by=%s",
        certificate.certificate_code,
        enrollment_id,
        issued_by,
    )
    await _notify_issued(certificate)
    return certificate


async def get_certificate_by_enrollment(
    enrollment_id: UUID, learner_id: str | None = None
) -> Certificate:
    async with store.transaction() as tx:
        enrollment = await tx.enrollments.get(enrollment_id)
        if enrollment is None or (
            learner_id is not None and enrollment.learner_id != learner_id
        ):
            raise NotFoundError("Enrollment not found")
        certificate = await tx.certificates.get_by_enrollment(enrollment_id)
    if certificate is None:
        raise NotFoundError("Certificate not found")
    return certificate


async def verify_certificate(certificate_code: str) -> Certificate:
    """Public lookup.  Only active certificates verify."""
    async with store.transaction() as tx:
        certificate = await tx.certificates.get_by_code(certificate_code)
    if certificate is None or certificate.status != CertificateStatus.ACTIVE:
        raise NotFoundError("Certificate not found")
    return certificate


async def _ensure_no_certificate(tx: Repos, enrollment_id: UUID) -> None:
    existing = await tx.certificates.get_by_enrollment(enrollment_id)
    if existing is None:
        return
    if existing.status == CertificateStatus.PENDING:
        raise ConflictError("Certificate request is pending admin approval")
    raise ConflictError("Certificate already exists for this enrollment")


async def _create(
    tx: Repos,
    enrollment: Enrollment,
    status: CertificateStatus,
    *,
    approved_by: str | None = None,
) -> Certificate:
    batch = await tx.batches.get(enrollment.batch_id)
    if batch is None:
        raise NotFoundError("Batch not found")
    certificate = Certificate.new(
        enrollment_id=enrollment.id,
        learner_id=enrollment.learner_id,
        course_id=batch.course_id,
        status=status,
        verification_base_url=SETTINGS.server_url,
    )
    if approved_by is not None:
        certificate = replace(certificate, approved_by=approved_by)
    await tx.certificates.add(certificate)
    return certificate


async def _complete_enrollment(tx: Repos, enrollment_id: UUID) -> None:
    enrollment = await tx.enrollments.get(enrollment_id)
    if enrollment is None:
        raise NotFoundError("Enrollment not found")
    now = datetime.datetime.now(datetime.UTC)
    if enrollment.status == EnrollmentStatus.COMPLETED:
        await tx.enrollments.update(enrollment_id, certificate_issued=True)
        return
    completed = await tx.enrollments.transition(
        enrollment_id,
        [EnrollmentStatus.ACTIVE],
        EnrollmentStatus.COMPLETED,
        certificate_issued=True,
        completed_at=now,
    )
    if completed is None:
        raise ConflictError(
            f"Cannot complete enrollment with status: {enrollment.status.value}"
        )


async def _notify_issued(certificate: Certificate) -> None:
    await notify(
        NotificationEvent.CERTIFICATE_ISSUED,
        learner_id=certificate.learner_id,
        enrollment_id=str(certificate.enrollment_id),
        certificate_code=certificate.certificate_code,
    )
