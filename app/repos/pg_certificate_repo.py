"""PostgreSQL implementation of CertificateRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError
from app.db.tables import CertificateRow
from app.models.certificate import Certificate, CertificateStatus


class PgCertificateRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, certificate: Certificate) -> None:
        self._session.add(
            CertificateRow(
                id=certificate.id,
                certificate_code=certificate.certificate_code,
                enrollment_id=certificate.enrollment_id,
                learner_id=certificate.learner_id,
                course_id=certificate.course_id,
                status=certificate.status.value,
                requested_at=certificate.requested_at,
                issued_at=certificate.issued_at,
                approved_by=certificate.approved_by,
                verification_url=certificate.verification_url,
            )
        )
        try:
            await self._session.flush()
        except IntegrityError:
            raise ConflictError(
                "Certificate already exists for this enrollment"
            ) from None

    async def get_by_enrollment(self, enrollment_id: UUID) -> Certificate | None:
        stmt = select(CertificateRow).where(
            CertificateRow.enrollment_id == enrollment_id
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_certificate(row)

    async def get_by_code(self, certificate_code: str) -> Certificate | None:
        stmt = select(CertificateRow).where(
            CertificateRow.certificate_code == certificate_code
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_certificate(row)

    async def save(self, certificate: Certificate) -> None:
        stmt = (
            update(CertificateRow)
            .where(CertificateRow.enrollment_id == certificate.enrollment_id)
            .values(
                status=certificate.status.value,
                issued_at=certificate.issued_at,
                approved_by=certificate.approved_by,
                verification_url=certificate.verification_url,
            )
        )
        await self._session.execute(stmt)


def _row_to_certificate(row: CertificateRow) -> Certificate:
    return Certificate(
        id=row.id,
        certificate_code=row.certificate_code,
        enrollment_id=row.enrollment_id,
        learner_id=row.learner_id,
        course_id=row.course_id,
        status=CertificateStatus(row.status),
        requested_at=row.requested_at,
        issued_at=row.issued_at,
        approved_by=row.approved_by,
        verification_url=row.verification_url,
    )
