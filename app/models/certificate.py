from __future__ import annotations

import datetime
import secrets
import string
import time
from dataclasses import dataclass
from enum import StrEnum
from uuid import UUID, uuid4

_BASE36 = string.digits + string.ascii_uppercase


class CertificateStatus(StrEnum):
    PENDING = "pending"  # requested by the learner, awaiting admin approval
    ACTIVE = "active"
    REVOKED = "revoked"


def _base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_certificate_code() -> str:
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"CERT-{_base36(int(time.time() * 1000))}-{suffix}"


@dataclass(frozen=True, slots=True)
class Certificate:
    id: UUID
    certificate_code: str
    enrollment_id: UUID
    learner_id: str
    course_id: UUID
    status: CertificateStatus
    requested_at: datetime.datetime
    issued_at: datetime.datetime | None = None
    approved_by: str | None = None
    verification_url: str | None = None

    @staticmethod
    def new(
        *,
        enrollment_id: UUID,
        learner_id: str,
        course_id: UUID,
        status: CertificateStatus,
        verification_base_url: str,
    ) -> Certificate:
        code = generate_certificate_code()
        now = datetime.datetime.now(datetime.UTC)
        return Certificate(
            id=uuid4(),
            certificate_code=code,
            enrollment_id=enrollment_id,
            learner_id=learner_id,
            course_id=course_id,
            status=status,
            requested_at=now,
            issued_at=now if status == CertificateStatus.ACTIVE else None,
            verification_url=f"{verification_base_url}/verify-certificate/{code}",
        )
