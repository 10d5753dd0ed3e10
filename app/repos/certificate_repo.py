from __future__ import annotations

from typing import Protocol
from uuid import UUID

from app.core.errors import ConflictError
from app.models.certificate import Certificate


class CertificateRepo(Protocol):
    async def add(self, certificate: Certificate) -> None: ...
    async def get_by_enrollment(self, enrollment_id: UUID) -> Certificate | None: ...
    async def get_by_code(self, certificate_code: str) -> Certificate | None: ...
    async def save(self, certificate: Certificate) -> None: ...


class InMemoryCertificateRepo:
    def __init__(self) -> None:
        self._by_enrollment: dict[UUID, Certificate] = {}

    async def add(self, certificate: Certificate) -> None:
        if certificate.enrollment_id in self._by_enrollment:
            raise ConflictError("Certificate already exists for this enrollment")
        self._by_enrollment[certificate.enrollment_id] = certificate

    async def get_by_enrollment(self, enrollment_id: UUID) -> Certificate | None:
        return self._by_enrollment.get(enrollment_id)

    async def get_by_code(self, certificate_code: str) -> Certificate | None:
        for certificate in self._by_enrollment.values():
            if certificate.certificate_code == certificate_code:
                return certificate
        return None

    async def save(self, certificate: Certificate) -> None:
        self._by_enrollment[certificate.enrollment_id] = certificate
