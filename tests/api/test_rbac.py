"""Table-driven RBAC tests.

Each row describes: endpoint, method, role, expected HTTP status.
Admin-only routes must answer 403 to learners and 401 to anonymous
callers before any service code runs, so the bodies and ids below only
need to be well-formed.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from tests.conftest import mint_token

_ID = "00000000-0000-0000-0000-000000000001"

_RBAC_CASES = [
    # (endpoint, method, role, expected_status)
    # own enrollments: any authenticated user
    ("/v1/enrollments/me", "GET", "learner", 200),
    ("/v1/enrollments/me", "GET", "admin", 200),
    ("/v1/enrollments/me", "GET", None, 401),
    # own payments: any authenticated user
    ("/v1/payments/me", "GET", "learner", 200),
    ("/v1/payments/me", "GET", None, 401),
    # payment history: admin only
    ("/v1/payments/history", "GET", "admin", 200),
    ("/v1/payments/history", "GET", "learner", 403),
    ("/v1/payments/history", "GET", None, 401),
    # confirm enrollment: admin only (404: the enrollment does not exist)
    (f"/v1/enrollments/{_ID}/confirm", "POST", "admin", 404),
    (f"/v1/enrollments/{_ID}/confirm", "POST", "learner", 403),
    (f"/v1/enrollments/{_ID}/confirm", "POST", None, 401),
    # manual payment review: admin only
    ("/v1/payments/TXN-1/verify", "POST", "admin", 404),
    ("/v1/payments/TXN-1/verify", "POST", "learner", 403),
    # certificate issuance and approval: admin only
    ("/v1/certificates/issue", "POST", "admin", 404),
    ("/v1/certificates/issue", "POST", "learner", 403),
    ("/v1/certificates/CERT-X/approve", "POST", "learner", 403),
    # batch management: admin only
    (f"/v1/batches/{_ID}/status", "PATCH", "learner", 403),
    (f"/v1/batches/{_ID}/status", "PATCH", "admin", 404),
    # public certificate verification (404: unknown code)
    ("/v1/certificates/verify/CERT-X", "GET", None, 404),
]

_BODIES = {
    "confirm": {},
    "verify": {"approved": True},
    "issue": {"enrollment_id": _ID},
    "approve": {},
    "status": {"status": "running"},
}


def _case_id(case: tuple) -> str:
    endpoint, method, role, expected = case
    return f"{method} {endpoint} [{role or 'anon'}] -> {expected}"


@pytest.mark.parametrize(
    "endpoint,method,role,expected",
    _RBAC_CASES,
    ids=[_case_id(c) for c in _RBAC_CASES],
)
def test_rbac(
    client: TestClient,
    endpoint: str,
    method: str,
    role: str | None,
    expected: int,
) -> None:
    headers = {"Authorization": f"Bearer {mint_token(roles=[role])}"} if role else {}
    body = _BODIES.get(endpoint.rsplit("/", 1)[-1], {})

    resp = client.request(method, endpoint, json=body if method != "GET" else None, headers=headers)

    assert resp.status_code == expected, (
        f"{method} {endpoint} role={role}: expected {expected}, got {resp.status_code}"
    )
