from __future__ import annotations

from fastapi.testclient import TestClient

from tests.conftest import auth

# ---- 404: undefined routes ----


def test_undefined_route_returns_404(client: TestClient) -> None:
    resp = client.get("/nonexistent")
    assert resp.status_code == 404
    assert resp.json() == {"detail": "Not Found"}


def test_unknown_enrollment_uses_error_envelope(client: TestClient) -> None:
    resp = client.get(
        "/v1/enrollments/00000000-0000-0000-0000-000000000000", headers=auth()
    )
    assert resp.status_code == 404
    assert resp.json() == {
        "error": {"code": "not_found", "message": "Enrollment not found"}
    }


def test_malformed_id_is_422(client: TestClient) -> None:
    resp = client.get("/v1/enrollments/not-a-uuid", headers=auth())
    assert resp.status_code == 422


# ---- 405: wrong HTTP method on existing routes ----


def test_put_health_returns_405(client: TestClient) -> None:
    resp = client.put("/health", json={"status": "bad"})
    assert resp.status_code == 405


def test_get_ipn_returns_405(client: TestClient) -> None:
    resp = client.get("/v1/payments/ipn")
    assert resp.status_code == 405
