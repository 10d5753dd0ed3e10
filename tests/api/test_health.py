from __future__ import annotations

from fastapi.testclient import TestClient


def test_health_returns_ok(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    # no DATABASE_URL or REDIS_URL in tests
    assert data["checks"] == {"database": "in_memory", "redis": "not_configured"}


def test_ready_returns_200(client: TestClient) -> None:
    resp = client.get("/ready")
    assert resp.status_code == 200
