"""Tests for Prometheus metrics middleware.

prometheus-client keeps one global registry and counters only go up, so
every test reads the value before and after the action and asserts on
the delta.
"""

from __future__ import annotations

from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from tests.conftest import auth


def _get_sample(name: str, labels: dict | None = None) -> float:
    """Read a metric sample's current value from the global registry."""
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


def test_request_counter_increments(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/health")
    assert _get_sample("http_requests_total", labels) - before >= 1


def test_request_duration_histogram_observes(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health"}
    before = _get_sample("http_request_duration_seconds_count", labels)
    client.get("/health")
    assert _get_sample("http_request_duration_seconds_count", labels) - before >= 1


def test_ids_are_collapsed_into_the_route_template(client: TestClient) -> None:
    labels = {
        "method": "GET",
        "endpoint": "/v1/enrollments/{enrollment_id}",
        "status_code": "404",
    }
    before = _get_sample("http_requests_total", labels)

    for suffix in ("1", "2"):
        client.get(
            f"/v1/enrollments/00000000-0000-0000-0000-00000000000{suffix}",
            headers=auth(),
        )

    assert _get_sample("http_requests_total", labels) - before == 2


def test_unknown_paths_share_one_label(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "unmatched", "status_code": "404"}
    before = _get_sample("http_requests_total", labels)
    client.get("/no/such/path")
    assert _get_sample("http_requests_total", labels) - before == 1


def test_metrics_endpoint_returns_prometheus_format(client: TestClient) -> None:
    client.get("/health")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "http_requests_total" in resp.text
    assert "gateway_webhook_outcomes_total" in resp.text


def test_metrics_endpoint_not_self_instrumented(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/metrics", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/metrics")
    client.get("/metrics")
    assert _get_sample("http_requests_total", labels) == before
