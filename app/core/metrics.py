"""Application metrics using the Prometheus client library.

One inventory of everything the service measures.  Modules import the
metric they own and increment/observe it at the point of action; the
/metrics endpoint exposes the default registry for Prometheus to scrape.

Domain metrics worth alerting on:

  payment_status_transitions_total{status="failed"} climbing faster
    than {status="success"} usually means the gateway is rejecting
    validations.

  gateway_webhook_outcomes_total{outcome="integrity_violation"} should
    stay at zero.  Any increment is a tamper signal or a gateway bug.

  gateway_request_duration_seconds near GATEWAY_TIMEOUT_SECONDS means
    checkouts are about to start failing with 503s.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Enrollment / payment metrics
# ---------------------------------------------------------------------------

ENROLLMENT_ACTIVATIONS = Counter(
    "enrollment_activations_total",
    "Enrollments that transitioned into active",
    ["method"],  # "gateway" or "manual_transfer"
)

PAYMENT_STATUS_TRANSITIONS = Counter(
    "payment_status_transitions_total",
    "Payment status writes that actually changed state",
    ["status"],
)

WEBHOOK_OUTCOMES = Counter(
    "gateway_webhook_outcomes_total",
    "Gateway notifications by outcome",
    ["outcome"],  # processed|already_processed|rejected|integrity_violation
)

GATEWAY_REQUEST_DURATION = Histogram(
    "gateway_request_duration_seconds",
    "Outbound payment gateway call duration in seconds",
    ["operation"],  # initiate|validate|query
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

LESSON_COMPLETIONS = Counter(
    "lesson_completions_total",
    "Lessons that reached completed status",
)

MODULE_UNLOCKS = Counter(
    "module_unlocks_total",
    "Modules unlocked after their predecessor completed",
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)

NOTIFICATION_ENQUEUE_FAILURES = Counter(
    "notification_enqueue_failures_total",
    "Notification events that could not be enqueued",
    ["event"],
)
