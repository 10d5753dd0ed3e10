"""Notification events for learners and admins.

Rendering and delivering email is somebody else's job.  This module only
puts an event on the ``notifications`` queue after the state change that
caused it has committed.  The worker (app/worker.py) picks it up.

Enqueueing is best effort: a Redis outage must never turn a committed
payment into an error response, so failures are logged, counted and
swallowed here.
"""

from __future__ import annotations

import logging
from enum import StrEnum

from app.core.metrics import NOTIFICATION_ENQUEUE_FAILURES, QUEUE_DEPTH
from app.services.task_queue import task_queue

logger = logging.getLogger(__name__)

NOTIFICATIONS_QUEUE = "notifications"


class NotificationEvent(StrEnum):
    ENROLLMENT_CONFIRMED = "enrollment_confirmed"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_UNDER_REVIEW = "payment_under_review"
    WAITING_VERIFICATION = "waiting_verification"
    CERTIFICATE_ISSUED = "certificate_issued"


async def notify(event: NotificationEvent, **payload: str | None) -> None:
    """Enqueue ``event`` with a JSON-safe payload.  Never raises."""
    try:
        await task_queue.enqueue(
            NOTIFICATIONS_QUEUE, {"event": event.value, **payload}
        )
        QUEUE_DEPTH.labels(queue_name=NOTIFICATIONS_QUEUE).set(
            await task_queue.queue_length(NOTIFICATIONS_QUEUE)
        )
    except Exception:
        NOTIFICATION_ENQUEUE_FAILURES.labels(event=event.value).inc()
        logger.exception("Failed to enqueue notification event=%s", event.value)
        return
    logger.debug("Enqueued notification event=%s", event.value)
