"""Background worker process.

RUN:  python -m app.worker

Same image as the API, different command:
  api:    uvicorn app.main:app --host 0.0.0.0 --port 8000
  worker: python -m app.worker

The API only enqueues notification events after a state change has
committed (see notification_service).  This process drains the queues
and hands each task to the handler registered for its queue.  Delivery
is at-most-once: a handler failure is logged and the task is dropped,
never retried, because the enrollment and payment rows stay the source
of truth.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from app.core.config import SETTINGS
from app.core.logging import setup_logging
from app.services.notification_service import NOTIFICATIONS_QUEUE, NotificationEvent
from app.services.task_queue import task_queue

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("worker")

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


# Subject lines per event; the mail renderer owns the body.
SUBJECTS: dict[NotificationEvent, str] = {
    NotificationEvent.ENROLLMENT_CONFIRMED: "Your enrollment is confirmed ({enrollment_code})",
    NotificationEvent.PAYMENT_SUCCEEDED: "Payment received ({transaction_id})",
    NotificationEvent.PAYMENT_FAILED: "Payment failed ({transaction_id})",
    NotificationEvent.PAYMENT_UNDER_REVIEW: "Payment under review ({transaction_id})",
    NotificationEvent.WAITING_VERIFICATION: "We are verifying your payment ({transaction_id})",
    NotificationEvent.CERTIFICATE_ISSUED: "Your certificate is ready ({certificate_code})",
}


class _Missing(dict):
    def __missing__(self, key: str) -> str:
        return "-"


def render_subject(payload: dict) -> str:
    """Subject line for a notification payload.

    Raises ValueError for an event this worker does not know.
    """
    event = NotificationEvent(payload.get("event"))
    return SUBJECTS[event].format_map(_Missing(payload))


@register_handler(NOTIFICATIONS_QUEUE)
async def handle_notification(payload: dict) -> None:
    subject = render_subject(payload)
    # admin-facing events carry an audience; the rest go to the learner
    recipient = payload.get("audience") or f"learner:{payload.get('learner_id')}"
    logger.info("Delivered %s to %s: %s", payload["event"], recipient, subject)


async def process_one(queue_name: str, timeout: int = 1) -> bool:
    """Handle at most one task from ``queue_name``.  True if one was taken."""
    task = await task_queue.dequeue(queue_name, timeout=timeout)
    if task is None:
        return False
    try:
        await HANDLERS[queue_name](task.payload)
        logger.info("Task %s on [%s] completed", task.id, queue_name)
    except Exception:
        logger.exception("Task %s on [%s] failed", task.id, queue_name)
    return True


async def run_worker() -> None:
    """Poll all registered queues forever."""
    queues = list(HANDLERS.keys())
    logger.info("Worker started, listening on queues: %s", queues)
    while True:
        for queue_name in queues:
            await process_one(queue_name)


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
