from __future__ import annotations

import asyncio
import logging

import pytest

from app.services.notification_service import NOTIFICATIONS_QUEUE, NotificationEvent, notify
from app.services.task_queue import task_queue
from app.worker import HANDLERS, process_one, render_subject


def test_notifications_queue_has_a_handler() -> None:
    assert NOTIFICATIONS_QUEUE in HANDLERS


def test_render_subject_fills_placeholders() -> None:
    subject = render_subject(
        {"event": "enrollment_confirmed", "enrollment_code": "MA-7202600001"}
    )
    assert subject == "Your enrollment is confirmed (MA-7202600001)"


def test_render_subject_tolerates_missing_fields() -> None:
    assert render_subject({"event": "payment_failed"}) == "Payment failed (-)"


def test_render_subject_rejects_unknown_event() -> None:
    with pytest.raises(ValueError):
        render_subject({"event": "course_deleted"})


def test_process_one_on_empty_queue_returns_false() -> None:
    assert asyncio.run(process_one(NOTIFICATIONS_QUEUE)) is False


def test_process_one_delivers_to_learner(caplog: pytest.LogCaptureFixture) -> None:
    asyncio.run(
        notify(
            NotificationEvent.PAYMENT_SUCCEEDED,
            learner_id="learner-1",
            transaction_id="TXN-1",
        )
    )
    with caplog.at_level(logging.INFO, logger="worker"):
        assert asyncio.run(process_one(NOTIFICATIONS_QUEUE)) is True

    assert any(
        "learner:learner-1" in m and "Payment received (TXN-1)" in m
        for m in caplog.messages
    )
    assert asyncio.run(task_queue.queue_length(NOTIFICATIONS_QUEUE)) == 0


def test_admin_events_go_to_their_audience(caplog: pytest.LogCaptureFixture) -> None:
    asyncio.run(
        notify(
            NotificationEvent.PAYMENT_UNDER_REVIEW,
            audience="admins",
            learner_id="learner-1",
            transaction_id="TXN-2",
        )
    )
    with caplog.at_level(logging.INFO, logger="worker"):
        asyncio.run(process_one(NOTIFICATIONS_QUEUE))

    assert any("to admins" in m for m in caplog.messages)


def test_handler_failure_is_logged_and_task_dropped(
    caplog: pytest.LogCaptureFixture,
) -> None:
    asyncio.run(task_queue.enqueue(NOTIFICATIONS_QUEUE, {"event": "nonsense"}))

    with caplog.at_level(logging.ERROR, logger="worker"):
        assert asyncio.run(process_one(NOTIFICATIONS_QUEUE)) is True

    assert any("failed" in m for m in caplog.messages)
    assert asyncio.run(task_queue.queue_length(NOTIFICATIONS_QUEUE)) == 0
