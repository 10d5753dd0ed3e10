"""Background task queue using Redis lists.

WHY BACKGROUND PROCESSING?
----------------------------
Confirming an enrollment must not wait on an email provider.  If the
mail API is slow or down, the learner has still paid and the seat is
still theirs.  So the request path only ENQUEUES a notification event
(fast, <1ms) and a separate worker process delivers it at its own pace.

THE PRODUCER/CONSUMER PATTERN
-------------------------------
  Producer (API):    LPUSH task onto a Redis list -> returns immediately
  Consumer (Worker): BRPOP from the list -> processes task -> loops

  LPUSH adds to the HEAD of the list, BRPOP removes from the TAIL:
  FIFO, so notifications go out in the order the state changes happened.

DELIVERY GUARANTEE
-------------------
  AT-MOST-ONCE: if the worker crashes mid-task, that notification is
  lost.  Acceptable for notifications, which are never the source of
  truth (the enrollment and payment rows are).
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from app.db.redis import redis_pool


@dataclass(frozen=True, slots=True)
class Task:
    """A unit of background work.

    id:      Unique identifier for tracking and logging.
    queue:   Which queue this task belongs to (e.g. "notifications").
    payload: Arbitrary data the handler needs (JSON-serializable).
    """

    id: str
    queue: str
    payload: dict


@runtime_checkable
class TaskQueue(Protocol):
    async def enqueue(self, queue: str, payload: dict) -> Task: ...
    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None: ...
    async def queue_length(self, queue: str) -> int: ...


class InMemoryTaskQueue:
    """In-memory task queue for tests, no Redis needed."""

    def __init__(self) -> None:
        self._queues: dict[str, list[Task]] = {}

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, payload=payload)
        self._queues.setdefault(queue, []).append(task)
        return task

    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None:
        tasks = self._queues.get(queue, [])
        if tasks:
            return tasks.pop(0)  # FIFO
        return None

    async def queue_length(self, queue: str) -> int:
        return len(self._queues.get(queue, []))


class RedisTaskQueue:
    """Redis-backed task queue using LPUSH/BRPOP."""

    _PREFIX = "tasks:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, payload=payload)
        task_json = json.dumps(
            {
                "id": task.id,
                "queue": task.queue,
                "payload": task.payload,
            }
        )
        await self._redis.lpush(f"{self._PREFIX}{queue}", task_json)
        return task

    async def dequeue(self, queue: str, timeout: int = 5) -> Task | None:
        # Blocks up to `timeout` seconds; None when nothing arrived.
        result = await self._redis.brpop(f"{self._PREFIX}{queue}", timeout=timeout)
        if result is None:
            return None
        _, task_json = result
        data = json.loads(task_json)
        return Task(**data)

    async def queue_length(self, queue: str) -> int:
        return await self._redis.llen(f"{self._PREFIX}{queue}")


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    task_queue: TaskQueue = RedisTaskQueue(redis_pool)
else:
    task_queue = InMemoryTaskQueue()
