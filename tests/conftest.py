from __future__ import annotations

import asyncio
import datetime
import sys
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Ensure repo root is on sys.path so `import app` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.db.store import store  # noqa: E402
from app.main import app  # noqa: E402
from app.models.batch import Batch, BatchStatus  # noqa: E402
from app.models.catalog import Course, CourseModule, Lesson  # noqa: E402
from app.services import payment_service, token_service  # noqa: E402
from app.services.gateway import (  # noqa: E402
    CheckoutRequest,
    GatewayValidation,
)
from app.services.task_queue import task_queue  # noqa: E402

LEARNER = "learner-1"
ADMIN = "admin-1"


@pytest.fixture(autouse=True)
def reset_store() -> None:
    """Fresh in-memory data for every test."""
    store.reset()  # type: ignore[attr-defined]


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    """Clear task queues between tests."""
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = LEARNER,
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles)


def auth(username: str = LEARNER, roles: list[str] | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {mint_token(username, roles)}"}


def admin_auth() -> dict[str, str]:
    return auth(ADMIN, ["admin"])


@pytest.fixture
def token() -> str:
    return mint_token()


@pytest.fixture
def admin_token() -> str:
    return mint_token(username=ADMIN, roles=["admin"])


# ---------------------------------------------------------------------------
# Catalog seeding
# ---------------------------------------------------------------------------


@dataclass
class Seeded:
    course: Course
    batch: Batch
    modules: list[CourseModule]
    lessons: dict[int, list[Lesson]] = field(default_factory=dict)  # by module index


def seed_catalog(
    module_lessons: list[list[float | None]] | None = None,
    *,
    price: Decimal = Decimal("1500.00"),
    batch_number: int = 7,
    status: BatchStatus = BatchStatus.UPCOMING,
    enrollment_closes_in: datetime.timedelta = datetime.timedelta(days=10),
    slug: str = "python-bootcamp",
) -> Seeded:
    """Course, modules, lessons and one batch, written through the store.

    ``module_lessons`` lists the lesson durations per module, in order.
    The default is two modules with two 100-second lessons each.
    """
    if module_lessons is None:
        module_lessons = [[100.0, 100.0], [100.0, 100.0]]
    return asyncio.run(
        _seed(module_lessons, price, batch_number, status, enrollment_closes_in, slug)
    )


async def _seed(
    module_lessons: list[list[float | None]],
    price: Decimal,
    batch_number: int,
    status: BatchStatus,
    enrollment_closes_in: datetime.timedelta,
    slug: str,
) -> Seeded:
    now = datetime.datetime.now(datetime.UTC)
    course = Course.new(slug=slug, title=slug.replace("-", " ").title())
    batch = Batch.new(
        course_id=course.id,
        title=f"{course.title} batch {batch_number}",
        batch_number=batch_number,
        start_date=now + datetime.timedelta(days=15),
        end_date=now + datetime.timedelta(days=90),
        enrollment_start_date=now - datetime.timedelta(days=5),
        enrollment_end_date=now + enrollment_closes_in,
        price=price,
        currency="BDT",
        status=status,
    )
    seeded = Seeded(course=course, batch=batch, modules=[])
    async with store.transaction() as tx:
        await tx.catalog.add_course(course)
        await tx.batches.add(batch)
        for index, durations in enumerate(module_lessons):
            module = CourseModule.new(
                course_id=course.id, order_index=index, title=f"Module {index + 1}"
            )
            await tx.catalog.add_module(module)
            seeded.modules.append(module)
            seeded.lessons[index] = []
            for position, duration in enumerate(durations):
                lesson = Lesson.new(
                    module_id=module.id,
                    order_index=position,
                    title=f"Lesson {index + 1}.{position + 1}",
                    duration_seconds=duration,
                )
                await tx.catalog.add_lesson(lesson)
                seeded.lessons[index].append(lesson)
    return seeded


def add_batch(
    course_id, *, batch_number: int, status: BatchStatus = BatchStatus.UPCOMING
) -> Batch:
    """Another batch of an already-seeded course."""
    now = datetime.datetime.now(datetime.UTC)
    batch = Batch.new(
        course_id=course_id,
        title=f"Batch {batch_number}",
        batch_number=batch_number,
        start_date=now + datetime.timedelta(days=30),
        end_date=now + datetime.timedelta(days=120),
        enrollment_start_date=now - datetime.timedelta(days=1),
        enrollment_end_date=now + datetime.timedelta(days=20),
        price=Decimal("1500.00"),
        status=status,
    )

    async def _add() -> None:
        async with store.transaction() as tx:
            await tx.batches.add(batch)

    asyncio.run(_add())
    return batch


def queued_events() -> list[dict]:
    """Payloads waiting on the notifications queue, oldest first."""
    return [task.payload for task in task_queue._queues.get("notifications", [])]  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# Payment gateway stub
# ---------------------------------------------------------------------------


class StubGateway:
    """Scriptable stand-in for the hosted gateway.

    ``validations`` maps val_id -> validation; ``records`` maps tran_id ->
    status-check answer.  Calls are recorded for assertions.
    """

    def __init__(self) -> None:
        self.validations: dict[str, GatewayValidation] = {}
        self.records: dict[str, GatewayValidation | None] = {}
        self.checkouts: list[CheckoutRequest] = []
        self.validate_calls: list[str] = []
        self.fail_with: Exception | None = None

    def approve(
        self,
        val_id: str,
        transaction_id: str,
        amount: Decimal | str = "1500.00",
        currency: str = "BDT",
        status: str = "VALID",
    ) -> None:
        self.validations[val_id] = GatewayValidation(
            status=status,
            transaction_id=transaction_id,
            amount=Decimal(str(amount)),
            currency=currency,
            val_id=val_id,
        )

    async def initiate(self, request: CheckoutRequest) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self.checkouts.append(request)
        return f"https://gateway.test/pay/{request.transaction_id}"

    async def validate(self, val_id: str) -> GatewayValidation:
        self.validate_calls.append(val_id)
        if self.fail_with is not None:
            raise self.fail_with
        return self.validations.get(
            val_id,
            GatewayValidation(
                status="INVALID_TRANSACTION",
                transaction_id=None,
                amount=None,
                currency=None,
            ),
        )

    async def query_transaction(self, transaction_id: str) -> GatewayValidation | None:
        if self.fail_with is not None:
            raise self.fail_with
        return self.records.get(transaction_id)


@pytest.fixture
def gateway(monkeypatch: pytest.MonkeyPatch) -> StubGateway:
    stub = StubGateway()
    monkeypatch.setattr(payment_service, "gateway", stub)
    return stub
