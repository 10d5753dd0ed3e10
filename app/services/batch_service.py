from __future__ import annotations

import datetime
import logging
from decimal import Decimal
from uuid import UUID

from app.core.config import SETTINGS
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.db.store import store
from app.models.batch import BATCH_TRANSITIONS, Batch, BatchStatus
from app.models.state import ensure_transition

logger = logging.getLogger(__name__)


def _as_utc(value: datetime.datetime) -> datetime.datetime:
    # naive datetimes are taken to be UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.UTC)
    return value.astimezone(datetime.UTC)


async def create_batch(
    *,
    course_id: UUID,
    title: str,
    batch_number: int,
    start_date: datetime.datetime,
    end_date: datetime.datetime,
    enrollment_start_date: datetime.datetime,
    enrollment_end_date: datetime.datetime,
    price: Decimal,
    currency: str | None = None,
    status: BatchStatus = BatchStatus.DRAFT,
) -> Batch:
    """Validate and persist a new batch.  Nothing is written on failure."""
    title = title.strip()
    if not title:
        raise ValidationError("Title cannot be empty")
    if batch_number < 1:
        raise ValidationError("Batch number must be positive")
    if price < 0:
        raise ValidationError("Price must be zero or greater")

    start_date, end_date = _as_utc(start_date), _as_utc(end_date)
    enrollment_start_date = _as_utc(enrollment_start_date)
    enrollment_end_date = _as_utc(enrollment_end_date)
    if start_date >= end_date:
        raise ValidationError("Start date must be before end date")
    if enrollment_start_date > enrollment_end_date:
        raise ValidationError("Enrollment window start must not be after its end")
    if enrollment_end_date > end_date:
        raise ValidationError("Enrollment must close before the batch ends")
    if status not in (BatchStatus.DRAFT, BatchStatus.UPCOMING):
        raise ValidationError("New batches start as draft or upcoming")

    batch = Batch.new(
        course_id=course_id,
        title=title,
        batch_number=batch_number,
        start_date=start_date,
        end_date=end_date,
        enrollment_start_date=enrollment_start_date,
        enrollment_end_date=enrollment_end_date,
        price=price,
        currency=(currency or SETTINGS.default_currency).upper(),
        status=status,
    )
    async with store.transaction() as tx:
        if await tx.catalog.get_course(course_id) is None:
            raise NotFoundError("Course not found")
        await tx.batches.add(batch)

    logger.info("Created batch=%s course=%s number=%d", batch.id, course_id, batch_number)
    return batch


async def get_batch(batch_id: UUID) -> Batch:
    async with store.transaction() as tx:
        batch = await tx.batches.get(batch_id)
    if batch is None:
        raise NotFoundError("Batch not found")
    return batch


async def update_batch_status(batch_id: UUID, status: BatchStatus) -> Batch:
    async with store.transaction() as tx:
        batch = await tx.batches.get(batch_id)
        if batch is None:
            raise NotFoundError("Batch not found")
        ensure_transition("batch", BATCH_TRANSITIONS, batch.status, status)
        updated = await tx.batches.set_status(batch_id, batch.status, status)
        if updated is None:
            raise ConflictError("Batch changed concurrently; retry")

    logger.info(
        "Batch %s status %s -> %s", batch_id, batch.status.value, status.value
    )
    return updated
