from __future__ import annotations

import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, status
from pydantic import BaseModel

from app.api.dependencies import AdminUser, CurrentUser
from app.api.schemas import BatchOut
from app.models.batch import BatchStatus
from app.services import batch_service

router = APIRouter(prefix="/v1/batches", tags=["batches"])


class BatchIn(BaseModel):
    course_id: UUID
    title: str
    batch_number: int
    start_date: datetime.datetime
    end_date: datetime.datetime
    enrollment_start_date: datetime.datetime
    enrollment_end_date: datetime.datetime
    price: Decimal
    currency: str | None = None
    status: BatchStatus = BatchStatus.DRAFT


class BatchStatusIn(BaseModel):
    status: BatchStatus


@router.post("", response_model=BatchOut, status_code=status.HTTP_201_CREATED)
async def create_batch(body: BatchIn, _admin: AdminUser) -> BatchOut:
    batch = await batch_service.create_batch(**body.model_dump())
    return BatchOut.model_validate(batch)


@router.get("/{batch_id}", response_model=BatchOut)
async def get_batch(batch_id: UUID, _principal: CurrentUser) -> BatchOut:
    batch = await batch_service.get_batch(batch_id)
    return BatchOut.model_validate(batch)


@router.patch("/{batch_id}/status", response_model=BatchOut)
async def update_status(
    batch_id: UUID, body: BatchStatusIn, _admin: AdminUser
) -> BatchOut:
    batch = await batch_service.update_batch_status(batch_id, body.status)
    return BatchOut.model_validate(batch)
