"""Learning progress endpoints.

  POST /v1/progress/{enrollment_id}/lessons/{lesson_id}            watch-time update
  POST /v1/progress/{enrollment_id}/lessons/{lesson_id}/complete   mark done
  GET  /v1/progress/{enrollment_id}                                batch overview
  GET  /v1/progress/{enrollment_id}/modules/{module_id}            module detail

Every route first resolves the enrollment against the caller, so a
learner can never read or write someone else's progress.  Module
locking and enrollment-status checks live in progress_service.
"""

from __future__ import annotations

import datetime
from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field

from app.api.dependencies import CurrentUser, learner_scope
from app.models.principal import Principal
from app.services import enrollment_service, progress_service

router = APIRouter(prefix="/v1/progress", tags=["progress"])


class LessonProgressIn(BaseModel):
    watch_time: float = Field(ge=0)
    last_position: float = Field(ge=0)


class CompleteLessonIn(BaseModel):
    watch_time: float | None = Field(default=None, ge=0)


class LessonProgressOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    lesson_id: UUID
    module_id: UUID
    status: str
    watch_time: float
    last_position: float
    completed_at: datetime.datetime | None


class ModuleProgressOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    module_id: UUID
    status: str
    completion_percentage: int
    unlocked_at: datetime.datetime | None
    started_at: datetime.datetime | None
    completed_at: datetime.datetime | None


class BatchProgressOut(BaseModel):
    enrollment_id: UUID
    overall_progress: int
    total_modules: int
    completed_modules: int
    total_lessons: int
    completed_lessons: int
    modules: list[ModuleProgressOut]


class LessonDetailOut(BaseModel):
    lesson_id: UUID
    title: str
    order_index: int
    duration_seconds: float | None
    status: str
    watch_time: float
    last_position: float


class ModuleDetailOut(BaseModel):
    module_id: UUID
    title: str
    order_index: int
    progress: ModuleProgressOut
    lessons: list[LessonDetailOut]


async def _ensure_owner(enrollment_id: UUID, principal: Principal) -> None:
    # raises NotFoundError for someone else's enrollment
    await enrollment_service.get_enrollment_details(
        enrollment_id, learner_scope(principal)
    )


@router.post(
    "/{enrollment_id}/lessons/{lesson_id}", response_model=LessonProgressOut
)
async def update_lesson_progress(
    enrollment_id: UUID,
    lesson_id: UUID,
    body: LessonProgressIn,
    principal: CurrentUser,
) -> LessonProgressOut:
    await _ensure_owner(enrollment_id, principal)
    progress = await progress_service.record_lesson_progress(
        enrollment_id, lesson_id, body.watch_time, body.last_position
    )
    return LessonProgressOut.model_validate(progress)


@router.post(
    "/{enrollment_id}/lessons/{lesson_id}/complete",
    response_model=LessonProgressOut,
)
async def complete_lesson(
    enrollment_id: UUID,
    lesson_id: UUID,
    body: CompleteLessonIn,
    principal: CurrentUser,
) -> LessonProgressOut:
    await _ensure_owner(enrollment_id, principal)
    progress = await progress_service.complete_lesson(
        enrollment_id, lesson_id, body.watch_time
    )
    return LessonProgressOut.model_validate(progress)


@router.get("/{enrollment_id}", response_model=BatchProgressOut)
async def batch_progress(
    enrollment_id: UUID, principal: CurrentUser
) -> BatchProgressOut:
    await _ensure_owner(enrollment_id, principal)
    summary = await progress_service.get_batch_progress(enrollment_id)
    return BatchProgressOut(
        enrollment_id=summary.enrollment_id,
        overall_progress=summary.overall_progress,
        total_modules=summary.total_modules,
        completed_modules=summary.completed_modules,
        total_lessons=summary.total_lessons,
        completed_lessons=summary.completed_lessons,
        modules=[ModuleProgressOut.model_validate(m) for m in summary.modules],
    )


@router.get(
    "/{enrollment_id}/modules/{module_id}", response_model=ModuleDetailOut
)
async def module_progress(
    enrollment_id: UUID, module_id: UUID, principal: CurrentUser
) -> ModuleDetailOut:
    await _ensure_owner(enrollment_id, principal)
    detail = await progress_service.get_module_progress(enrollment_id, module_id)
    return ModuleDetailOut(
        module_id=detail.module.id,
        title=detail.module.title,
        order_index=detail.module.order_index,
        progress=ModuleProgressOut.model_validate(detail.progress),
        lessons=[
            LessonDetailOut(
                lesson_id=item.lesson.id,
                title=item.lesson.title,
                order_index=item.lesson.order_index,
                duration_seconds=item.lesson.duration_seconds,
                status=item.status.value,
                watch_time=item.progress.watch_time if item.progress else 0.0,
                last_position=item.progress.last_position if item.progress else 0.0,
            )
            for item in detail.lessons
        ],
    )
