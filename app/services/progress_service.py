"""Content progress tracker: lesson playback rolls up into module unlocks.

THE CASCADE
------------
  record_lesson_progress / complete_lesson
      -> lesson row upserted (watch time only ever grows)
      -> module percentage recomputed from its lessons
      -> at 100% the module completes and the NEXT module unlocks

Everything in one cascade runs inside a single store transaction, so a
learner never sees module 2 unlocked while module 1 still reads 90%.

Modules unlock strictly in ``order_index`` order and never re-lock.
The first module is unlocked when the enrollment activates
(initialize_progress, called from app/services/activation.py).
"""

from __future__ import annotations

import datetime
import logging
import math
from dataclasses import dataclass, replace
from uuid import UUID

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.core.metrics import LESSON_COMPLETIONS, MODULE_UNLOCKS
from app.db.store import Repos, store
from app.models.catalog import CourseModule, Lesson
from app.models.enrollment import ACCESS_STATUSES, Enrollment
from app.models.progress import (
    LESSON_COMPLETION_THRESHOLD,
    MODULE_TRANSITIONS,
    LessonProgress,
    LessonProgressStatus,
    ModuleProgress,
    ModuleProgressStatus,
)
from app.models.state import ensure_transition

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BatchProgress:
    enrollment_id: UUID
    overall_progress: int
    total_modules: int
    completed_modules: int
    total_lessons: int
    completed_lessons: int
    modules: list[ModuleProgress]


@dataclass(frozen=True, slots=True)
class LessonWithProgress:
    lesson: Lesson
    progress: LessonProgress | None

    @property
    def status(self) -> LessonProgressStatus:
        if self.progress is None:
            return LessonProgressStatus.NOT_STARTED
        return self.progress.status


@dataclass(frozen=True, slots=True)
class ModuleDetail:
    module: CourseModule
    progress: ModuleProgress
    lessons: list[LessonWithProgress]


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (Python rounds to even)."""
    return math.floor(value + 0.5)


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------


async def initialize_for_enrollment(
    enrollment_id: UUID, batch_id: UUID
) -> list[ModuleProgress]:
    async with store.transaction() as tx:
        return await initialize_progress(tx, enrollment_id, batch_id)


async def initialize_progress(
    tx: Repos, enrollment_id: UUID, batch_id: UUID
) -> list[ModuleProgress]:
    """Create one ModuleProgress per course module.  Idempotent.

    The lowest-order module starts unlocked, the rest locked.  Calling
    this again for an initialized enrollment changes nothing.
    """
    if await tx.progress.has_module_progress(enrollment_id):
        return await tx.progress.list_module_progress(enrollment_id)

    batch = await tx.batches.get(batch_id)
    if batch is None:
        raise NotFoundError("Batch not found")

    modules = await tx.catalog.list_modules(batch.course_id)
    if not modules:
        logger.warning(
            "Course %s has no modules; nothing to initialize for enrollment=%s",
            batch.course_id,
            enrollment_id,
        )
        return []

    now = _now()
    records = [
        ModuleProgress.new(
            enrollment_id=enrollment_id,
            module_id=module.id,
            unlocked_at=now if index == 0 else None,
        )
        for index, module in enumerate(modules)
    ]
    await tx.progress.add_module_progress(records)
    logger.info(
        "Initialized progress for enrollment=%s modules=%d",
        enrollment_id,
        len(records),
    )
    return await tx.progress.list_module_progress(enrollment_id)


# ---------------------------------------------------------------------------
# Lesson progress
# ---------------------------------------------------------------------------


async def record_lesson_progress(
    enrollment_id: UUID,
    lesson_id: UUID,
    watch_time: float,
    last_position: float,
) -> LessonProgress:
    if watch_time < 0 or last_position < 0:
        raise ValidationError("watch_time and last_position must be non-negative")

    async with store.transaction() as tx:
        lesson, module = await _accessible_lesson(tx, enrollment_id, lesson_id)
        progress = await _apply_watch_time(
            tx, enrollment_id, lesson, watch_time, last_position
        )
        await _recompute_module(tx, enrollment_id, module)
        return progress


async def complete_lesson(
    enrollment_id: UUID, lesson_id: UUID, watch_time: float | None = None
) -> LessonProgress:
    """Mark a lesson done directly (non-video lessons, "mark complete").

    Ends in the same state as crossing the watch threshold.
    """
    async with store.transaction() as tx:
        lesson, module = await _accessible_lesson(tx, enrollment_id, lesson_id)
        if watch_time is None:
            watch_time = lesson.duration_seconds or 0.0
        progress = await _apply_watch_time(
            tx, enrollment_id, lesson, watch_time, watch_time, force_complete=True
        )
        await _recompute_module(tx, enrollment_id, module)
        return progress


async def _accessible_lesson(
    tx: Repos, enrollment_id: UUID, lesson_id: UUID
) -> tuple[Lesson, CourseModule]:
    enrollment = await _require_content_access(tx, enrollment_id)

    lesson = await tx.catalog.get_lesson(lesson_id)
    if lesson is None:
        raise NotFoundError("Lesson not found")
    module = await tx.catalog.get_module(lesson.module_id)
    batch = await tx.batches.get(enrollment.batch_id)
    if module is None or batch is None or module.course_id != batch.course_id:
        raise NotFoundError("Lesson not found in this course")

    module_progress = await tx.progress.get_module_progress(enrollment_id, module.id)
    if module_progress is None:
        raise NotFoundError("Module progress not found")
    if module_progress.status == ModuleProgressStatus.LOCKED:
        raise ConflictError(
            "Module is locked",
            {"enrollment_id": str(enrollment_id), "module_id": str(module.id)},
        )
    return lesson, module


async def _require_content_access(tx: Repos, enrollment_id: UUID) -> Enrollment:
    enrollment = await tx.enrollments.get(enrollment_id)
    if enrollment is None:
        raise NotFoundError("Enrollment not found")
    if enrollment.status not in ACCESS_STATUSES:
        raise ConflictError(
            f"Enrollment is {enrollment.status.value}; content is not accessible"
        )
    return enrollment


async def _apply_watch_time(
    tx: Repos,
    enrollment_id: UUID,
    lesson: Lesson,
    watch_time: float,
    last_position: float,
    *,
    force_complete: bool = False,
) -> LessonProgress:
    current = await tx.progress.get_lesson_progress(enrollment_id, lesson.id)
    if current is None:
        current = LessonProgress.new(
            enrollment_id=enrollment_id, lesson_id=lesson.id, module_id=lesson.module_id
        )

    stored_watch = max(current.watch_time, watch_time)
    reached = (
        lesson.duration_seconds is not None
        and lesson.duration_seconds > 0
        and stored_watch >= lesson.duration_seconds * LESSON_COMPLETION_THRESHOLD
    )

    if current.status == LessonProgressStatus.COMPLETED:
        # completion is sticky
        updated = replace(current, watch_time=stored_watch, last_position=last_position)
    elif reached or force_complete:
        updated = replace(
            current,
            status=LessonProgressStatus.COMPLETED,
            watch_time=stored_watch,
            last_position=last_position,
            completed_at=_now(),
        )
        LESSON_COMPLETIONS.inc()
        logger.info(
            "Lesson %s completed for enrollment=%s", lesson.id, enrollment_id
        )
    else:
        updated = replace(
            current,
            status=LessonProgressStatus.IN_PROGRESS,
            watch_time=stored_watch,
            last_position=last_position,
        )

    await tx.progress.save_lesson_progress(updated)
    return updated


# ---------------------------------------------------------------------------
# Module roll-up and sequential unlock
# ---------------------------------------------------------------------------


async def recompute_module(enrollment_id: UUID, module_id: UUID) -> ModuleProgress:
    async with store.transaction() as tx:
        module = await tx.catalog.get_module(module_id)
        if module is None:
            raise NotFoundError("Module not found")
        return await _recompute_module(tx, enrollment_id, module)


async def _recompute_module(
    tx: Repos, enrollment_id: UUID, module: CourseModule
) -> ModuleProgress:
    module_progress = await tx.progress.get_module_progress(enrollment_id, module.id)
    if module_progress is None:
        raise NotFoundError("Module progress not found")

    lessons = await tx.catalog.list_lessons(module.id)
    if not lessons:
        return module_progress

    lesson_progress = await tx.progress.list_lesson_progress(
        enrollment_id, [lesson.id for lesson in lessons]
    )
    completed = sum(
        1 for lp in lesson_progress if lp.status == LessonProgressStatus.COMPLETED
    )
    percentage = round_half_up(100 * completed / len(lessons))

    status = module_progress.status
    if status == ModuleProgressStatus.COMPLETED or percentage == 0:
        # completed modules never reopen; 0% leaves the row as it is
        return module_progress

    if percentage == 100:
        ensure_transition(
            "module", MODULE_TRANSITIONS, status, ModuleProgressStatus.COMPLETED
        )
        now = _now()
        updated = replace(
            module_progress,
            status=ModuleProgressStatus.COMPLETED,
            completion_percentage=100,
            started_at=module_progress.started_at or now,
            completed_at=now,
        )
    else:
        if status != ModuleProgressStatus.IN_PROGRESS:
            ensure_transition(
                "module", MODULE_TRANSITIONS, status, ModuleProgressStatus.IN_PROGRESS
            )
        updated = replace(
            module_progress,
            status=ModuleProgressStatus.IN_PROGRESS,
            completion_percentage=percentage,
            started_at=module_progress.started_at or _now(),
        )

    await tx.progress.save_module_progress(updated)

    if updated.status == ModuleProgressStatus.COMPLETED:
        logger.info("Module %s completed for enrollment=%s", module.id, enrollment_id)
        await _unlock_next(tx, enrollment_id, module)
    return updated


async def unlock_next(
    enrollment_id: UUID, completed_module_id: UUID
) -> ModuleProgress | None:
    async with store.transaction() as tx:
        module = await tx.catalog.get_module(completed_module_id)
        if module is None:
            raise NotFoundError("Module not found")
        return await _unlock_next(tx, enrollment_id, module)


async def _unlock_next(
    tx: Repos, enrollment_id: UUID, completed_module: CourseModule
) -> ModuleProgress | None:
    """Unlock the next-higher module, if it is still locked.

    Returns the unlocked row, or None when there is no next module or it
    was already unlocked.
    """
    next_module = await tx.catalog.get_next_module(
        completed_module.course_id, completed_module.order_index
    )
    if next_module is None:
        return None

    next_progress = await tx.progress.get_module_progress(enrollment_id, next_module.id)
    if next_progress is None or next_progress.status != ModuleProgressStatus.LOCKED:
        return None

    unlocked = replace(
        next_progress, status=ModuleProgressStatus.UNLOCKED, unlocked_at=_now()
    )
    await tx.progress.save_module_progress(unlocked)
    MODULE_UNLOCKS.inc()
    logger.info(
        "Unlocked module %s for enrollment=%s", next_module.id, enrollment_id
    )
    return unlocked


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_batch_progress(enrollment_id: UUID) -> BatchProgress:
    async with store.transaction() as tx:
        enrollment = await tx.enrollments.get(enrollment_id)
        if enrollment is None:
            raise NotFoundError("Enrollment not found")
        batch = await tx.batches.get(enrollment.batch_id)
        course_modules = await tx.catalog.list_modules(batch.course_id) if batch else []
        modules = await tx.progress.list_module_progress(enrollment_id)
        lessons = await tx.progress.list_lesson_progress(enrollment_id)

    order = {module.id: module.order_index for module in course_modules}
    modules.sort(key=lambda mp: order.get(mp.module_id, 0))

    total_modules = len(modules)
    overall = (
        round_half_up(sum(m.completion_percentage for m in modules) / total_modules)
        if total_modules
        else 0
    )
    return BatchProgress(
        enrollment_id=enrollment_id,
        overall_progress=overall,
        total_modules=total_modules,
        completed_modules=sum(
            1 for m in modules if m.status == ModuleProgressStatus.COMPLETED
        ),
        total_lessons=len(lessons),
        completed_lessons=sum(
            1 for lp in lessons if lp.status == LessonProgressStatus.COMPLETED
        ),
        modules=modules,
    )


async def get_module_progress(enrollment_id: UUID, module_id: UUID) -> ModuleDetail:
    async with store.transaction() as tx:
        module_progress = await tx.progress.get_module_progress(enrollment_id, module_id)
        if module_progress is None:
            raise NotFoundError("Module progress not found")
        module = await tx.catalog.get_module(module_id)
        if module is None:
            raise NotFoundError("Module not found")
        lessons = await tx.catalog.list_lessons(module_id)
        by_lesson = {
            lp.lesson_id: lp
            for lp in await tx.progress.list_lesson_progress(
                enrollment_id, [lesson.id for lesson in lessons]
            )
        }
    return ModuleDetail(
        module=module,
        progress=module_progress,
        lessons=[
            LessonWithProgress(lesson=lesson, progress=by_lesson.get(lesson.id))
            for lesson in lessons
        ],
    )
