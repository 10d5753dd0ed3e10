from __future__ import annotations

import datetime
from dataclasses import dataclass
from enum import StrEnum
from uuid import UUID, uuid4

# Watch time at or above this share of the lesson duration completes it.
LESSON_COMPLETION_THRESHOLD = 0.9


class ModuleProgressStatus(StrEnum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class LessonProgressStatus(StrEnum):
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


# No regression edges: a module never goes back to locked, a completed
# module never reopens.
MODULE_TRANSITIONS: dict[ModuleProgressStatus, frozenset[ModuleProgressStatus]] = {
    ModuleProgressStatus.LOCKED: frozenset({ModuleProgressStatus.UNLOCKED}),
    ModuleProgressStatus.UNLOCKED: frozenset(
        {ModuleProgressStatus.IN_PROGRESS, ModuleProgressStatus.COMPLETED}
    ),
    ModuleProgressStatus.IN_PROGRESS: frozenset({ModuleProgressStatus.COMPLETED}),
    ModuleProgressStatus.COMPLETED: frozenset(),
}

LESSON_TRANSITIONS: dict[LessonProgressStatus, frozenset[LessonProgressStatus]] = {
    LessonProgressStatus.NOT_STARTED: frozenset(
        {LessonProgressStatus.IN_PROGRESS, LessonProgressStatus.COMPLETED}
    ),
    LessonProgressStatus.IN_PROGRESS: frozenset({LessonProgressStatus.COMPLETED}),
    LessonProgressStatus.COMPLETED: frozenset(),
}


@dataclass(frozen=True, slots=True)
class ModuleProgress:
    id: UUID
    enrollment_id: UUID
    module_id: UUID
    status: ModuleProgressStatus = ModuleProgressStatus.LOCKED
    completion_percentage: int = 0
    unlocked_at: datetime.datetime | None = None
    started_at: datetime.datetime | None = None
    completed_at: datetime.datetime | None = None

    @staticmethod
    def new(
        *,
        enrollment_id: UUID,
        module_id: UUID,
        unlocked_at: datetime.datetime | None = None,
    ) -> ModuleProgress:
        return ModuleProgress(
            id=uuid4(),
            enrollment_id=enrollment_id,
            module_id=module_id,
            status=(
                ModuleProgressStatus.UNLOCKED
                if unlocked_at is not None
                else ModuleProgressStatus.LOCKED
            ),
            unlocked_at=unlocked_at,
        )


@dataclass(frozen=True, slots=True)
class LessonProgress:
    """Per-(enrollment, lesson) playback state.

    ``watch_time`` is cumulative and never decreases.
    """

    id: UUID
    enrollment_id: UUID
    lesson_id: UUID
    module_id: UUID
    status: LessonProgressStatus = LessonProgressStatus.NOT_STARTED
    watch_time: float = 0.0
    last_position: float = 0.0
    completed_at: datetime.datetime | None = None

    @staticmethod
    def new(*, enrollment_id: UUID, lesson_id: UUID, module_id: UUID) -> LessonProgress:
        return LessonProgress(
            id=uuid4(),
            enrollment_id=enrollment_id,
            lesson_id=lesson_id,
            module_id=module_id,
        )
