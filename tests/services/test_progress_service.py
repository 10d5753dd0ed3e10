from __future__ import annotations

import asyncio

import pytest

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models.progress import LessonProgressStatus, ModuleProgressStatus
from app.services import enrollment_service, progress_service
from app.services.progress_service import round_half_up
from tests.conftest import LEARNER, seed_catalog


def _active_enrollment(seeded, learner: str = LEARNER):
    pending = asyncio.run(
        enrollment_service.initiate_enrollment(learner, seeded.batch.id)
    ).enrollment
    return asyncio.run(enrollment_service.confirm_enrollment(pending.id, None))


def _watch(enrollment_id, lesson, seconds: float, position: float | None = None):
    return asyncio.run(
        progress_service.record_lesson_progress(
            enrollment_id, lesson.id, seconds, seconds if position is None else position
        )
    )


def _module_status(enrollment_id, module):
    detail = asyncio.run(progress_service.get_module_progress(enrollment_id, module.id))
    return detail.progress


def test_round_half_up_rounds_halves_away_from_even() -> None:
    assert round_half_up(2.5) == 3
    assert round_half_up(16.5) == 17
    assert round_half_up(33.33) == 33


def test_below_threshold_lesson_stays_in_progress() -> None:
    seeded = seed_catalog()
    enrollment = _active_enrollment(seeded)

    progress = _watch(enrollment.id, seeded.lessons[0][0], 89)

    assert progress.status == LessonProgressStatus.IN_PROGRESS
    module = _module_status(enrollment.id, seeded.modules[0])
    assert module.status == ModuleProgressStatus.UNLOCKED
    assert module.completion_percentage == 0


def test_ninety_percent_completes_lesson_and_starts_module() -> None:
    seeded = seed_catalog()
    enrollment = _active_enrollment(seeded)

    progress = _watch(enrollment.id, seeded.lessons[0][0], 90)

    assert progress.status == LessonProgressStatus.COMPLETED
    assert progress.completed_at is not None
    module = _module_status(enrollment.id, seeded.modules[0])
    assert module.status == ModuleProgressStatus.IN_PROGRESS
    assert module.completion_percentage == 50
    assert module.started_at is not None


def test_watch_time_never_decreases() -> None:
    seeded = seed_catalog()
    enrollment = _active_enrollment(seeded)
    lesson = seeded.lessons[0][0]

    _watch(enrollment.id, lesson, 95)
    rewound = _watch(enrollment.id, lesson, 10)

    assert rewound.watch_time == 95
    assert rewound.last_position == 10
    assert rewound.status == LessonProgressStatus.COMPLETED


def test_completing_a_module_unlocks_the_next() -> None:
    seeded = seed_catalog()
    enrollment = _active_enrollment(seeded)

    for lesson in seeded.lessons[0]:
        _watch(enrollment.id, lesson, 100)

    first = _module_status(enrollment.id, seeded.modules[0])
    second = _module_status(enrollment.id, seeded.modules[1])
    assert first.status == ModuleProgressStatus.COMPLETED
    assert first.completion_percentage == 100
    assert first.completed_at is not None
    assert second.status == ModuleProgressStatus.UNLOCKED
    assert second.unlocked_at is not None


def test_locked_module_rejects_progress() -> None:
    seeded = seed_catalog()
    enrollment = _active_enrollment(seeded)

    with pytest.raises(ConflictError, match="locked"):
        _watch(enrollment.id, seeded.lessons[1][0], 50)


def test_unpaid_enrollment_has_no_content_access() -> None:
    seeded = seed_catalog()
    pending = asyncio.run(
        enrollment_service.initiate_enrollment(LEARNER, seeded.batch.id)
    ).enrollment

    with pytest.raises(ConflictError, match="not accessible"):
        _watch(pending.id, seeded.lessons[0][0], 50)


def test_lesson_from_another_course_is_not_found() -> None:
    seeded = seed_catalog()
    other = seed_catalog(slug="other-course")
    enrollment = _active_enrollment(seeded)

    with pytest.raises(NotFoundError):
        _watch(enrollment.id, other.lessons[0][0], 50)


def test_negative_watch_time_is_rejected() -> None:
    seeded = seed_catalog()
    enrollment = _active_enrollment(seeded)
    with pytest.raises(ValidationError):
        _watch(enrollment.id, seeded.lessons[0][0], -1)


def test_complete_lesson_handles_lessons_without_duration() -> None:
    seeded = seed_catalog([[None], [100.0]])
    enrollment = _active_enrollment(seeded)
    reading = seeded.lessons[0][0]

    # watching never completes a lesson with no duration
    assert _watch(enrollment.id, reading, 500).status == LessonProgressStatus.IN_PROGRESS

    done = asyncio.run(progress_service.complete_lesson(enrollment.id, reading.id))
    assert done.status == LessonProgressStatus.COMPLETED
    assert _module_status(enrollment.id, seeded.modules[1]).status == (
        ModuleProgressStatus.UNLOCKED
    )


def test_batch_progress_averages_module_percentages() -> None:
    seeded = seed_catalog([[100.0, 100.0, 100.0], [100.0]])
    enrollment = _active_enrollment(seeded)
    _watch(enrollment.id, seeded.lessons[0][0], 100)

    summary = asyncio.run(progress_service.get_batch_progress(enrollment.id))

    # module 1 at 33%, module 2 at 0% -> 16.5 rounds up
    assert summary.overall_progress == 17
    assert summary.total_modules == 2
    assert summary.completed_modules == 0
    assert summary.completed_lessons == 1
    assert [m.module_id for m in summary.modules] == [m.id for m in seeded.modules]


def test_module_detail_defaults_untouched_lessons_to_not_started() -> None:
    seeded = seed_catalog()
    enrollment = _active_enrollment(seeded)
    _watch(enrollment.id, seeded.lessons[0][0], 30)

    detail = asyncio.run(
        progress_service.get_module_progress(enrollment.id, seeded.modules[0].id)
    )

    assert [item.status for item in detail.lessons] == [
        LessonProgressStatus.IN_PROGRESS,
        LessonProgressStatus.NOT_STARTED,
    ]


def test_initialize_is_idempotent() -> None:
    seeded = seed_catalog()
    enrollment = _active_enrollment(seeded)

    again = asyncio.run(
        progress_service.initialize_for_enrollment(enrollment.id, seeded.batch.id)
    )
    assert len(again) == 2
    assert sum(m.status == ModuleProgressStatus.UNLOCKED for m in again) == 1


def test_course_without_modules_initializes_nothing() -> None:
    seeded = seed_catalog([])
    enrollment = _active_enrollment(seeded)

    summary = asyncio.run(progress_service.get_batch_progress(enrollment.id))
    assert summary.total_modules == 0
    assert summary.overall_progress == 0


def test_recompute_and_unlock_are_idempotent() -> None:
    seeded = seed_catalog()
    enrollment = _active_enrollment(seeded)
    for lesson in seeded.lessons[0]:
        _watch(enrollment.id, lesson, 100)

    again = asyncio.run(
        progress_service.recompute_module(enrollment.id, seeded.modules[0].id)
    )
    assert again.status == ModuleProgressStatus.COMPLETED

    # second module is already unlocked, last module has no successor
    assert asyncio.run(
        progress_service.unlock_next(enrollment.id, seeded.modules[0].id)
    ) is None
    assert asyncio.run(
        progress_service.unlock_next(enrollment.id, seeded.modules[1].id)
    ) is None
