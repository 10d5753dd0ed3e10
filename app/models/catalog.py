from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class Course:
    id: UUID
    slug: str
    title: str

    @staticmethod
    def new(*, slug: str, title: str) -> Course:
        return Course(id=uuid4(), slug=slug, title=title)


@dataclass(frozen=True, slots=True)
class CourseModule:
    """A unit of a course.  Modules unlock in ``order_index`` order."""

    id: UUID
    course_id: UUID
    order_index: int
    title: str

    @staticmethod
    def new(*, course_id: UUID, order_index: int, title: str) -> CourseModule:
        return CourseModule(
            id=uuid4(), course_id=course_id, order_index=order_index, title=title
        )


@dataclass(frozen=True, slots=True)
class Lesson:
    id: UUID
    module_id: UUID
    order_index: int
    title: str
    duration_seconds: float | None = None  # None for non-video lessons

    @staticmethod
    def new(
        *,
        module_id: UUID,
        order_index: int,
        title: str,
        duration_seconds: float | None = None,
    ) -> Lesson:
        return Lesson(
            id=uuid4(),
            module_id=module_id,
            order_index=order_index,
            title=title,
            duration_seconds=duration_seconds,
        )
