"""Read-only catalog port: course → ordered modules → ordered lessons.

The catalog is owned by the course-management side of the platform.
The enrollment core only reads it; the ``add_*`` methods exist for
seeding and tests.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from app.models.catalog import Course, CourseModule, Lesson


class CatalogRepo(Protocol):
    async def get_course(self, course_id: UUID) -> Course | None: ...
    async def get_module(self, module_id: UUID) -> CourseModule | None: ...
    async def get_lesson(self, lesson_id: UUID) -> Lesson | None: ...
    async def list_modules(self, course_id: UUID) -> list[CourseModule]: ...
    async def list_lessons(self, module_id: UUID) -> list[Lesson]: ...
    async def get_next_module(
        self, course_id: UUID, after_order_index: int
    ) -> CourseModule | None: ...
    async def add_course(self, course: Course) -> None: ...
    async def add_module(self, module: CourseModule) -> None: ...
    async def add_lesson(self, lesson: Lesson) -> None: ...


class InMemoryCatalogRepo:
    def __init__(self) -> None:
        self._courses: dict[UUID, Course] = {}
        self._modules: dict[UUID, CourseModule] = {}
        self._lessons: dict[UUID, Lesson] = {}

    async def get_course(self, course_id: UUID) -> Course | None:
        return self._courses.get(course_id)

    async def get_module(self, module_id: UUID) -> CourseModule | None:
        return self._modules.get(module_id)

    async def get_lesson(self, lesson_id: UUID) -> Lesson | None:
        return self._lessons.get(lesson_id)

    async def list_modules(self, course_id: UUID) -> list[CourseModule]:
        return sorted(
            (m for m in self._modules.values() if m.course_id == course_id),
            key=lambda m: m.order_index,
        )

    async def list_lessons(self, module_id: UUID) -> list[Lesson]:
        return sorted(
            (lesson for lesson in self._lessons.values() if lesson.module_id == module_id),
            key=lambda lesson: lesson.order_index,
        )

    async def get_next_module(
        self, course_id: UUID, after_order_index: int
    ) -> CourseModule | None:
        later = [
            m
            for m in self._modules.values()
            if m.course_id == course_id and m.order_index > after_order_index
        ]
        return min(later, key=lambda m: m.order_index, default=None)

    async def add_course(self, course: Course) -> None:
        self._courses[course.id] = course

    async def add_module(self, module: CourseModule) -> None:
        self._modules[module.id] = module

    async def add_lesson(self, lesson: Lesson) -> None:
        self._lessons[lesson.id] = lesson
