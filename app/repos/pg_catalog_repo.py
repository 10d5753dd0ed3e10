"""PostgreSQL implementation of CatalogRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import CourseModuleRow, CourseRow, LessonRow
from app.models.catalog import Course, CourseModule, Lesson


class PgCatalogRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_course(self, course_id: UUID) -> Course | None:
        row = await self._session.get(CourseRow, course_id)
        if row is None:
            return None
        return Course(id=row.id, slug=row.slug, title=row.title)

    async def get_module(self, module_id: UUID) -> CourseModule | None:
        row = await self._session.get(CourseModuleRow, module_id)
        if row is None:
            return None
        return _row_to_module(row)

    async def get_lesson(self, lesson_id: UUID) -> Lesson | None:
        row = await self._session.get(LessonRow, lesson_id)
        if row is None:
            return None
        return _row_to_lesson(row)

    async def list_modules(self, course_id: UUID) -> list[CourseModule]:
        stmt = (
            select(CourseModuleRow)
            .where(CourseModuleRow.course_id == course_id)
            .order_by(CourseModuleRow.order_index)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_module(r) for r in rows]

    async def list_lessons(self, module_id: UUID) -> list[Lesson]:
        stmt = (
            select(LessonRow)
            .where(LessonRow.module_id == module_id)
            .order_by(LessonRow.order_index)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_lesson(r) for r in rows]

    async def get_next_module(
        self, course_id: UUID, after_order_index: int
    ) -> CourseModule | None:
        stmt = (
            select(CourseModuleRow)
            .where(CourseModuleRow.course_id == course_id)
            .where(CourseModuleRow.order_index > after_order_index)
            .order_by(CourseModuleRow.order_index)
            .limit(1)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_module(row)

    async def add_course(self, course: Course) -> None:
        self._session.add(CourseRow(id=course.id, slug=course.slug, title=course.title))
        await self._session.flush()

    async def add_module(self, module: CourseModule) -> None:
        self._session.add(
            CourseModuleRow(
                id=module.id,
                course_id=module.course_id,
                order_index=module.order_index,
                title=module.title,
            )
        )
        await self._session.flush()

    async def add_lesson(self, lesson: Lesson) -> None:
        self._session.add(
            LessonRow(
                id=lesson.id,
                module_id=lesson.module_id,
                order_index=lesson.order_index,
                title=lesson.title,
                duration_seconds=lesson.duration_seconds,
            )
        )
        await self._session.flush()


def _row_to_module(row: CourseModuleRow) -> CourseModule:
    return CourseModule(
        id=row.id, course_id=row.course_id, order_index=row.order_index, title=row.title
    )


def _row_to_lesson(row: LessonRow) -> Lesson:
    return Lesson(
        id=row.id,
        module_id=row.module_id,
        order_index=row.order_index,
        title=row.title,
        duration_seconds=row.duration_seconds,
    )
