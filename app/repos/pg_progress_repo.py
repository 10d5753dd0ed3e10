"""PostgreSQL implementation of ProgressRepo."""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import LessonProgressRow, ModuleProgressRow
from app.models.progress import (
    LessonProgress,
    LessonProgressStatus,
    ModuleProgress,
    ModuleProgressStatus,
)


class PgProgressRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def has_module_progress(self, enrollment_id: UUID) -> bool:
        stmt = select(
            exists().where(ModuleProgressRow.enrollment_id == enrollment_id)
        )
        return bool((await self._session.execute(stmt)).scalar())

    async def add_module_progress(self, records: Iterable[ModuleProgress]) -> None:
        values = [_module_values(r) for r in records]
        if not values:
            return
        stmt = (
            insert(ModuleProgressRow)
            .values(values)
            .on_conflict_do_nothing(index_elements=["enrollment_id", "module_id"])
        )
        await self._session.execute(stmt)

    async def get_module_progress(
        self, enrollment_id: UUID, module_id: UUID
    ) -> ModuleProgress | None:
        stmt = select(ModuleProgressRow).where(
            ModuleProgressRow.enrollment_id == enrollment_id,
            ModuleProgressRow.module_id == module_id,
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_module_progress(row)

    async def list_module_progress(self, enrollment_id: UUID) -> list[ModuleProgress]:
        stmt = select(ModuleProgressRow).where(
            ModuleProgressRow.enrollment_id == enrollment_id
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_module_progress(r) for r in rows]

    async def save_module_progress(self, record: ModuleProgress) -> None:
        values = _module_values(record)
        stmt = (
            insert(ModuleProgressRow)
            .values(values)
            .on_conflict_do_update(
                index_elements=["enrollment_id", "module_id"],
                set_={k: v for k, v in values.items() if k != "id"},
            )
        )
        await self._session.execute(stmt)

    async def get_lesson_progress(
        self, enrollment_id: UUID, lesson_id: UUID
    ) -> LessonProgress | None:
        stmt = select(LessonProgressRow).where(
            LessonProgressRow.enrollment_id == enrollment_id,
            LessonProgressRow.lesson_id == lesson_id,
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_lesson_progress(row)

    async def list_lesson_progress(
        self, enrollment_id: UUID, lesson_ids: Iterable[UUID] | None = None
    ) -> list[LessonProgress]:
        stmt = select(LessonProgressRow).where(
            LessonProgressRow.enrollment_id == enrollment_id
        )
        if lesson_ids is not None:
            stmt = stmt.where(LessonProgressRow.lesson_id.in_(list(lesson_ids)))
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_lesson_progress(r) for r in rows]

    async def save_lesson_progress(self, record: LessonProgress) -> None:
        values = {
            "id": record.id,
            "enrollment_id": record.enrollment_id,
            "lesson_id": record.lesson_id,
            "module_id": record.module_id,
            "status": record.status.value,
            "watch_time": record.watch_time,
            "last_position": record.last_position,
            "completed_at": record.completed_at,
        }
        stmt = (
            insert(LessonProgressRow)
            .values(values)
            .on_conflict_do_update(
                index_elements=["enrollment_id", "lesson_id"],
                set_={k: v for k, v in values.items() if k != "id"},
            )
        )
        await self._session.execute(stmt)


def _module_values(record: ModuleProgress) -> dict:
    return {
        "id": record.id,
        "enrollment_id": record.enrollment_id,
        "module_id": record.module_id,
        "status": record.status.value,
        "completion_percentage": record.completion_percentage,
        "unlocked_at": record.unlocked_at,
        "started_at": record.started_at,
        "completed_at": record.completed_at,
    }


def _row_to_module_progress(row: ModuleProgressRow) -> ModuleProgress:
    return ModuleProgress(
        id=row.id,
        enrollment_id=row.enrollment_id,
        module_id=row.module_id,
        status=ModuleProgressStatus(row.status),
        completion_percentage=row.completion_percentage,
        unlocked_at=row.unlocked_at,
        started_at=row.started_at,
        completed_at=row.completed_at,
    )


def _row_to_lesson_progress(row: LessonProgressRow) -> LessonProgress:
    return LessonProgress(
        id=row.id,
        enrollment_id=row.enrollment_id,
        lesson_id=row.lesson_id,
        module_id=row.module_id,
        status=LessonProgressStatus(row.status),
        watch_time=row.watch_time,
        last_position=row.last_position,
        completed_at=row.completed_at,
    )
