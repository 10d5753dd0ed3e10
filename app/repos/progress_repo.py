from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol
from uuid import UUID

from app.models.progress import LessonProgress, ModuleProgress


class ProgressRepo(Protocol):
    async def has_module_progress(self, enrollment_id: UUID) -> bool: ...
    async def add_module_progress(self, records: Iterable[ModuleProgress]) -> None: ...
    async def get_module_progress(
        self, enrollment_id: UUID, module_id: UUID
    ) -> ModuleProgress | None: ...
    async def list_module_progress(self, enrollment_id: UUID) -> list[ModuleProgress]: ...
    async def save_module_progress(self, record: ModuleProgress) -> None: ...
    async def get_lesson_progress(
        self, enrollment_id: UUID, lesson_id: UUID
    ) -> LessonProgress | None: ...
    async def list_lesson_progress(
        self, enrollment_id: UUID, lesson_ids: Iterable[UUID] | None = None
    ) -> list[LessonProgress]: ...
    async def save_lesson_progress(self, record: LessonProgress) -> None: ...


class InMemoryProgressRepo:
    def __init__(self) -> None:
        self._modules: dict[tuple[UUID, UUID], ModuleProgress] = {}
        self._lessons: dict[tuple[UUID, UUID], LessonProgress] = {}

    async def has_module_progress(self, enrollment_id: UUID) -> bool:
        return any(key[0] == enrollment_id for key in self._modules)

    async def add_module_progress(self, records: Iterable[ModuleProgress]) -> None:
        # Existing (enrollment, module) rows win, like INSERT ... ON CONFLICT DO NOTHING.
        for record in records:
            self._modules.setdefault((record.enrollment_id, record.module_id), record)

    async def get_module_progress(
        self, enrollment_id: UUID, module_id: UUID
    ) -> ModuleProgress | None:
        return self._modules.get((enrollment_id, module_id))

    async def list_module_progress(self, enrollment_id: UUID) -> list[ModuleProgress]:
        return [mp for key, mp in self._modules.items() if key[0] == enrollment_id]

    async def save_module_progress(self, record: ModuleProgress) -> None:
        self._modules[(record.enrollment_id, record.module_id)] = record

    async def get_lesson_progress(
        self, enrollment_id: UUID, lesson_id: UUID
    ) -> LessonProgress | None:
        return self._lessons.get((enrollment_id, lesson_id))

    async def list_lesson_progress(
        self, enrollment_id: UUID, lesson_ids: Iterable[UUID] | None = None
    ) -> list[LessonProgress]:
        wanted = frozenset(lesson_ids) if lesson_ids is not None else None
        return [
            lp
            for key, lp in self._lessons.items()
            if key[0] == enrollment_id and (wanted is None or key[1] in wanted)
        ]

    async def save_lesson_progress(self, record: LessonProgress) -> None:
        self._lessons[(record.enrollment_id, record.lesson_id)] = record
