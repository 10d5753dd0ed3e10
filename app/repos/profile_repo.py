from __future__ import annotations

from typing import Protocol

from app.models.profile import StudentProfile


class ProfileRepo(Protocol):
    async def get(self, learner_id: str) -> StudentProfile | None: ...
    async def upsert(self, profile: StudentProfile) -> None: ...


class InMemoryProfileRepo:
    def __init__(self) -> None:
        self._by_learner: dict[str, StudentProfile] = {}

    async def get(self, learner_id: str) -> StudentProfile | None:
        return self._by_learner.get(learner_id)

    async def upsert(self, profile: StudentProfile) -> None:
        self._by_learner[profile.learner_id] = profile
