from __future__ import annotations

from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import StudentProfileRow
from app.models.profile import StudentProfile


class PgProfileRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, learner_id: str) -> StudentProfile | None:
        row = await self._session.get(StudentProfileRow, learner_id)
        if row is None:
            return None
        return StudentProfile(
            learner_id=row.learner_id,
            enrollment_codes=tuple(row.enrollment_codes),
            batch_ids=tuple(row.batch_ids),
            last_enrolled_at=row.last_enrolled_at,
        )

    async def upsert(self, profile: StudentProfile) -> None:
        values = {
            "learner_id": profile.learner_id,
            "enrollment_codes": list(profile.enrollment_codes),
            "batch_ids": list(profile.batch_ids),
            "last_enrolled_at": profile.last_enrolled_at,
        }
        stmt = (
            insert(StudentProfileRow)
            .values(values)
            .on_conflict_do_update(
                index_elements=[StudentProfileRow.learner_id],
                set_={k: v for k, v in values.items() if k != "learner_id"},
            )
        )
        await self._session.execute(stmt)
