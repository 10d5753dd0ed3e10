from __future__ import annotations

from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import CounterRow


class PgCounterRepo:
    """Satisfies the CounterRepo Protocol with a single upsert per call."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def next_value(self, key: str) -> int:
        stmt = (
            insert(CounterRow)
            .values(key=key, value=1)
            .on_conflict_do_update(
                index_elements=[CounterRow.key],
                set_={"value": CounterRow.value + 1},
            )
            .returning(CounterRow.value)
        )
        return (await self._session.execute(stmt)).scalar_one()
