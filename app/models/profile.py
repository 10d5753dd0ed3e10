from __future__ import annotations

import datetime
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class StudentProfile:
    """Denormalized learner summary, rebuilt from enrollments on activation."""

    learner_id: str
    enrollment_codes: tuple[str, ...] = ()
    batch_ids: tuple[str, ...] = ()
    last_enrolled_at: datetime.datetime | None = None
