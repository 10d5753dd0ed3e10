from __future__ import annotations

import logging

from app.db.store import store
from app.models.enrollment import ACCESS_STATUSES
from app.models.profile import StudentProfile

logger = logging.getLogger(__name__)


async def sync_student_profile(learner_id: str) -> StudentProfile | None:
    """Rebuild the learner's profile summary from their enrollments.

    Runs after an activation has committed.  Best effort: the profile can
    always be rebuilt later, so a failure here is logged and returns None.
    """
    try:
        async with store.transaction() as tx:
            enrollments = await tx.enrollments.list_by_learner(
                learner_id, ACCESS_STATUSES
            )
            profile = StudentProfile(
                learner_id=learner_id,
                enrollment_codes=tuple(
                    e.enrollment_code for e in enrollments if e.enrollment_code
                ),
                batch_ids=tuple(str(e.batch_id) for e in enrollments),
                last_enrolled_at=max(
                    (e.enrolled_at for e in enrollments if e.enrolled_at),
                    default=None,
                ),
            )
            await tx.profiles.upsert(profile)
    except Exception:
        logger.exception("Failed to sync student profile for learner=%s", learner_id)
        return None
    return profile


async def get_student_profile(learner_id: str) -> StudentProfile | None:
    async with store.transaction() as tx:
        return await tx.profiles.get(learner_id)
