"""Health and readiness endpoints.

LIVENESS vs READINESS
----------------------
  /health (liveness):
    "Is this process alive?"  Always 200 while Python can answer; the
    body reports per-dependency status.  A failing liveness probe gets
    the container restarted, which is too aggressive for a Redis blip.

  /ready (readiness):
    "Can this instance take traffic?"  503 when the database is
    unreachable: every enrollment and payment operation needs it.
    Redis is NOT critical: notifications are best effort, so a Redis
    outage degrades /health but keeps the instance in rotation.
"""

from __future__ import annotations

from fastapi import APIRouter, Response

from app.db.engine import engine, ping_database
from app.db.redis import ping_redis, redis_pool

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    checks: dict[str, str] = {}
    overall = "ok"

    if engine is not None:
        checks["database"] = "ok" if await ping_database() else "degraded"
    else:
        checks["database"] = "in_memory"

    if redis_pool is not None:
        checks["redis"] = "ok" if await ping_redis() else "degraded"
    else:
        checks["redis"] = "not_configured"

    if "degraded" in checks.values():
        overall = "degraded"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    if not await ping_database():
        return Response(status_code=503)
    return Response(status_code=200)
