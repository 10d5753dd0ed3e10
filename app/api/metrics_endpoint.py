"""Prometheus scrape endpoint.

Serves the default registry: HTTP metrics from MetricsMiddleware plus
the enrollment, payment, gateway and queue metrics in app/core/metrics.py.
Keep it off the public ingress in production; webhook outcome counts
are not something the internet needs to see.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
