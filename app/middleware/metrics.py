"""Prometheus HTTP metrics for every request.

ENDPOINT LABEL
--------------
Most paths here carry ids (``/v1/enrollments/<uuid>``,
``/v1/payments/TXN-.../status-check``).  Labelling by the raw URL would
create one time series per enrollment, so the label is the matched
route template (``/v1/enrollments/{enrollment_id}``).  Requests that
match no route are bucketed as ``unmatched``.
"""

from __future__ import annotations

import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Match

from app.core.metrics import ACTIVE_REQUESTS, REQUEST_COUNT, REQUEST_DURATION

_UNMATCHED = "unmatched"


def route_template(request: Request) -> str:
    """The path template of the route that handles ``request``."""
    for route in request.app.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "path", _UNMATCHED)
    return _UNMATCHED


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # scrapes would otherwise count themselves
        if request.url.path == "/metrics":
            return await call_next(request)

        endpoint = route_template(request)
        ACTIVE_REQUESTS.inc()
        start = time.monotonic()
        status_code = "500"
        try:
            response = await call_next(request)
            status_code = str(response.status_code)
        finally:
            ACTIVE_REQUESTS.dec()
            REQUEST_COUNT.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=status_code,
            ).inc()
            REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(
                time.monotonic() - start
            )
        return response
