"""Request id propagation and access logging.

Webhook, redirect and status-check calls for the same transaction can
arrive concurrently on one event loop, so their log lines interleave.
Each request gets an id (the caller's ``X-Request-ID`` or a fresh UUID)
held in a ContextVar; a root-logger filter stamps it on every record
emitted while that request is being served, and the id is echoed back
in the response header.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class _RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        return True


root_logger = logging.getLogger()
if not any(isinstance(f, _RequestContextFilter) for f in root_logger.filters):
    root_logger.addFilter(_RequestContextFilter())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request id and log one summary line per request.

    Server errors are logged at WARNING so they carry a source location
    in the text formatter; everything else is INFO.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        token = request_id_var.set(req_id)
        start = time.monotonic()
        try:
            response = await call_next(request)
            duration_ms = round((time.monotonic() - start) * 1000, 1)
            level = logging.WARNING if response.status_code >= 500 else logging.INFO
            logger.log(
                level,
                "%s %s -> %d (%.1fms)",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )
            response.headers["X-Request-ID"] = req_id
            return response
        finally:
            request_id_var.reset(token)
