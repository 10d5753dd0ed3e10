from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.batches import router as batches_router
from app.api.certificates import router as certificates_router
from app.api.enrollments import router as enrollments_router
from app.api.health import router as health_router
from app.api.metrics_endpoint import router as metrics_router
from app.api.payments import router as payments_router
from app.api.progress import router as progress_router
from app.core.config import SETTINGS
from app.core.errors import ServiceError
from app.core.logging import setup_logging
from app.db.engine import lifespan_db
from app.db.redis import lifespan_redis
from app.middleware.metrics import MetricsMiddleware
from app.middleware.request_context import RequestContextMiddleware

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order even if one side fails.
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="enrollment-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    # details stay in the log, the caller only sees code and message
    logger.warning(
        "%s %s failed: %s",
        request.method,
        request.url.path,
        exc,
        extra={"status_code": exc.status_code},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": exc.message}},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last-added runs first: RequestContext -> Metrics -> CORS -> route.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(batches_router)
app.include_router(enrollments_router)
app.include_router(payments_router)
app.include_router(progress_router)
app.include_router(certificates_router)

logger.info(
    "enrollment-service started  env=%s log_level=%s port=%d docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
)
