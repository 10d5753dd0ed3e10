"""Async SQLAlchemy engine and session factory.

When DATABASE_URL is configured, provides:
- async engine for PostgreSQL via asyncpg
- async session factory used by SqlStore (app/db/store.py)
- FastAPI lifespan hook for startup/shutdown

When DATABASE_URL is None, engine and session factory are None and the
service runs on the in-memory store.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all table models."""


# --- Engine and session factory (None when no DATABASE_URL) ---

if SETTINGS.database_url:
    engine = create_async_engine(
        SETTINGS.database_url,
        echo=SETTINGS.is_dev,  # log SQL in dev only
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
    )
    async_session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
else:
    engine = None
    async_session_factory = None


async def ping_database() -> bool:
    """True when a trivial query round-trips.  Used by /ready."""
    if engine is None:
        return True
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Database ping failed")
        return False
    return True


@asynccontextmanager
async def lifespan_db():
    """Startup/shutdown hook for the database engine.

    Call from FastAPI's lifespan context manager.
    """
    if engine is None:
        logger.info("No DATABASE_URL configured; using the in-memory store")
        yield
        return

    logger.info("Database engine created: %s", engine.url)
    yield
    await engine.dispose()
    logger.info("Database engine disposed")
