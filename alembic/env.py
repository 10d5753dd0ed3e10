"""Alembic environment configuration.

Reads DATABASE_URL from app.core.config (same source as the running app)
and imports the table metadata for autogenerate support.  Migrations run
over the same asyncpg driver the service uses, so no second Postgres
driver is needed just for migrations.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context
from app.core.config import SETTINGS
from app.db.engine import Base

config = context.config

if SETTINGS.database_url:
    config.set_main_option("sqlalchemy.url", SETTINGS.database_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Registers every Row class on Base.metadata.
import app.db.tables  # noqa: E402, F401

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Emit SQL without a live database."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_sync(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(_run_sync)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
