"""Alembic environment for the transfer ledger.

Resolves the target database the same way the application does (``DATABASE_URL``
from the process environment or ``.env``) and migrates through the async
engine: asyncpg for PostgreSQL, aiosqlite for SQLite.
"""

from __future__ import annotations

import asyncio
import os
from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import pool
from sqlalchemy.engine import Connection

from transfer_ledger.storage.database import create_async_db_engine
from transfer_ledger.storage.models import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

load_dotenv(override=False)

target_metadata = Base.metadata


def _resolve_url() -> str:
    """``SQLALCHEMY_DATABASE_URL`` > ``DATABASE_URL`` > ``sqlalchemy.url`` in alembic.ini."""
    for name in ("SQLALCHEMY_DATABASE_URL", "DATABASE_URL"):
        value = os.environ.get(name)
        if value:
            return os.path.expandvars(value)
    url = config.get_main_option("sqlalchemy.url")
    if not url:
        raise RuntimeError("No database URL: set DATABASE_URL or sqlalchemy.url")
    return url


def _configure(**kwargs: object) -> None:
    url = _resolve_url()
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        # SQLite cannot ALTER most column properties in place.
        render_as_batch=url.startswith("sqlite"),
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL to stdout without connecting."""
    _configure(url=_resolve_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def _migrate(connection: Connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Apply migrations over a short-lived async engine."""
    engine = create_async_db_engine(_resolve_url(), poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
