"""Alembic environment for the Field Observatory schema.

The connection URL comes from ``DATABASE_URL``, then ``sqlalchemy.url`` in
``alembic.ini`` (empty in the shipped file), then ``Settings`` / ``.env``.
"""

from __future__ import annotations

import asyncio
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

# The package import registers every table on Base.metadata.
import field_observatory.core.models  # noqa: F401
from field_observatory.core.models.base import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

_COMPARE = {"compare_type": True, "compare_server_default": True}


def _database_url() -> str:
    url = os.getenv("DATABASE_URL") or config.get_main_option("sqlalchemy.url")
    if url:
        return url
    from field_observatory.config.settings import get_settings  # noqa: PLC0415

    return get_settings().database_url


def run_migrations_offline() -> None:
    """Render the migration SQL to stdout instead of executing it."""
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_COMPARE,
    )
    with context.begin_transaction():
        context.run_migrations()


def _migrate(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, **_COMPARE)
    with context.begin_transaction():
        context.run_migrations()


async def _migrate_async() -> None:
    engine = create_async_engine(_database_url(), poolclass=NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(_migrate_async())
