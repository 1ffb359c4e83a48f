"""PostgreSQL engine and sessions.

The engine is built once, on import, from :class:`~field_observatory.config.settings.Settings`.
Sessions never autocommit: :class:`~field_observatory.core.session_store.SqlAlchemySessionStore`
and the project/question services commit after every write, so a request
that fails halfway leaves nothing behind but what was already committed.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from field_observatory.config.settings import Settings, get_settings


def engine_from_settings(settings: Settings) -> AsyncEngine:
    # Pre-ping so a restarted database shows up as a reconnect, not a 503.
    return create_async_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
    )


async_engine = engine_from_settings(get_settings())

AsyncSessionLocal: async_sessionmaker[AsyncSession] = async_sessionmaker(
    bind=async_engine,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Open a session outside the request cycle.  Rolls back if the block raises."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, closed afterwards."""
    async with session_scope() as session:
        yield session
