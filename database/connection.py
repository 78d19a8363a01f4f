"""
Database connection management.

Provides the shared async engine, the session factory and a context manager
used by services and workers:

    async with get_async_session() as session:
        ...
        await session.commit()

FastAPI routes receive a session through the `get_db_session` dependency so
tests can override it.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from shared.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
    connect_args={"timeout": settings.DATABASE_TIMEOUT_SECONDS},
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@asynccontextmanager
async def get_async_session() -> AsyncIterator[AsyncSession]:
    """
    Yield a session, rolling back on error and always closing it.

    Callers commit explicitly.
    """
    session = AsyncSessionLocal()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def get_db_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency wrapper around get_async_session()."""
    async with get_async_session() as session:
        yield session
