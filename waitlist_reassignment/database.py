"""
Engine and session management.

Services commit their own units of work, so the request-scoped session never
commits on its way out: anything still pending when a handler returns or
raises is rolled back.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
    AsyncEngine,
)

from .config import get_settings
from .models import Base

logger = logging.getLogger(__name__)

# Set by init_database() in the API process
engine: AsyncEngine | None = None
async_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_database_engine(database_url: str | None = None) -> AsyncEngine:
    """Build an engine for ``database_url`` or the configured URL.

    SQLite (tests, local runs) gets the driver's default pool. Postgres gets a
    bounded pool shared by request handlers, offer cascades and the sweeper.
    """
    settings = get_settings()
    url = database_url or settings.database_url

    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.debug)

    return create_async_engine(
        url,
        echo=settings.debug,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
        connect_args={"server_settings": {"application_name": "waitlist_reassignment"}},
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: services hand committed rows back to the routers
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_database(create_tables: bool = True) -> None:
    """Create the process-wide engine and session factory."""
    global engine, async_session_factory

    engine = create_database_engine()
    async_session_factory = create_session_factory(engine)

    if create_tables:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    logger.info(f"Database ready ({engine.url.get_backend_name()})")


async def close_database() -> None:
    global engine, async_session_factory

    if engine is None:
        return
    await engine.dispose()
    engine = None
    async_session_factory = None
    logger.info("Database connections closed")


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Open a session from the process-wide factory.

    Work the caller did not commit is discarded on exit.
    """
    if async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with async_session_factory() as session:
        try:
            yield session
        finally:
            if session.in_transaction():
                await session.rollback()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding one session per request."""
    async with get_db_session() as session:
        yield session
