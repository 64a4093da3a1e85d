"""
Database connection and session management.

Uses SQLAlchemy async. The engine and session factory are created lazily on
first use so importing this module never opens a connection (Celery forks
workers after import).
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, AsyncEngine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()

# Global singletons - created once, reused forever
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _database_url() -> str:
    # Ensure URL uses asyncpg driver
    url = settings.DATABASE_URL
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def get_engine() -> AsyncEngine:
    """Get the database engine (singleton - created once, reused)."""
    global _engine
    if _engine is None:
        _engine = create_async_engine(
            _database_url(),
            echo=False,
            pool_pre_ping=True,  # Verify connection is alive before checkout
        )
        logger.info("Database engine created")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the async session factory (singleton - created once, reused)."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,  # Don't auto-flush, we control when to commit
        )
    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield an async database session.

    Usage:
        async with get_session() as session:
            result = await session.execute(query)
            await session.commit()  # Explicit commit if needed

    Any uncommitted changes are rolled back on error.
    """
    factory = get_session_factory()
    session: AsyncSession = factory()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Create all tables on ``engine`` (the shared engine by default)."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def dispose_engine() -> None:
    """
    Drop the engine without awaiting connection close.

    Pooled connections belong to the event loop that opened them; a new loop
    (each Celery task run) must not reuse them.
    """
    global _engine, _session_factory
    if _engine is not None:
        _engine.sync_engine.dispose(close=False)
        _engine = None
        _session_factory = None
