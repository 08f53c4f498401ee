"""
Database connection and session management.

Async SQLAlchemy engine over SQLModel metadata, configured through the
DATABASE_URL environment variable. The engine is created on first use so
importing the application never requires a reachable database.
"""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel

from core.logging import get_logger

logger = get_logger(__name__)

DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
DB_ECHO = os.getenv("DB_ECHO", "false").lower() == "true"
USE_PGBOUNCER = os.getenv("USE_PGBOUNCER", "false").lower() == "true"

_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker] = None


def normalize_database_url(url: str) -> str:
    """Rewrite plain postgres URLs to the asyncpg driver."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    return url


def get_engine() -> AsyncEngine:
    """Return the process-wide engine, creating it on first call."""
    global _engine, _session_maker

    if _engine is None:
        url = normalize_database_url(os.getenv("DATABASE_URL", ""))
        if not url:
            raise RuntimeError("DATABASE_URL is not configured")

        kwargs = {"echo": DB_ECHO, "pool_pre_ping": True}
        if USE_PGBOUNCER:
            kwargs["poolclass"] = NullPool
        elif url.startswith("postgresql"):
            kwargs["pool_size"] = DB_POOL_SIZE
            kwargs["max_overflow"] = DB_MAX_OVERFLOW

        _engine = create_async_engine(url, **kwargs)
        _session_maker = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)
        logger.info("Database engine created", extra={"driver": url.split("://", 1)[0]})

    return _engine


def get_session_maker() -> async_sessionmaker:
    get_engine()
    return _session_maker


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a session that commits on success.

    The teardown runs after the response has been sent, so routes that write
    call ``session.commit()`` themselves before returning. Errors raised
    inside the route roll the session back.

    Usage:
        @router.get("/api/audits")
        async def list_audits(session: AsyncSession = Depends(get_session)):
            ...
    """
    async with get_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Session context for code running outside a request (CLI, cron).

    Usage:
        async with get_db_session() as session:
            profile = await session.get(Profile, user_id)
    """
    async with get_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create all tables. Intended for local development and first deploys."""
    import core.models_sql  # noqa: F401  registers the tables on SQLModel.metadata

    async with get_engine().begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine's connection pool."""
    global _engine, _session_maker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None
