"""Async database connection using SQLAlchemy (supports SQLite and PostgreSQL)."""

import asyncio
import logging
from contextlib import asynccontextmanager

from sqlalchemy.exc import InterfaceError, InvalidRequestError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel

from matchday.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def get_database_url(url: str) -> str:
    """Convert database URL to async format."""
    # SQLite
    if url.startswith("sqlite+aiosqlite://"):
        return url
    if url.startswith("sqlite"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    # PostgreSQL
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return url


def get_engine_kwargs(url: str) -> dict:
    """
    Engine options per backend.

    SQLite gets a fresh connection per session (NullPool): the phases of a run
    hold sessions concurrently and must not share one connection's transaction.
    """
    engine_kwargs = {
        "echo": False,
    }

    if url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        engine_kwargs["poolclass"] = NullPool
    else:
        engine_kwargs["pool_pre_ping"] = True
        engine_kwargs["pool_size"] = 5
        engine_kwargs["max_overflow"] = 10
        engine_kwargs["pool_recycle"] = 300
        engine_kwargs["pool_timeout"] = 30
        engine_kwargs["pool_reset_on_return"] = "rollback"
        # Kill statements running longer than 60s
        engine_kwargs["connect_args"] = {
            "server_settings": {"statement_timeout": "60000"}
        }
    return engine_kwargs


DATABASE_URL = get_database_url(settings.DATABASE_URL)

async_engine = create_async_engine(DATABASE_URL, **get_engine_kwargs(DATABASE_URL))

AsyncSessionLocal = sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def init_db() -> None:
    """Initialize database tables."""
    logger.info("Initializing database tables...")
    async with async_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables created successfully.")


async def close_db() -> None:
    """Close database connections."""
    logger.info("Closing database connections...")
    await async_engine.dispose()
    logger.info("Database connections closed.")


@asynccontextmanager
async def get_session_with_retry(max_retries: int = 3, retry_delay: float = 1.0):
    """
    Context manager that provides a session with automatic retry on connection errors.

    Used by the scheduled automation tick, which may hit stale pooled
    connections after a database restart.

    Retries only happen on session CREATION failure. If a connection drops
    DURING execution, the exception propagates to the caller.
    """
    current_delay = retry_delay
    session = None

    for attempt in range(max_retries):
        try:
            session = AsyncSessionLocal()
            await session.connection()
            break
        except (InterfaceError, OperationalError, InvalidRequestError) as e:
            if session is not None:
                await session.close()
                session = None

            if attempt < max_retries - 1:
                logger.warning(
                    f"Database connection error (attempt {attempt + 1}/{max_retries}): {e}. "
                    f"Retrying in {current_delay}s..."
                )
                await asyncio.sleep(current_delay)
                current_delay *= 2
                continue
            raise

    try:
        yield session
    finally:
        if session is not None:
            await session.close()
