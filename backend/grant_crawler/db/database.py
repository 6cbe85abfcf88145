"""
Database connection and session management.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from grant_crawler.core.config import settings
from grant_crawler.core.exceptions import PersistenceError

logger = structlog.get_logger()


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with driver-appropriate pool settings."""
    kwargs: dict[str, Any] = {"echo": echo}

    if database_url.startswith("sqlite"):
        # In-memory SQLite must share one connection across sessions
        if ":memory:" in database_url or database_url.endswith("://"):
            kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
            pool_recycle=3600,
            connect_args={
                "command_timeout": 60,
                "server_settings": {
                    "application_name": settings.app_name.lower().replace(" ", "_"),
                    "jit": "off",
                },
            },
        )

    return create_async_engine(database_url, **kwargs)


try:
    engine = build_engine(settings.database_url, echo=settings.debug)
    logger.info("Database engine created successfully")
except Exception as e:
    logger.error("Failed to create database engine", error=str(e))
    raise

# Session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@asynccontextmanager
async def get_db_session(
    session_maker: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for a database session outside FastAPI dependencies.

    Any SQLAlchemy error is rolled back and re-raised as PersistenceError.
    """
    session = (session_maker or async_session_maker)()
    try:
        yield session
    except SQLAlchemyError as e:
        logger.error("Database error in session", error=str(e))
        await session.rollback()
        raise PersistenceError(f"Database operation failed: {e}", original_error=e) from e
    finally:
        await session.close()


async def init_db(db_engine: AsyncEngine | None = None) -> None:
    """Create tables that do not exist yet."""
    db_engine = db_engine or engine
    try:
        async with db_engine.begin() as conn:
            await conn.run_sync(lambda sync_conn: Base.metadata.create_all(sync_conn, checkfirst=True))
        logger.info("Database tables initialized")
    except Exception as e:
        error_str = str(e)
        # Another worker created the tables between our check and create
        if "duplicate key value violates unique constraint" in error_str:
            logger.info("Database tables already created by another worker")
        else:
            logger.error("Failed to initialize database", error=error_str)
            raise


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()


async def check_database_health(db_engine: AsyncEngine | None = None) -> bool:
    """Check database connectivity and health"""
    try:
        async with (db_engine or engine).begin() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return False
