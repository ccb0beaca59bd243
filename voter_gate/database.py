"""
Database Connection and Session Management

This module handles database connectivity using SQLAlchemy's async engine.
SQLite (aiosqlite) is the default; any async driver URL works.
"""
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy import text
import logging

from voter_gate.config import DATABASE_URL, DB_POOL_SIZE, DB_MAX_OVERFLOW

logger = logging.getLogger(__name__)

# Base class for ORM models
Base = declarative_base()


def build_engine(url: str = DATABASE_URL) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases."""
    kwargs = {"echo": False, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        kwargs.update(pool_size=DB_POOL_SIZE, max_overflow=DB_MAX_OVERFLOW)
    return create_async_engine(url, **kwargs)


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine()

# Session factory
async_session_maker = build_session_maker(engine)


async def init_db(bind: AsyncEngine = engine):
    """Verify connectivity and create tables if missing."""
    try:
        async with bind.begin() as conn:
            await conn.execute(text("SELECT 1"))
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database connection established successfully")
    except Exception as e:
        logger.error(f"Failed to connect to database: {e}")
        raise


async def close_db(bind: AsyncEngine = engine):
    """Close database connection pool."""
    await bind.dispose()
    logger.info("Database connection pool closed")
