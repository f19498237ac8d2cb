"""Async SQLAlchemy engine and sessions for the account tables.

The service only reads accounts, roles and permissions and stamps the last
login time, so one request-scoped session per login is all it needs.
"""

import logging
from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from usermanager.core.config import settings

logger = logging.getLogger(__name__)

engine = create_async_engine(
    str(settings.database_url),
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_timeout=settings.db_pool_timeout,
    pool_recycle=settings.db_pool_recycle,
    pool_pre_ping=True,
)

async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; commits on success, rolls back otherwise."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except BaseException:
            # Includes CancelledError from aborted requests
            await session.rollback()
            raise


async def check_db_connection() -> bool:
    try:
        async with async_session_maker() as session:
            await session.execute(text("SELECT 1"))
            return True
    except (SQLAlchemyError, OSError) as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


async def dispose_engine() -> None:
    """Close pooled connections at shutdown."""
    await engine.dispose()
