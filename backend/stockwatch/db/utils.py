"""Database utility functions."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from stockwatch.db.session import async_session_factory, engine
from stockwatch.models import Base

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession] = async_session_factory,
) -> AsyncIterator[AsyncSession]:
    """Open a session that commits on success and rolls back on error.

    Usage:
        async with session_scope() as db:
            await ProductService(db).create_product("Widget")
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(target: AsyncEngine = engine) -> None:
    """Create all tables that do not exist yet."""
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_tables_ready", tables=sorted(Base.metadata.tables))


async def check_database_health(
    factory: async_sessionmaker[AsyncSession] = async_session_factory,
) -> dict[str, bool | str]:
    """Check if database is accessible and responsive.

    Returns:
        dict with 'healthy' boolean and optional 'error' message
    """
    try:
        async with factory() as session:
            await session.execute(text("SELECT 1"))
            return {"healthy": True}
    except Exception as e:
        logger.warning("database_health_check_failed", error=str(e))
        return {"healthy": False, "error": str(e)}
