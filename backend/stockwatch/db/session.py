"""Async engine and session factory for the tracker database."""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from stockwatch.config import settings


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an engine; SQLite connections get foreign key enforcement.

    Deleting a retailer or product relies on ON DELETE CASCADE, which
    SQLite ignores unless the pragma is set per connection.
    """
    if not url.startswith("sqlite"):
        return create_async_engine(url, echo=echo, pool_size=5, max_overflow=5, pool_pre_ping=True)

    sqlite_engine = create_async_engine(url, echo=echo)

    @event.listens_for(sqlite_engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return sqlite_engine


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)
