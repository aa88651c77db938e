from typing import Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .config import settings

# Base class for models
Base = declarative_base()


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Create the async engine, with SQLite optimizations when applicable"""
    url = database_url or settings.DATABASE_URL
    is_sqlite = url.startswith("sqlite")

    engine = create_async_engine(
        url,
        connect_args={"timeout": 30} if is_sqlite else {},
        pool_pre_ping=True
    )

    if is_sqlite:
        # Enable WAL mode and foreign keys for SQLite
        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            if ":memory:" not in url:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    return engine


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create all tables"""
    from . import models  # noqa: F401  registers the tables on Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
