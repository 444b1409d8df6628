"""
Database Connection Module
Handles PostgreSQL connection using SQLAlchemy async engine.
"""

from functools import lru_cache
from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from package_deployer.core.config import get_settings


# Base class for all our models
class Base(DeclarativeBase):
    pass


def create_engine(database_url: Optional[str] = None, **kwargs) -> AsyncEngine:
    """
    Build an async engine for the given URL.

    PostgreSQL URLs get a bounded connection pool; other dialects
    (SQLite in tests) use their defaults.
    """
    settings = get_settings()
    url = database_url or settings.database_url
    options = {"echo": settings.database_echo}
    if url.startswith("postgresql"):
        options.update(
            pool_size=5,  # Connection pool size
            max_overflow=10,  # Extra connections when pool is full
            pool_pre_ping=True,
        )
    options.update(kwargs)
    return create_async_engine(url, **options)


@lru_cache()
def get_engine() -> AsyncEngine:
    """Get the application-wide engine (created on first use)."""
    return create_engine()


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to an engine."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False  # Objects remain accessible after commit
    )


@lru_cache()
def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get the application-wide session factory."""
    return create_session_maker(get_engine())


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """
    Create all tables in database.
    Called once at application startup outside development mode.
    """
    # Register models on Base.metadata
    from package_deployer import models  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Close pooled connections if the engine was ever created."""
    if get_engine.cache_info().currsize:
        await get_engine().dispose()
