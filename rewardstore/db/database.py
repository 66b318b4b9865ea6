"""
Database engine and session management.

One engine serves both the request-scoped reads (get_session) and the
redemption engine's own transactions. Pool sizing comes from settings;
SQLite URLs (tests, local demos) skip the pool options they don't accept.
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from rewardstore.config import settings
from rewardstore.models.db import Base


def build_engine(url: str) -> AsyncEngine:
    """Create an async engine for a database URL."""
    options: dict[str, Any] = {"echo": settings.debug}
    if not url.startswith("sqlite"):
        options.update(
            pool_pre_ping=True,
            pool_size=settings.db_pool_size,
            pool_timeout=settings.db_pool_timeout_seconds,
        )
    return create_async_engine(url, **options)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Session factory for an engine.

    expire_on_commit is off: domain models are built from rows after the
    transaction commits.
    """
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.database_url)
async_session_factory = build_session_factory(engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a database session.

    Used for reads. Purchases and equips open their own sessions
    through the redemption engine so each runs as one transaction.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            raise


async def ping(session: AsyncSession) -> bool:
    """True if the database answers a trivial query."""
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return False
    return True


async def init_db() -> None:
    """Create any missing tables. Called once at startup."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
