"""Async database engine and transaction boundary."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import lru_cache

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from tenantguard.config.settings import get_settings

logger = structlog.get_logger(__name__)


@lru_cache
def get_engine() -> AsyncEngine:
    """Return a cached async database engine (singleton per process)."""
    settings = get_settings()
    if settings.database_url.startswith("sqlite"):
        return create_async_engine(settings.database_url, echo=settings.debug)
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


@asynccontextmanager
async def unit_of_work(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Run a block inside one database transaction.

    Commits when the block exits normally and rolls back on any exception,
    including ``asyncio.CancelledError``, so a cancelled request never
    leaves partial writes behind.
    """
    async with AsyncSession(engine, expire_on_commit=False) as session:
        try:
            async with session.begin():
                yield session
        except BaseException as exc:
            logger.debug("unit_of_work_rolled_back", error=type(exc).__name__)
            raise


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create all tables (for dev/testing only; use migrations in production)."""
    # Registers the table models on SQLModel.metadata
    from tenantguard.models import database as _models  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
