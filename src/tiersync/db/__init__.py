"""
Database Module

Async engine lifecycle and the unit-of-work session used by the customer
store. The schema lives in ``tiersync.db.models``.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
import structlog

from tiersync.config import Settings, settings

logger = structlog.get_logger()


class Base(DeclarativeBase):
    """Declarative base for the users, customers and event ledger tables."""


# ══════════════════════════════════════════════════════════════
# Engine Lifecycle
# ══════════════════════════════════════════════════════════════

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


async def init_db(config: Settings | None = None) -> None:
    """Open the connection pool. Defaults to the process settings."""
    global _engine, _session_factory

    config = config or settings
    _engine = create_async_engine(
        config.async_database_url,
        pool_size=config.database_pool_size,
        max_overflow=config.database_max_overflow,
        echo=config.database_echo,
        pool_pre_ping=True,
    )
    _session_factory = async_sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info(
        "Database pool opened",
        pool_size=config.database_pool_size,
        max_overflow=config.database_max_overflow,
    )


async def close_db() -> None:
    """Dispose of the pool if one is open."""
    global _engine, _session_factory

    if _engine is None:
        return

    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("Database pool closed")


async def create_schema() -> None:
    """Create any missing tables. Existing tables are left untouched."""
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database schema ensured", tables=sorted(Base.metadata.tables))


# ══════════════════════════════════════════════════════════════
# Unit of Work
# ══════════════════════════════════════════════════════════════


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    One transaction.

    Commits when the block exits cleanly. Any exception, including one raised
    by the commit itself, rolls back and propagates.
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# Import models to ensure they're registered with Base
from tiersync.db.models import (
    CustomerModel,
    ProcessedWebhookEventModel,
    UserModel,
)

__all__ = [
    "Base",
    "init_db",
    "close_db",
    "create_schema",
    "get_session",
    # Models
    "CustomerModel",
    "ProcessedWebhookEventModel",
    "UserModel",
]
