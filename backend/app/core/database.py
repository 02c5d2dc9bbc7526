"""
Database layer — async PostgreSQL via SQLAlchemy 2.0 + asyncpg.

Provides:
    • Lazily-created async engine and session factory
    • Base model for ORM entities (see ``backend.app.alerts.tables``)
    • Table creation / disposal hooks for the app lifespan

Only used when ``PERSISTENCE_BACKEND=database``; the in-memory stores
need none of this, so the engine is not built at import time.

Usage:
    from backend.app.core.database import get_session_factory

    async with get_session_factory()() as session:
        result = await session.execute(select(PanicAlertRow))
"""

from __future__ import annotations

import logging
from functools import lru_cache

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


# ── Engine ──
@lru_cache()
def get_engine() -> AsyncEngine:
    """Create the async engine on first use."""
    return create_async_engine(
        settings.DATABASE_URL,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        echo=settings.DATABASE_ECHO,
        future=True,
    )


# ── Session Factory ──
@lru_cache()
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
    )


# ── Lifecycle ──
async def init_db() -> None:
    """Create all tables (dev/test only — use Alembic in production)."""
    from backend.app.alerts import tables  # noqa: F401  registers mappers

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def close_db() -> None:
    """Dispose engine connections."""
    await get_engine().dispose()
    logger.info("Database connections closed")
