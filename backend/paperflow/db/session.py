"""
Database engine and session management.

Flow:
  1. The worker process calls get_session_factory() once; the engine is
     built lazily from settings on first use and cached.
  2. Every unit of pipeline work opens its own session + transaction via
     session_scope() (or a UnitOfWork built on the same factory).
  3. The transaction commits when the block exits cleanly and rolls back
     when it raises; the connection then returns to the pool.

Tests build their own engine (SQLite/aiosqlite) and pass its factory
explicitly; nothing here is required at import time.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from paperflow.core.config import settings
from paperflow.models.documents import Base

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    return create_async_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,          # detect stale connections before use
        pool_recycle=3600,           # recycle connections every hour
        echo=settings.db_echo_sql,   # log SQL in dev; disable in prod
    )


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False keeps ORM objects usable after commit
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@lru_cache(maxsize=1)
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return make_session_factory(get_engine())


# ---------------------------------------------------------------------------
# Session scope
# ---------------------------------------------------------------------------

@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    One session, one transaction.

    Commits automatically on clean exit of the begin() block; any exception
    rolls the transaction back and propagates.
    """
    factory = session_factory or get_session_factory()
    async with factory() as session:
        async with session.begin():
            yield session


# ---------------------------------------------------------------------------
# Schema + health helpers
# ---------------------------------------------------------------------------

async def create_all(engine: AsyncEngine | None = None) -> None:
    """Create tables for local development and tests (no migrations)."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_db_health(engine: AsyncEngine | None = None) -> dict:
    """Ping the database; used by the worker health-check task."""
    try:
        async with (engine or get_engine()).connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
