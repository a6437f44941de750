"""Async SQLAlchemy engine and session factory for the local sync cache.

Provides:
- CacheBase: Declarative base for all cache tables
- get_engine(): Lazily created async engine singleton
- get_session(): AsyncSession generator used as the repository session factory
- init_db() / close_db(): Table creation on startup, engine disposal on shutdown
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.orgsync.config import get_settings

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def create_engine_for_url(url: str) -> AsyncEngine:
    """Create an async engine, enabling WAL mode for SQLite files.

    WAL lets the status endpoint read while a background sync holds the
    write lock.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return create_async_engine(url, pool_size=10, max_overflow=5, echo=False)

    if parsed.database and parsed.database != ":memory:":
        directory = os.path.dirname(parsed.database)
        if directory:
            os.makedirs(directory, exist_ok=True)

    engine = create_async_engine(url, echo=False)

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragmas(dbapi_conn: Any, connection_record: Any) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    return engine


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        _engine = create_engine_for_url(get_settings().DATABASE_URL)
    return _engine


# ── Declarative Base ────────────────────────────────────────────────────────


class CacheBase(DeclarativeBase):
    """Base class for the local cache tables."""


# ── Session Factory ─────────────────────────────────────────────────────────


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession bound to the cache engine."""
    engine = get_engine()
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db() -> None:
    """Create the cache tables if they don't exist."""
    # Import models so they register on CacheBase.metadata
    from src.orgsync.cache import models  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(CacheBase.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
