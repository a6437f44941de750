"""Shared fixtures for cache and orchestrator tests.

Provides:
- A temporary-file SQLite database (aiosqlite) with all cache tables created
- A session factory matching the repository session_factory pattern
- A CacheStore bound to that database
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from src.orgsync.cache import models  # noqa: F401
from src.orgsync.cache.repository import CacheStore
from src.orgsync.core.database import CacheBase, create_engine_for_url


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Async engine on a fresh SQLite file with the cache schema created."""
    cache_engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}")
    async with cache_engine.begin() as conn:
        await conn.run_sync(CacheBase.metadata.create_all)
    yield cache_engine
    await cache_engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Async generator factory yielding sessions, as get_session() does."""

    async def factory() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    return factory


@pytest.fixture
def store(session_factory) -> CacheStore:
    return CacheStore(session_factory=session_factory)
