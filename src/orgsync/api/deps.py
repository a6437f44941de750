"""FastAPI dependency injection for the orchestrator and Cache Store.

Both are created once in the application lifespan and stored on app.state.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from src.orgsync.cache.repository import CacheStore
from src.orgsync.sync.orchestrator import SyncOrchestrator


async def get_cache_store(request: Request) -> CacheStore:
    """Get the process-wide Cache Store."""
    store = getattr(request.app.state, "cache_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cache store not initialized",
        )
    return store


async def get_orchestrator(request: Request) -> SyncOrchestrator:
    """Get the process-wide orchestrator, 503 when sync is not configured."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        detail = getattr(request.app.state, "orchestrator_error", None) or "Sync not configured"
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
        )
    return orchestrator
