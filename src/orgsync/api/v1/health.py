"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.orgsync.config import get_settings
from src.orgsync.core.database import get_engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No external dependencies are checked."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    """Check database connectivity and which collaborators are configured."""
    checks: dict = {"database": "ok"}

    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    settings = get_settings()
    checks["orchestrator"] = "ok" if getattr(request.app.state, "orchestrator", None) else "unavailable"
    checks["zendesk"] = "configured" if settings.zendesk_configured() else "not_configured"
    checks["salesforce"] = "configured" if settings.salesforce_configured() else "not_configured"
    checks["github"] = "configured" if settings.github_configured() else "not_configured"
    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: the cache database must answer.

    Returns 200 when the database is reachable, 503 otherwise. A missing
    orchestrator degrades sync endpoints only and does not fail readiness.
    """
    checks = await _check_dependencies(request)
    healthy = checks.get("database") == "ok"

    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if healthy else "degraded",
            "checks": checks,
        },
    )
