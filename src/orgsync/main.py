"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events for cache initialization, the sync orchestrator and its
scheduler, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.orgsync.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.orgsync.api.v1.router import router as v1_router
from src.orgsync.cache.repository import CacheStore
from src.orgsync.clients.base import ConfigurationError
from src.orgsync.config import get_settings
from src.orgsync.core.database import close_db, get_session, init_db
from src.orgsync.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.orgsync.sync.factory import build_orchestrator
from src.orgsync.sync.guard import SyncInProgressError
from src.orgsync.sync.scheduler import SyncScheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init cache, orchestrator and scheduler; tear down on shutdown."""
    import structlog

    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    store = CacheStore(session_factory=get_session)
    app.state.cache_store = store
    app.state.orchestrator = None
    app.state.orchestrator_error = None
    app.state.sync_scheduler = None

    # A missing Zendesk configuration disables sync but not the service:
    # status and health endpoints keep answering from the cache.
    try:
        orchestrator = build_orchestrator(settings, store)
        app.state.orchestrator = orchestrator
    except ConfigurationError as exc:
        log.warning("sync.orchestrator_unavailable", error=str(exc))
        app.state.orchestrator_error = str(exc)
        orchestrator = None

    if orchestrator is not None:
        try:
            scheduler = SyncScheduler(orchestrator, settings.SYNC_SCHEDULE)
            if scheduler.start():
                app.state.sync_scheduler = scheduler
        except Exception:
            log.warning("sync_scheduler.init_failed", exc_info=True)

        if settings.SYNC_ON_STARTUP_IF_EMPTY:
            try:
                if await store.count_organizations() == 0:
                    orchestrator.trigger_full_sync()
                    log.info("sync.startup_sync_triggered", reason="empty cache")
            except SyncInProgressError:
                log.info("sync.startup_sync_skipped", reason="sync in progress")
            except Exception:
                log.warning("sync.startup_sync_failed", exc_info=True)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    scheduler = getattr(app.state, "sync_scheduler", None)
    if scheduler is not None:
        scheduler.shutdown()

    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is not None and orchestrator.is_sync_in_progress():
        last_run = orchestrator.last_run
        log.warning("sync.shutdown_during_run", mode=last_run.mode if last_run else None)

    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="OrgSync API",
        version="0.1.0",
        description="Cross-system organization resolution and incremental sync cache",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router, prefix="/api/v1")

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
