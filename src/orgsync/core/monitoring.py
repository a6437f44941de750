"""Prometheus metrics, Sentry integration, and sync step tracking.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- track_sync_step(): Context manager for per-step sync metrics
- record_match_strategies(): Resolver strategy distribution counters
- init_sentry(): Initialize Sentry error reporting
- get_metrics_response(): FastAPI route handler body for /metrics
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator, Mapping
from contextlib import asynccontextmanager
from typing import Any

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Sync Metrics ─────────────────────────────────────────────────────────────

sync_steps_total = Counter(
    "orgsync_sync_steps_total",
    "Sync steps executed, by type and outcome",
    ["sync_type", "status"],
)

sync_step_duration_seconds = Histogram(
    "orgsync_sync_step_duration_seconds",
    "Sync step duration in seconds",
    ["sync_type"],
    buckets=(0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 300.0, 900.0, 1800.0),
)

sync_records_total = Counter(
    "orgsync_sync_records_total",
    "Records written to the cache, by sync type",
    ["sync_type"],
)

sync_in_progress = Gauge(
    "orgsync_sync_in_progress",
    "1 while an orchestrated sync run holds the guard",
)

# ── Matching Metrics ─────────────────────────────────────────────────────────

resolver_matches_total = Counter(
    "orgsync_resolver_matches_total",
    "CRM accounts resolved, by winning strategy",
    ["strategy"],
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        endpoint = request.url.path

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── Sync Metrics Helpers ─────────────────────────────────────────────────────


@asynccontextmanager
async def track_sync_step(sync_type: str) -> AsyncGenerator[dict[str, Any], None]:
    """Context manager that tracks one sync step.

    Usage:
        async with track_sync_step("tickets") as tracker:
            tracker["records"] = await write_tickets(...)
            tracker["status"] = "partial"   # optional override

    Automatically records:
    - Duration in histogram
    - Step count by status (success/partial/error)
    - Records written (if set in tracker dict)
    """
    tracker: dict[str, Any] = {"records": 0, "status": "success"}
    start_time = time.perf_counter()

    try:
        yield tracker
    except Exception:
        tracker["status"] = "error"
        raise
    finally:
        duration = time.perf_counter() - start_time

        sync_steps_total.labels(sync_type=sync_type, status=tracker["status"]).inc()
        sync_step_duration_seconds.labels(sync_type=sync_type).observe(duration)

        if tracker.get("records"):
            sync_records_total.labels(sync_type=sync_type).inc(tracker["records"])


def record_match_strategies(counts: Mapping[str, int]) -> None:
    """Add one run's strategy distribution to the resolver counters."""
    for strategy, count in counts.items():
        if count:
            resolver_matches_total.labels(strategy=strategy).inc(count)


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    traces_sample_rate = 0.1 if environment == "production" else 1.0

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
