"""REST API endpoints for triggering and inspecting cache syncs.

Background triggers (full, delta) return 202 as soon as the run is
accepted. Single-type triggers run to completion and return the record
count. Every trigger answers 409 while another sync holds the guard.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from src.orgsync.api.deps import get_orchestrator
from src.orgsync.sync.guard import SyncInProgressError
from src.orgsync.sync.orchestrator import SyncOrchestrator

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class SyncAcceptedResponse(BaseModel):
    """Background run accepted."""

    status: str = "accepted"
    mode: str


class SyncCountResponse(BaseModel):
    sync_type: str
    count: int


class SyncStatusResponse(BaseModel):
    in_progress: bool
    running: str | None = None
    statuses: list[dict[str, Any]]
    last_run: dict[str, Any] | None = None


# ── Helpers ──────────────────────────────────────────────────────────────────


def _conflict(exc: SyncInProgressError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


async def _run_counted(sync_type: str, operation) -> SyncCountResponse:
    try:
        count = await operation()
    except SyncInProgressError as exc:
        raise _conflict(exc) from exc
    except Exception as exc:
        logger.error("sync.api_failed", sync_type=sync_type, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc) or exc.__class__.__name__,
        ) from exc
    return SyncCountResponse(sync_type=sync_type, count=count)


# ── Background Triggers ──────────────────────────────────────────────────────


@router.post("", response_model=SyncAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_full_sync(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncAcceptedResponse:
    """Start a full sync in the background."""
    try:
        orchestrator.trigger_full_sync()
    except SyncInProgressError as exc:
        raise _conflict(exc) from exc
    return SyncAcceptedResponse(mode="full")


@router.post("/delta", response_model=SyncAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_delta_sync(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncAcceptedResponse:
    """Start a delta sync (tickets since last success, ownership, links) in the background."""
    try:
        orchestrator.trigger_delta_sync()
    except SyncInProgressError as exc:
        raise _conflict(exc) from exc
    return SyncAcceptedResponse(mode="delta")


# ── Single-Type Syncs ────────────────────────────────────────────────────────


@router.post("/organizations", response_model=SyncCountResponse)
async def sync_organizations(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncCountResponse:
    return await _run_counted("organizations", orchestrator.sync_organizations)


@router.post("/tickets", response_model=SyncCountResponse)
async def sync_tickets(
    delta: bool = Query(False, description="Only tickets updated since the last successful sync"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncCountResponse:
    return await _run_counted("tickets", lambda: orchestrator.sync_tickets(delta_only=delta))


@router.post("/csm", response_model=SyncCountResponse)
async def sync_csm_assignments(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncCountResponse:
    return await _run_counted("csm_assignments", orchestrator.sync_csm_assignments)


@router.post("/github", response_model=SyncCountResponse)
async def sync_github_links(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncCountResponse:
    return await _run_counted("github_links", orchestrator.sync_github_links)


# ── Status ───────────────────────────────────────────────────────────────────


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SyncStatusResponse:
    """Latest status per sync type, the in-progress flag and the last run summary."""
    return SyncStatusResponse(**await orchestrator.get_sync_status())
