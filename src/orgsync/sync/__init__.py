"""Sync orchestration -- in-progress guard, orchestrator, scheduler and wiring.

Provides SyncOrchestrator for full, delta and single-type refreshes of the
local cache, SyncGuard/SyncInProgressError for at-most-one-run semantics,
SyncScheduler for the cron-driven nightly run, and build_orchestrator()
to assemble everything from Settings.
"""

from src.orgsync.sync.factory import build_orchestrator
from src.orgsync.sync.guard import RunState, SyncGuard, SyncInProgressError
from src.orgsync.sync.orchestrator import RunSummary, StepResult, SyncOrchestrator
from src.orgsync.sync.scheduler import SyncScheduler

__all__ = [
    "RunState",
    "RunSummary",
    "StepResult",
    "SyncGuard",
    "SyncInProgressError",
    "SyncOrchestrator",
    "SyncScheduler",
    "build_orchestrator",
]
