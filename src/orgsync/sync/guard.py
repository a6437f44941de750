"""In-progress guard -- at most one orchestrated sync per process.

The guard is an atomically checked flag owned by the orchestrator. A
second trigger while a run holds the guard is rejected with
SyncInProgressError rather than queued. Nothing is persisted, so a process
restart always starts Idle.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum

import structlog

from src.orgsync.core.monitoring import sync_in_progress

logger = structlog.get_logger(__name__)


class SyncInProgressError(RuntimeError):
    """Raised when a sync is triggered while another one is running."""

    def __init__(self, running: str | None = None) -> None:
        message = "A sync is already in progress"
        if running:
            message = f"{message} ({running})"
        super().__init__(message)
        self.running = running


class RunState(str, Enum):
    """Lifecycle of one orchestrated run: IDLE -> RUNNING -> outcome -> IDLE."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FATAL = "fatal"


class SyncGuard:
    """Mutex-protected in-progress flag.

    try_acquire() is the only way into RUNNING and succeeds only from IDLE.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._running: str | None = None

    @property
    def running(self) -> bool:
        return self._running is not None

    @property
    def current(self) -> str | None:
        """Label of the run holding the guard, if any."""
        return self._running

    def try_acquire(self, label: str) -> bool:
        with self._lock:
            if self._running is not None:
                return False
            self._running = label
        sync_in_progress.set(1)
        logger.debug("sync.guard_acquired", run=label)
        return True

    def acquire(self, label: str) -> None:
        """Acquire or raise SyncInProgressError."""
        if not self.try_acquire(label):
            logger.warning("sync.trigger_rejected", requested=label, running=self._running)
            raise SyncInProgressError(self._running)

    def release(self) -> None:
        with self._lock:
            label, self._running = self._running, None
        sync_in_progress.set(0)
        logger.debug("sync.guard_released", run=label)

    @contextmanager
    def hold(self, label: str) -> Iterator[None]:
        """Hold the guard for the duration of a block."""
        self.acquire(label)
        try:
            yield
        finally:
            self.release()
