"""Background scheduler for the nightly full sync.

Wraps an APScheduler AsyncIOScheduler with a single cron job built from
the SYNC_SCHEDULE crontab expression. A scheduled run that finds another
run in progress is skipped, not queued.

Exports:
    SyncScheduler: Cron-driven trigger for SyncOrchestrator.trigger_full_sync().
"""

from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

import structlog

from src.orgsync.sync.guard import SyncInProgressError
from src.orgsync.sync.orchestrator import SyncOrchestrator

logger = structlog.get_logger(__name__)


class SyncScheduler:
    """Run a full sync on a crontab schedule.

    An invalid expression leaves the scheduler stopped: start() logs a
    warning and returns False, and the service keeps serving manual
    triggers.

    Args:
        orchestrator: Orchestrator whose full sync is triggered.
        cron_expression: Five-field crontab, e.g. "0 2 * * *".
        timezone: Timezone the expression is evaluated in.
    """

    JOB_ID = "orgsync_full_sync"

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        cron_expression: str,
        timezone: str = "UTC",
    ) -> None:
        self._orchestrator = orchestrator
        self._cron_expression = cron_expression
        self._timezone = timezone
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> bool:
        """Start the scheduler. Returns False if the cron expression is invalid or empty."""
        if not self._cron_expression.strip():
            logger.info("sync_scheduler.disabled", reason="empty schedule")
            return False
        try:
            trigger = CronTrigger.from_crontab(self._cron_expression, timezone=self._timezone)
        except ValueError as exc:
            logger.warning(
                "sync_scheduler.invalid_schedule",
                schedule=self._cron_expression,
                error=str(exc),
            )
            return False

        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        self._scheduler.add_job(
            self.run_scheduled_sync,
            trigger=trigger,
            id=self.JOB_ID,
            name="Scheduled full sync",
            misfire_grace_time=3600,
            coalesce=True,
            max_instances=1,
        )
        self._scheduler.start()
        logger.info("sync_scheduler.started", schedule=self._cron_expression, timezone=self._timezone)
        return True

    async def run_scheduled_sync(self) -> bool:
        """Job body. Returns True when a run was accepted."""
        try:
            self._orchestrator.trigger_full_sync()
        except SyncInProgressError as exc:
            logger.info("sync_scheduler.run_skipped", reason="sync in progress", running=exc.running)
            return False
        logger.info("sync_scheduler.run_triggered")
        return True

    def shutdown(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("sync_scheduler.stopped")
        self._scheduler = None
