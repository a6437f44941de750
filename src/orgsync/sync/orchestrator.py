"""Sync orchestrator -- coordinates refreshes of the local cache.

Provides SyncOrchestrator, which pulls from the Ticketing, CRM and
Cross-Reference collaborators and writes through the CacheStore. Every
externally triggerable entry point takes the in-progress guard first, so a
second trigger while a run is active is rejected, never queued.

Step order within a combined run is fixed: ownership resolution needs a
populated organization table and link filtering needs a populated ticket
table.

    full:  organizations -> tickets(full)  -> csm_assignments -> github_links
    delta:                  tickets(delta) -> csm_assignments -> github_links

Each step records its SyncStatus in a finally path. A ConfigurationError
aborts the remaining steps (FATAL); any other step failure is logged and
the run continues (PARTIAL_FAILURE).
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from src.orgsync.cache.repository import CacheStore
from src.orgsync.cache.schemas import (
    OwnershipAssignmentRecord,
    SyncOutcome,
    SyncType,
)
from src.orgsync.clients.base import (
    ConfigurationError,
    CRMClient,
    CrossReferenceClient,
    NotFoundError,
    TicketingClient,
)
from src.orgsync.core.monitoring import record_match_strategies, track_sync_step
from src.orgsync.matching.index import MatchIndex
from src.orgsync.matching.report import MatchReport
from src.orgsync.matching.resolver import Resolver
from src.orgsync.matching.tables import ACRONYMS, ALIASES
from src.orgsync.sync.guard import RunState, SyncGuard

logger = structlog.get_logger(__name__)

# Organization ids listed in a partial-failure message before truncating.
_FAILED_ORG_SAMPLE = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Results ─────────────────────────────────────────────────────────────────


@dataclass
class StepResult:
    """Outcome of one sync step.

    error set without an exception means a partial failure: the count is
    what was written before or despite the failures.
    """

    sync_type: SyncType
    count: int = 0
    error: str | None = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_dict(self) -> dict[str, Any]:
        return {
            "sync_type": self.sync_type.value,
            "count": self.count,
            "error": self.error,
            "skipped": self.skipped,
        }


@dataclass
class RunSummary:
    """Latest orchestrated run, kept in memory for the status query."""

    mode: str
    state: RunState = RunState.RUNNING
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: datetime | None = None
    steps: list[StepResult] = field(default_factory=list)
    match_report: dict[str, Any] | None = None

    def counts(self) -> dict[str, int]:
        return {step.sync_type.value: step.count for step in self.steps}

    def as_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "state": self.state.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "steps": [step.as_dict() for step in self.steps],
            "match_report": self.match_report,
        }


StepFn = Callable[..., Awaitable[None]]


# ── Orchestrator ────────────────────────────────────────────────────────────


class SyncOrchestrator:
    """Runs sync steps against the cache under a single in-progress guard.

    Args:
        store: Cache Store to read from and write to.
        ticketing: Ticketing System client (mandatory).
        crm: CRM client; ownership sync is skipped when None.
        cross_reference: Cross-reference client; link sync is skipped when None.
        max_pages_per_org: Page cap for each organization's ticket fetch.
        org_pause_seconds: Pause between per-organization ticket fetches.
        aliases: Alias table handed to the Resolver.
        acronyms: Acronym table handed to the Resolver.
    """

    def __init__(
        self,
        store: CacheStore,
        ticketing: TicketingClient,
        crm: CRMClient | None = None,
        cross_reference: CrossReferenceClient | None = None,
        *,
        max_pages_per_org: int | None = 10,
        org_pause_seconds: float = 0.1,
        aliases: Mapping[str, str] = ALIASES,
        acronyms: Mapping[str, str] = ACRONYMS,
    ) -> None:
        self._store = store
        self._ticketing = ticketing
        self._crm = crm
        self._cross_reference = cross_reference
        self._max_pages_per_org = max_pages_per_org
        self._org_pause_seconds = org_pause_seconds
        self._aliases = aliases
        self._acronyms = acronyms

        self._guard = SyncGuard()
        self._background: set[asyncio.Task] = set()
        self._last_run: RunSummary | None = None
        self._last_match_report: MatchReport | None = None

    # ── Guard & Status ──────────────────────────────────────────────────

    def is_sync_in_progress(self) -> bool:
        return self._guard.running

    @property
    def last_run(self) -> RunSummary | None:
        return self._last_run

    @property
    def last_match_report(self) -> MatchReport | None:
        return self._last_match_report

    async def get_sync_status(self) -> dict[str, Any]:
        """Latest SyncStatus per type, the in-progress flag and the last run summary."""
        statuses = await self._store.get_sync_status()
        return {
            "in_progress": self._guard.running,
            "running": self._guard.current,
            "statuses": [status.model_dump(mode="json") for status in statuses],
            "last_run": self._last_run.as_dict() if self._last_run else None,
        }

    # ── Step Tracking ───────────────────────────────────────────────────

    @asynccontextmanager
    async def _track_step(self, result: StepResult) -> AsyncGenerator[StepResult, None]:
        """Time the step, then record its SyncStatus whatever happens.

        Usage:
            async with self._track_step(StepResult(SyncType.TICKETS)) as result:
                result.count += await ...
        """
        sync_type = result.sync_type
        started_at = _utcnow()
        logger.info("sync.step_started", sync_type=sync_type.value)

        async with track_sync_step(sync_type.value) as tracker:
            try:
                yield result
            except Exception as exc:
                result.error = str(exc) or exc.__class__.__name__
                raise
            except asyncio.CancelledError:
                result.error = "cancelled"
                logger.warning("sync.step_cancelled", sync_type=sync_type.value, count=result.count)
                raise
            finally:
                tracker["records"] = result.count
                if result.error:
                    tracker["status"] = "partial"
                elif result.skipped:
                    tracker["status"] = "skipped"
                if not result.skipped:
                    await self._record_status(result, started_at)
                logger.info(
                    "sync.step_finished",
                    sync_type=sync_type.value,
                    count=result.count,
                    error=result.error,
                    skipped=result.skipped,
                )

    async def _record_status(self, result: StepResult, started_at: datetime) -> None:
        try:
            await self._store.record_sync_status(
                result.sync_type,
                SyncOutcome.ERROR if result.error else SyncOutcome.SUCCESS,
                result.count,
                error_message=result.error,
                started_at=started_at,
            )
        except Exception:
            logger.exception("sync.status_record_failed", sync_type=result.sync_type.value)

    async def _run_step(self, result: StepResult, step: StepFn, **kwargs: Any) -> StepResult:
        async with self._track_step(result):
            await step(result, **kwargs)
        return result

    # ── Steps (private, unguarded) ──────────────────────────────────────

    async def _step_organizations(self, result: StepResult) -> None:
        organizations = await self._ticketing.list_organizations()
        result.count = await self._store.replace_organizations(organizations)
        logger.info(
            "sync.organizations_complete",
            count=result.count,
            with_crm_id=sum(1 for org in organizations if org.crm_id),
        )

    async def _step_tickets(self, result: StepResult, *, delta_only: bool = False) -> None:
        since: datetime | None = None
        if delta_only:
            since = await self._store.get_last_successful_sync(SyncType.TICKETS)
            if since is None:
                logger.info("sync.tickets_delta_without_baseline", fallback="full")

        await self._ticketing.get_ticket_fields()
        organizations = await self._store.get_all_organizations()
        failed: list[int] = []
        not_found = 0

        for position, org in enumerate(organizations):
            if position and self._org_pause_seconds:
                await asyncio.sleep(self._org_pause_seconds)
            try:
                tickets = await self._ticketing.list_tickets_for_organization(
                    org.id,
                    since=since,
                    max_pages=self._max_pages_per_org,
                )
            except NotFoundError:
                not_found += 1
                logger.info("sync.tickets_organization_missing", organization_id=org.id)
                continue
            except ConfigurationError:
                raise
            except Exception as exc:
                failed.append(org.id)
                logger.warning(
                    "sync.tickets_organization_failed",
                    organization_id=org.id,
                    error=str(exc),
                )
                continue

            if tickets:
                result.count += await self._store.upsert_tickets(tickets)

        if failed:
            sample = ", ".join(str(org_id) for org_id in failed[:_FAILED_ORG_SAMPLE])
            more = "" if len(failed) <= _FAILED_ORG_SAMPLE else ", ..."
            result.error = (
                f"Ticket fetch failed for {len(failed)} of {len(organizations)} "
                f"organizations: {sample}{more}"
            )

        logger.info(
            "sync.tickets_complete",
            mode="delta" if since is not None else "full",
            since=since.isoformat() if since else None,
            organizations=len(organizations),
            count=result.count,
            failed_organizations=len(failed),
            missing_organizations=not_found,
        )

    async def _step_csm_assignments(self, result: StepResult) -> None:
        if self._crm is None:
            result.skipped = True
            logger.info("sync.csm_skipped", reason="crm client not configured")
            return

        accounts = await self._crm.list_ownership_assignments()
        index = MatchIndex.build(await self._store.get_all_organizations())
        resolver = Resolver(index, aliases=self._aliases, acronyms=self._acronyms)
        report = MatchReport()

        assignments: dict[str, OwnershipAssignmentRecord] = {}
        without_owner = 0
        for account in accounts:
            if not (account.owner_id or account.owner_email):
                without_owner += 1
                continue
            resolution = resolver.resolve(account.account_id, account.account_name)
            report.add(account.account_name, resolution)
            assignments[account.account_id] = OwnershipAssignmentRecord(
                account_id=account.account_id,
                account_name=account.account_name,
                owner_id=account.owner_id,
                owner_name=account.owner_name,
                owner_email=account.owner_email,
                organization_id=resolution.organization.id if resolution.organization else None,
                match_strategy=resolution.strategy.value,
            )

        result.count = await self._store.replace_ownership_assignments(list(assignments.values()))

        self._last_match_report = report
        record_match_strategies(report.strategy_counts)
        duplicates = report.duplicate_organizations
        logger.info(
            "resolver.strategy_distribution",
            total=report.total,
            resolved=report.resolved,
            unresolved=report.unresolved,
            without_owner=without_owner,
            strategies=dict(report.strategy_counts),
        )
        if duplicates:
            logger.warning(
                "resolver.duplicate_organizations",
                count=len(duplicates),
                organizations={str(k): v for k, v in list(duplicates.items())[:5]},
            )
        if report.partial_matches:
            logger.warning(
                "resolver.partial_matches",
                count=len(report.partial_matches),
                matches=report.partial_matches,
            )
        logger.info("sync.csm_complete", count=result.count)

    async def _step_github_links(self, result: StepResult) -> None:
        if self._cross_reference is None:
            result.skipped = True
            logger.info("sync.github_skipped", reason="cross-reference client not configured")
            return

        links = await self._cross_reference.list_linked_issues()
        known = await self._store.get_all_ticket_ids()
        valid = [link for link in links if link.ticket_id in known]

        result.count = await self._store.replace_ticket_links(valid)
        logger.info(
            "sync.github_links_complete",
            fetched=len(links),
            unknown_tickets=len(links) - len(valid),
            count=result.count,
        )

    # ── Guarded Single Operations ───────────────────────────────────────

    async def _guarded(self, label: str, result: StepResult, step: StepFn, **kwargs: Any) -> int:
        with self._guard.hold(label):
            await self._run_step(result, step, **kwargs)
        return result.count

    async def sync_organizations(self) -> int:
        """Replace the organization table from the Ticketing System."""
        return await self._guarded(
            "organizations", StepResult(SyncType.ORGANIZATIONS), self._step_organizations
        )

    async def sync_tickets(self, delta_only: bool = False) -> int:
        """Upsert tickets for every cached organization.

        Args:
            delta_only: Fetch only tickets updated since the last successful
                tickets sync. Without a recorded success this is a full fetch.
        """
        return await self._guarded(
            "tickets_delta" if delta_only else "tickets",
            StepResult(SyncType.TICKETS),
            self._step_tickets,
            delta_only=delta_only,
        )

    async def sync_csm_assignments(self) -> int:
        """Resolve CRM accounts against cached organizations and replace assignments."""
        return await self._guarded(
            "csm_assignments", StepResult(SyncType.CSM_ASSIGNMENTS), self._step_csm_assignments
        )

    async def sync_github_links(self) -> int:
        """Replace ticket links with those referencing locally known tickets."""
        return await self._guarded(
            "github_links", StepResult(SyncType.GITHUB_LINKS), self._step_github_links
        )

    # ── Combined Runs ───────────────────────────────────────────────────

    def _plan(self, mode: str) -> list[tuple[StepResult, StepFn, dict[str, Any]]]:
        steps: list[tuple[StepResult, StepFn, dict[str, Any]]] = []
        if mode == "full":
            steps.append((StepResult(SyncType.ORGANIZATIONS), self._step_organizations, {}))
        steps.extend([
            (StepResult(SyncType.TICKETS), self._step_tickets, {"delta_only": mode == "delta"}),
            (StepResult(SyncType.CSM_ASSIGNMENTS), self._step_csm_assignments, {}),
            (StepResult(SyncType.GITHUB_LINKS), self._step_github_links, {}),
        ])
        return steps

    async def _run_combined(self, mode: str) -> RunSummary:
        """Run every step of a plan. Caller must hold the guard."""
        summary = RunSummary(mode=mode)
        self._last_run = summary
        logger.info("sync.run_started", mode=mode)

        for result, step, kwargs in self._plan(mode):
            summary.steps.append(result)
            try:
                await self._run_step(result, step, **kwargs)
            except ConfigurationError:
                summary.state = RunState.FATAL
                logger.error(
                    "sync.run_aborted",
                    mode=mode,
                    sync_type=result.sync_type.value,
                    error=result.error,
                )
                break
            except Exception:
                logger.exception("sync.step_failed", mode=mode, sync_type=result.sync_type.value)

        if summary.state != RunState.FATAL:
            failed = any(step.error for step in summary.steps)
            summary.state = RunState.PARTIAL_FAILURE if failed else RunState.SUCCESS

        if self._last_match_report is not None and any(
            step.sync_type == SyncType.CSM_ASSIGNMENTS and not step.skipped and step.ok
            for step in summary.steps
        ):
            summary.match_report = self._last_match_report.as_dict()

        summary.finished_at = _utcnow()
        logger.info(
            "sync.run_finished",
            mode=mode,
            state=summary.state.value,
            counts=summary.counts(),
            duration_seconds=(summary.finished_at - summary.started_at).total_seconds(),
        )
        return summary

    async def sync_all(self) -> RunSummary:
        """Full run: organizations, tickets (full), ownership, links."""
        with self._guard.hold("full"):
            return await self._run_combined("full")

    async def sync_delta(self) -> RunSummary:
        """Delta run: tickets (delta), ownership, links."""
        with self._guard.hold("delta"):
            return await self._run_combined("delta")

    # ── Background Triggers ─────────────────────────────────────────────

    def _start_background(self, mode: str) -> asyncio.Task:
        self._guard.acquire(mode)
        try:
            task = asyncio.create_task(self._background_run(mode), name=f"orgsync-{mode}")
        except BaseException:
            self._guard.release()
            raise
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        logger.info("sync.background_accepted", mode=mode)
        return task

    async def _background_run(self, mode: str) -> None:
        try:
            await self._run_combined(mode)
        except Exception:
            logger.exception("sync.background_failed", mode=mode)
            if self._last_run is not None and self._last_run.finished_at is None:
                self._last_run.state = RunState.FATAL
                self._last_run.finished_at = _utcnow()
        finally:
            self._guard.release()

    def trigger_full_sync(self) -> asyncio.Task:
        """Accept a full run and return immediately.

        Raises:
            SyncInProgressError: Another run holds the guard.
        """
        return self._start_background("full")

    def trigger_delta_sync(self) -> asyncio.Task:
        """Accept a delta run and return immediately.

        Raises:
            SyncInProgressError: Another run holds the guard.
        """
        return self._start_background("delta")

    async def join(self) -> None:
        """Wait for background runs to finish (used on shutdown and in tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
