"""Tests for SyncOrchestrator.

Collaborators are AsyncMock instances of the client interfaces; the Cache
Store is real, backed by a temporary SQLite file, so every assertion is on
observable cache state and recorded SyncStatus rows.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.orgsync.cache.schemas import (
    CRMAccount,
    OrganizationRecord,
    SyncOutcome,
    SyncType,
    TicketLinkRecord,
    TicketRecord,
    TicketStatus,
)
from src.orgsync.clients.base import (
    ConfigurationError,
    CRMClient,
    CrossReferenceClient,
    NotFoundError,
    TicketingClient,
)
from src.orgsync.sync.guard import RunState, SyncInProgressError
from src.orgsync.sync.orchestrator import SyncOrchestrator


# ── Helpers ─────────────────────────────────────────────────────────────────


def _make_org(org_id: int, name: str, **overrides) -> OrganizationRecord:
    return OrganizationRecord(id=org_id, name=name, **overrides)


def _make_ticket(ticket_id: int, organization_id: int) -> TicketRecord:
    return TicketRecord(
        id=ticket_id,
        organization_id=organization_id,
        subject=f"Ticket {ticket_id}",
        status=TicketStatus.OPEN,
    )


def _tickets_by_org(mapping: dict[int, list[TicketRecord] | Exception]):
    """side_effect for list_tickets_for_organization keyed by organization id."""

    def fetch(organization_id, since=None, max_pages=None):
        value = mapping.get(organization_id, [])
        if isinstance(value, Exception):
            raise value
        return value

    return fetch


def _make_ticketing(tickets: dict | None = None) -> AsyncMock:
    client = AsyncMock(spec=TicketingClient)
    client.list_organizations.return_value = [
        _make_org(1, "Acme Inc"),
        _make_org(2, "Globex"),
    ]
    client.list_tickets_for_organization.side_effect = _tickets_by_org(
        tickets
        if tickets is not None
        else {1: [_make_ticket(100, 1), _make_ticket(101, 1)], 2: [_make_ticket(200, 2)]}
    )
    return client


def _make_crm() -> AsyncMock:
    client = AsyncMock(spec=CRMClient)
    client.list_ownership_assignments.return_value = [
        CRMAccount(
            account_id="001A",
            account_name="ACME, Inc.",
            owner_id="005X",
            owner_name="Dana CSM",
            owner_email="dana@example.com",
        ),
        CRMAccount(account_id="001B", account_name="Nobody Corp", owner_email="lee@example.com"),
        CRMAccount(account_id="001C", account_name="Globex"),
    ]
    return client


def _make_cross_reference() -> AsyncMock:
    client = AsyncMock(spec=CrossReferenceClient)
    client.list_linked_issues.return_value = [
        TicketLinkRecord(ticket_id=100, issue_number=7, repo_name="acme/api"),
        TicketLinkRecord(ticket_id=999, issue_number=8, repo_name="acme/api"),
    ]
    return client


def _make_orchestrator(store, ticketing=None, crm=None, cross_reference=None) -> SyncOrchestrator:
    return SyncOrchestrator(
        store,
        ticketing or _make_ticketing(),
        crm,
        cross_reference,
        max_pages_per_org=5,
        org_pause_seconds=0,
    )


async def _statuses(store) -> dict[SyncType, object]:
    return {status.sync_type: status for status in await store.get_sync_status()}


# ── Full & Delta Runs ───────────────────────────────────────────────────────


class TestCombinedRuns:
    """sync_all and sync_delta run the fixed step plan and record status."""

    async def test_full_run_populates_every_table(self, store):
        orchestrator = _make_orchestrator(
            store, crm=_make_crm(), cross_reference=_make_cross_reference()
        )

        summary = await orchestrator.sync_all()

        assert summary.state == RunState.SUCCESS
        assert summary.counts() == {
            "organizations": 2,
            "tickets": 3,
            "csm_assignments": 2,
            "github_links": 1,
        }
        assert await store.count_organizations() == 2
        assert await store.get_all_ticket_ids() == {100, 101, 200}

        assignments = {a.account_id: a for a in await store.list_ownership_assignments()}
        assert set(assignments) == {"001A", "001B"}
        assert assignments["001A"].organization_id == 1
        assert assignments["001A"].match_strategy == "normalized"
        assert assignments["001B"].organization_id is None
        assert assignments["001B"].match_strategy == "none"

        links = await store.list_ticket_links()
        assert [(link.ticket_id, link.issue_number) for link in links] == [(100, 7)]

        statuses = await _statuses(store)
        assert set(statuses) == set(SyncType)
        assert all(s.status == SyncOutcome.SUCCESS for s in statuses.values())

        assert summary.match_report["resolved"] == 1
        assert summary.match_report["unresolved"] == 1
        assert orchestrator.last_run is summary
        assert not orchestrator.is_sync_in_progress()

    async def test_full_run_fetches_tickets_with_page_cap(self, store):
        ticketing = _make_ticketing()
        orchestrator = _make_orchestrator(store, ticketing)

        await orchestrator.sync_all()

        calls = ticketing.list_tickets_for_organization.await_args_list
        assert [c.args[0] for c in calls] == [1, 2]
        assert all(c.kwargs == {"since": None, "max_pages": 5} for c in calls)

    async def test_delta_run_skips_organization_fetch(self, store):
        await store.replace_organizations([_make_org(1, "Acme Inc")])
        ticketing = _make_ticketing()
        orchestrator = _make_orchestrator(store, ticketing)

        summary = await orchestrator.sync_delta()

        ticketing.list_organizations.assert_not_called()
        assert [step.sync_type for step in summary.steps] == [
            SyncType.TICKETS,
            SyncType.CSM_ASSIGNMENTS,
            SyncType.GITHUB_LINKS,
        ]
        assert summary.state == RunState.SUCCESS

    async def test_unconfigured_collaborators_are_skipped(self, store):
        orchestrator = _make_orchestrator(store)

        summary = await orchestrator.sync_all()

        skipped = {step.sync_type for step in summary.steps if step.skipped}
        assert skipped == {SyncType.CSM_ASSIGNMENTS, SyncType.GITHUB_LINKS}
        assert summary.state == RunState.SUCCESS
        assert summary.match_report is None
        assert set(await _statuses(store)) == {SyncType.ORGANIZATIONS, SyncType.TICKETS}


# ── Delta Semantics ─────────────────────────────────────────────────────────


class TestDeltaTickets:
    async def test_delta_without_baseline_is_full_fetch(self, store):
        await store.replace_organizations([_make_org(1, "Acme Inc")])
        ticketing = _make_ticketing()
        orchestrator = _make_orchestrator(store, ticketing)

        count = await orchestrator.sync_tickets(delta_only=True)

        assert count == 2
        assert ticketing.list_tickets_for_organization.await_args.kwargs["since"] is None

    async def test_delta_uses_last_successful_start(self, store):
        await store.replace_organizations([_make_org(1, "Acme Inc")])
        ticketing = _make_ticketing()
        orchestrator = _make_orchestrator(store, ticketing)
        await orchestrator.sync_tickets()
        baseline = await store.get_last_successful_sync(SyncType.TICKETS)

        await orchestrator.sync_tickets(delta_only=True)

        assert baseline is not None
        assert ticketing.list_tickets_for_organization.await_args.kwargs["since"] == baseline

    async def test_failed_run_does_not_advance_baseline(self, store):
        await store.replace_organizations([_make_org(1, "Acme Inc"), _make_org(2, "Globex")])
        orchestrator = _make_orchestrator(store)
        await orchestrator.sync_tickets()
        baseline = await store.get_last_successful_sync(SyncType.TICKETS)

        failing = _make_ticketing({1: [_make_ticket(100, 1)], 2: httpx.ConnectError("refused")})
        await _make_orchestrator(store, failing).sync_tickets()

        assert await store.get_last_successful_sync(SyncType.TICKETS) == baseline

    async def test_ticket_fields_loaded_before_fetch(self, store):
        await store.replace_organizations([_make_org(1, "Acme Inc")])
        ticketing = _make_ticketing()
        calls: list[str] = []
        ticketing.get_ticket_fields.side_effect = lambda: calls.append("fields") or []
        fetch = _tickets_by_org({1: [_make_ticket(100, 1)]})
        ticketing.list_tickets_for_organization.side_effect = (
            lambda *args, **kwargs: calls.append("tickets") or fetch(*args, **kwargs)
        )

        await _make_orchestrator(store, ticketing).sync_tickets()

        assert calls == ["fields", "tickets"]

    async def test_cancelled_run_is_error_and_keeps_baseline(self, store):
        orgs = [_make_org(1, "Acme Inc"), _make_org(2, "Globex"), _make_org(3, "Initech")]
        await store.replace_organizations(orgs)
        await _make_orchestrator(store).sync_tickets()
        baseline = await store.get_last_successful_sync(SyncType.TICKETS)

        stalled = asyncio.Event()

        async def fetch(organization_id, since=None, max_pages=None):
            if organization_id == 1:
                return [_make_ticket(100, 1)]
            stalled.set()
            await asyncio.Event().wait()

        ticketing = _make_ticketing()
        ticketing.list_tickets_for_organization.side_effect = fetch
        orchestrator = _make_orchestrator(store, ticketing)

        task = asyncio.create_task(orchestrator.sync_tickets(delta_only=True))
        await asyncio.wait_for(stalled.wait(), timeout=5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        status = (await _statuses(store))[SyncType.TICKETS]
        assert status.status == SyncOutcome.ERROR
        assert status.error_message == "cancelled"
        assert await store.get_last_successful_sync(SyncType.TICKETS) == baseline
        assert not orchestrator.is_sync_in_progress()


# ── Failure Handling ────────────────────────────────────────────────────────


class TestFailureHandling:
    async def test_missing_organization_counts_as_zero(self, store):
        await store.replace_organizations([_make_org(1, "Acme Inc"), _make_org(2, "Globex")])
        ticketing = _make_ticketing({1: NotFoundError("gone"), 2: [_make_ticket(200, 2)]})

        count = await _make_orchestrator(store, ticketing).sync_tickets()

        status = (await _statuses(store))[SyncType.TICKETS]
        assert count == 1
        assert status.status == SyncOutcome.SUCCESS

    async def test_per_org_failure_is_partial(self, store):
        ticketing = _make_ticketing({
            1: [_make_ticket(100, 1)],
            2: httpx.ConnectError("connection refused"),
        })
        orchestrator = _make_orchestrator(store, ticketing, cross_reference=_make_cross_reference())

        summary = await orchestrator.sync_all()

        assert summary.state == RunState.PARTIAL_FAILURE
        tickets_step = summary.steps[1]
        assert tickets_step.count == 1
        assert "1 of 2 organizations" in tickets_step.error
        # Later steps still ran
        assert summary.steps[3].count == 1

        status = (await _statuses(store))[SyncType.TICKETS]
        assert status.status == SyncOutcome.ERROR
        assert status.record_count == 1
        assert status.last_success_at is None
        assert await store.get_all_ticket_ids() == {100}

    async def test_configuration_error_is_fatal(self, store):
        ticketing = _make_ticketing()
        ticketing.list_organizations.side_effect = ConfigurationError("Zendesk credentials missing")
        orchestrator = _make_orchestrator(store, ticketing, crm=_make_crm())

        summary = await orchestrator.sync_all()

        assert summary.state == RunState.FATAL
        assert len(summary.steps) == 1
        ticketing.list_tickets_for_organization.assert_not_called()
        status = (await _statuses(store))[SyncType.ORGANIZATIONS]
        assert status.status == SyncOutcome.ERROR
        assert status.error_message == "Zendesk credentials missing"
        assert not orchestrator.is_sync_in_progress()

    async def test_step_exception_does_not_stop_run(self, store):
        crm = _make_crm()
        crm.list_ownership_assignments.side_effect = RuntimeError("SOQL rejected")
        cross_reference = _make_cross_reference()
        orchestrator = _make_orchestrator(store, crm=crm, cross_reference=cross_reference)

        summary = await orchestrator.sync_all()

        assert summary.state == RunState.PARTIAL_FAILURE
        cross_reference.list_linked_issues.assert_awaited_once()
        statuses = await _statuses(store)
        assert statuses[SyncType.CSM_ASSIGNMENTS].status == SyncOutcome.ERROR
        assert statuses[SyncType.CSM_ASSIGNMENTS].error_message == "SOQL rejected"
        assert statuses[SyncType.GITHUB_LINKS].status == SyncOutcome.SUCCESS

    async def test_single_operation_propagates_error(self, store):
        ticketing = _make_ticketing()
        ticketing.list_organizations.side_effect = httpx.ConnectError("down")
        orchestrator = _make_orchestrator(store, ticketing)

        with pytest.raises(httpx.ConnectError):
            await orchestrator.sync_organizations()

        assert not orchestrator.is_sync_in_progress()
        assert (await _statuses(store))[SyncType.ORGANIZATIONS].status == SyncOutcome.ERROR

    async def test_status_write_failure_does_not_fail_step(self, store):
        orchestrator = _make_orchestrator(store)

        with patch.object(store, "record_sync_status", AsyncMock(side_effect=RuntimeError("locked"))):
            count = await orchestrator.sync_organizations()

        assert count == 2


# ── In-Progress Guard ───────────────────────────────────────────────────────


class TestMutualExclusion:
    """Only one run at a time; concurrent triggers are rejected."""

    async def test_second_trigger_rejected_while_running(self, store):
        gate = asyncio.Event()
        ticketing = _make_ticketing()

        async def slow_organizations():
            await gate.wait()
            return [_make_org(1, "Acme Inc")]

        ticketing.list_organizations.side_effect = slow_organizations
        orchestrator = _make_orchestrator(store, ticketing)

        orchestrator.trigger_full_sync()
        assert orchestrator.is_sync_in_progress()

        with pytest.raises(SyncInProgressError):
            orchestrator.trigger_delta_sync()
        with pytest.raises(SyncInProgressError):
            orchestrator.trigger_full_sync()
        with pytest.raises(SyncInProgressError):
            await orchestrator.sync_tickets()

        gate.set()
        await orchestrator.join()

        assert not orchestrator.is_sync_in_progress()
        assert orchestrator.last_run.state == RunState.SUCCESS
        assert ticketing.list_organizations.await_count == 1

    async def test_trigger_accepted_again_after_completion(self, store):
        orchestrator = _make_orchestrator(store)

        orchestrator.trigger_full_sync()
        await orchestrator.join()
        orchestrator.trigger_delta_sync()
        await orchestrator.join()

        assert orchestrator.last_run.mode == "delta"
        assert not orchestrator.is_sync_in_progress()

    async def test_status_reports_in_progress(self, store):
        gate = asyncio.Event()
        ticketing = _make_ticketing()

        async def slow_organizations():
            await gate.wait()
            return []

        ticketing.list_organizations.side_effect = slow_organizations
        orchestrator = _make_orchestrator(store, ticketing)
        orchestrator.trigger_full_sync()

        during = await orchestrator.get_sync_status()
        gate.set()
        await orchestrator.join()
        after = await orchestrator.get_sync_status()

        assert during["in_progress"] is True
        assert during["running"] == "full"
        assert after["in_progress"] is False
        assert after["last_run"]["state"] == "success"
        assert {s["sync_type"] for s in after["statuses"]} == {"organizations", "tickets"}
