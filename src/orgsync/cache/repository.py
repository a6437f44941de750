"""Cache Store -- async bulk writes and reads for the local sync cache.

Provides CacheStore with the session_factory callable pattern. Every write
is a bulk statement committed in a single transaction, so each operation is
individually idempotent and a failure leaves the previous table contents
untouched:
- replace_organizations / replace_ownership_assignments / replace_ticket_links:
  delete-then-insert in one transaction (wholesale replace)
- upsert_tickets: INSERT ... ON CONFLICT (id) DO UPDATE, so re-syncing the
  same tickets is a no-op on observable state
- record_sync_status: upsert by sync type, latest run wins
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable, Iterable, Sequence
from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, func, insert, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from src.orgsync.cache.models import (
    OrganizationModel,
    OwnershipAssignmentModel,
    SyncStatusModel,
    TicketLinkModel,
    TicketModel,
)
from src.orgsync.cache.schemas import (
    OrganizationRecord,
    OwnershipAssignmentRecord,
    SyncOutcome,
    SyncStatusRead,
    SyncType,
    TicketCustomFields,
    TicketLinkRecord,
    TicketRecord,
)

logger = structlog.get_logger(__name__)

# Rows per INSERT statement; keeps SQLite under its bound-parameter limit.
_CHUNK_SIZE = 200


# ── Serialization Helpers ───────────────────────────────────────────────────


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything is stored as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _chunked(rows: Sequence[dict], size: int = _CHUNK_SIZE) -> Iterable[Sequence[dict]]:
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


def _model_to_organization(model: OrganizationModel) -> OrganizationRecord:
    return OrganizationRecord(
        id=model.id,
        name=model.name,
        domain_names=tuple(model.domain_names or ()),
        crm_id=model.crm_id,
        crm_account_name=model.crm_account_name,
        created_at=_as_utc(model.created_at),
        updated_at=_as_utc(model.updated_at),
        cached_at=_as_utc(model.cached_at),
    )


def _model_to_ticket(model: TicketModel) -> TicketRecord:
    return TicketRecord(
        id=model.id,
        organization_id=model.organization_id or 0,
        subject=model.subject or "",
        status=model.status,
        priority=model.priority or "normal",
        requester_id=model.requester_id,
        assignee_id=model.assignee_id,
        tags=list(model.tags or []),
        custom_fields=TicketCustomFields(
            product=model.product,
            module=model.module,
            ticket_type=model.ticket_type,
            workflow_status=model.workflow_status,
            issue_subtype=model.issue_subtype,
            is_escalated=bool(model.is_escalated),
        ),
        created_at=_as_utc(model.created_at),
        updated_at=_as_utc(model.updated_at),
        cached_at=_as_utc(model.cached_at),
    )


def _ticket_to_row(ticket: TicketRecord, cached_at: datetime) -> dict:
    fields = ticket.custom_fields
    return {
        "id": ticket.id,
        "organization_id": ticket.organization_id or 0,
        "subject": ticket.subject,
        "status": ticket.status.value,
        "priority": ticket.priority.value,
        "requester_id": ticket.requester_id,
        "assignee_id": ticket.assignee_id,
        "tags": list(ticket.tags),
        "product": fields.product,
        "module": fields.module,
        "ticket_type": fields.ticket_type,
        "workflow_status": fields.workflow_status,
        "issue_subtype": fields.issue_subtype,
        "is_escalated": fields.is_escalated,
        "created_at": ticket.created_at,
        "updated_at": ticket.updated_at,
        "cached_at": cached_at,
    }


def _model_to_assignment(model: OwnershipAssignmentModel) -> OwnershipAssignmentRecord:
    return OwnershipAssignmentRecord(
        account_id=model.account_id,
        account_name=model.account_name,
        owner_id=model.owner_id,
        owner_name=model.owner_name,
        owner_email=model.owner_email,
        organization_id=model.organization_id,
        match_strategy=model.match_strategy,
        cached_at=_as_utc(model.cached_at),
    )


def _model_to_link(model: TicketLinkModel) -> TicketLinkRecord:
    return TicketLinkRecord(
        ticket_id=model.ticket_id,
        issue_number=model.issue_number,
        repo_name=model.repo_name,
        project_title=model.project_title or "",
        project_status=model.project_status or "",
        sprint=model.sprint,
        milestone=model.milestone,
        release_version=model.release_version,
        url=model.url or "",
        issue_updated_at=_as_utc(model.issue_updated_at),
    )


def _model_to_status(model: SyncStatusModel) -> SyncStatusRead:
    return SyncStatusRead(
        sync_type=SyncType(model.sync_type),
        last_sync=_as_utc(model.last_sync),
        status=SyncOutcome(model.status),
        record_count=model.record_count or 0,
        error_message=model.error_message,
        last_success_at=_as_utc(model.last_success_at),
    )


# ── Repository ──────────────────────────────────────────────────────────────


class CacheStore:
    """Durable local store of organizations, tickets, assignments and sync status.

    Uses the session_factory callable pattern: each public method opens its
    own session, so operations can be used independently of one another.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Organizations ───────────────────────────────────────────────────────

    async def replace_organizations(self, organizations: Sequence[OrganizationRecord]) -> int:
        """Atomically replace the whole organization table.

        The cached CRM display name of each organization is carried forward
        from the ownership assignments currently resolved to it, unless the
        incoming record already has one.

        Args:
            organizations: Full organization set from the Ticketing System.
                Duplicate ids collapse to the last occurrence.

        Returns:
            Number of organizations now in the table.
        """
        by_id: dict[int, OrganizationRecord] = {org.id: org for org in organizations}
        cached_at = _utcnow()

        async for session in self._session_factory():
            carried = await session.execute(
                select(
                    OwnershipAssignmentModel.organization_id,
                    OwnershipAssignmentModel.account_name,
                )
                .where(OwnershipAssignmentModel.organization_id.is_not(None))
                .order_by(OwnershipAssignmentModel.account_id)
            )
            crm_names: dict[int, str] = {}
            for org_id, account_name in carried.all():
                crm_names.setdefault(org_id, account_name)

            rows = [
                {
                    "id": org.id,
                    "name": org.name,
                    "domain_names": list(org.domain_names),
                    "crm_id": org.crm_id,
                    "crm_account_name": org.crm_account_name or crm_names.get(org.id),
                    "created_at": org.created_at,
                    "updated_at": org.updated_at,
                    "cached_at": cached_at,
                }
                for org in by_id.values()
            ]

            await session.execute(delete(OrganizationModel))
            for chunk in _chunked(rows):
                await session.execute(insert(OrganizationModel), chunk)
            await session.commit()

        logger.info("cache.organizations_replaced", count=len(by_id))
        return len(by_id)

    async def get_all_organizations(self) -> list[OrganizationRecord]:
        """Return every cached organization, ordered by name then id."""
        async for session in self._session_factory():
            result = await session.execute(
                select(OrganizationModel).order_by(OrganizationModel.name, OrganizationModel.id)
            )
            models = result.scalars().all()
        return [_model_to_organization(m) for m in models]

    async def count_organizations(self) -> int:
        async for session in self._session_factory():
            count = await session.scalar(select(func.count()).select_from(OrganizationModel))
        return count or 0

    # ── Tickets ─────────────────────────────────────────────────────────────

    async def upsert_tickets(self, tickets: Sequence[TicketRecord]) -> int:
        """Insert-or-replace tickets by id.

        Args:
            tickets: Tickets to write. Duplicate ids collapse to the last occurrence.

        Returns:
            Number of distinct tickets written.
        """
        if not tickets:
            return 0

        cached_at = _utcnow()
        by_id = {ticket.id: ticket for ticket in tickets}
        rows = [_ticket_to_row(ticket, cached_at) for ticket in by_id.values()]

        async for session in self._session_factory():
            dialect = session.get_bind().dialect.name
            for chunk in _chunked(rows):
                await session.execute(_upsert_statement(dialect, chunk))
            await session.commit()

        logger.debug("cache.tickets_upserted", count=len(rows))
        return len(rows)

    async def get_all_ticket_ids(self) -> set[int]:
        async for session in self._session_factory():
            result = await session.execute(select(TicketModel.id))
            ids = set(result.scalars().all())
        return ids

    async def list_tickets(self, organization_id: int | None = None) -> list[TicketRecord]:
        """List cached tickets, optionally for a single organization, ordered by id."""
        stmt = select(TicketModel).order_by(TicketModel.id)
        if organization_id is not None:
            stmt = stmt.where(TicketModel.organization_id == organization_id)

        async for session in self._session_factory():
            result = await session.execute(stmt)
            models = result.scalars().all()
        return [_model_to_ticket(m) for m in models]

    # ── Ownership Assignments ───────────────────────────────────────────────

    async def replace_ownership_assignments(
        self, assignments: Sequence[OwnershipAssignmentRecord]
    ) -> int:
        """Clear the assignment table and bulk-insert the new set.

        Returns:
            Number of assignments written (duplicate account ids collapse).
        """
        cached_at = _utcnow()
        by_account = {a.account_id: a for a in assignments}
        rows = [
            {
                "account_id": a.account_id,
                "account_name": a.account_name,
                "owner_id": a.owner_id,
                "owner_name": a.owner_name,
                "owner_email": a.owner_email,
                "organization_id": a.organization_id,
                "match_strategy": a.match_strategy,
                "cached_at": cached_at,
            }
            for a in by_account.values()
        ]

        async for session in self._session_factory():
            await session.execute(delete(OwnershipAssignmentModel))
            for chunk in _chunked(rows):
                await session.execute(insert(OwnershipAssignmentModel), chunk)
            await session.commit()

        logger.info("cache.ownership_assignments_replaced", count=len(rows))
        return len(rows)

    async def list_ownership_assignments(self) -> list[OwnershipAssignmentRecord]:
        async for session in self._session_factory():
            result = await session.execute(
                select(OwnershipAssignmentModel).order_by(OwnershipAssignmentModel.account_id)
            )
            models = result.scalars().all()
        return [_model_to_assignment(m) for m in models]

    # ── Ticket Links ────────────────────────────────────────────────────────

    async def replace_ticket_links(self, links: Sequence[TicketLinkRecord]) -> int:
        """Replace the cross-reference side-table.

        Returns:
            Number of distinct (ticket, repo, issue) links written.
        """
        cached_at = _utcnow()
        unique: dict[tuple[int, str, int], TicketLinkRecord] = {}
        for link in links:
            unique.setdefault((link.ticket_id, link.repo_name, link.issue_number), link)

        rows = [
            {
                "ticket_id": link.ticket_id,
                "issue_number": link.issue_number,
                "repo_name": link.repo_name,
                "project_title": link.project_title,
                "project_status": link.project_status,
                "sprint": link.sprint,
                "milestone": link.milestone,
                "release_version": link.release_version,
                "url": link.url,
                "issue_updated_at": link.issue_updated_at,
                "cached_at": cached_at,
            }
            for link in unique.values()
        ]

        async for session in self._session_factory():
            await session.execute(delete(TicketLinkModel))
            for chunk in _chunked(rows):
                await session.execute(insert(TicketLinkModel), chunk)
            await session.commit()

        logger.info("cache.ticket_links_replaced", count=len(rows))
        return len(rows)

    async def list_ticket_links(self, ticket_id: int | None = None) -> list[TicketLinkRecord]:
        stmt = select(TicketLinkModel).order_by(
            TicketLinkModel.ticket_id, TicketLinkModel.repo_name, TicketLinkModel.issue_number
        )
        if ticket_id is not None:
            stmt = stmt.where(TicketLinkModel.ticket_id == ticket_id)

        async for session in self._session_factory():
            result = await session.execute(stmt)
            models = result.scalars().all()
        return [_model_to_link(m) for m in models]

    # ── Sync Status ─────────────────────────────────────────────────────────

    async def record_sync_status(
        self,
        sync_type: SyncType,
        outcome: SyncOutcome,
        record_count: int,
        error_message: str | None = None,
        started_at: datetime | None = None,
    ) -> SyncStatusRead:
        """Upsert the status row for a sync type.

        Args:
            sync_type: Which sync ran.
            outcome: success or error.
            record_count: Records written by the run (partial count on error).
            error_message: Human-readable failure description.
            started_at: When the run began; on success this becomes
                last_success_at (defaults to now).

        Returns:
            The stored status.
        """
        now = _utcnow()

        async for session in self._session_factory():
            model = await session.get(SyncStatusModel, sync_type.value)
            if model is None:
                model = SyncStatusModel(sync_type=sync_type.value)
                session.add(model)

            model.last_sync = now
            model.status = outcome.value
            model.record_count = record_count
            model.error_message = error_message
            if outcome == SyncOutcome.SUCCESS:
                model.last_success_at = started_at or now

            await session.commit()
            status = _model_to_status(model)

        logger.debug(
            "cache.sync_status_recorded",
            sync_type=sync_type.value,
            outcome=outcome.value,
            record_count=record_count,
        )
        return status

    async def get_sync_status(self) -> list[SyncStatusRead]:
        """Return the status row of every sync type that has run, ordered by type."""
        async for session in self._session_factory():
            result = await session.execute(
                select(SyncStatusModel).order_by(SyncStatusModel.sync_type)
            )
            models = result.scalars().all()
        return [_model_to_status(m) for m in models]

    async def get_last_successful_sync(self, sync_type: SyncType) -> datetime | None:
        """Start time of the latest run of sync_type that finished without error."""
        async for session in self._session_factory():
            model = await session.get(SyncStatusModel, sync_type.value)
            last_success = model.last_success_at if model is not None else None
        return _as_utc(last_success)


def _upsert_statement(dialect: str, rows: Sequence[dict]):
    """Build a dialect-specific INSERT ... ON CONFLICT (id) DO UPDATE for tickets."""
    if dialect == "postgresql":
        stmt = postgresql.insert(TicketModel).values(list(rows))
    elif dialect == "sqlite":
        stmt = sqlite.insert(TicketModel).values(list(rows))
    else:
        raise ValueError(f"Unsupported dialect for ticket upsert: {dialect}")

    updatable = [column.name for column in TicketModel.__table__.columns if column.name != "id"]
    return stmt.on_conflict_do_update(
        index_elements=[TicketModel.id],
        set_={name: stmt.excluded[name] for name in updatable},
    )
