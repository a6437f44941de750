"""Pydantic schemas for cached records and sync bookkeeping.

Defines the structured types that flow between the external clients,
the matching engine and the Cache Store:
- Enums: TicketStatus, TicketPriority, SyncType, SyncOutcome
- Ticketing records: OrganizationRecord, TicketCustomFields, TicketRecord
- CRM records: CRMAccount, OwnershipAssignmentRecord
- Cross-reference records: TicketLinkRecord
- Bookkeeping: SyncStatusRead
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


# ── Enums ───────────────────────────────────────────────────────────────────


class TicketStatus(str, Enum):
    """Ticket lifecycle states in the Ticketing System."""

    NEW = "new"
    OPEN = "open"
    PENDING = "pending"
    HOLD = "hold"
    SOLVED = "solved"
    CLOSED = "closed"


class TicketPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class SyncType(str, Enum):
    """One status row is kept per sync type."""

    ORGANIZATIONS = "organizations"
    TICKETS = "tickets"
    CSM_ASSIGNMENTS = "csm_assignments"
    GITHUB_LINKS = "github_links"


class SyncOutcome(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


# ── Ticketing System Records ────────────────────────────────────────────────


class OrganizationRecord(BaseModel):
    """Authoritative organization from the Ticketing System.

    Frozen so that a list of these can be shared as an immutable snapshot
    by the match index.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    domain_names: tuple[str, ...] = ()
    crm_id: str | None = None
    crm_account_name: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    cached_at: datetime | None = None


class TicketCustomFields(BaseModel):
    """Product-specific custom field values carried on a ticket."""

    product: str | None = None
    module: str | None = None
    ticket_type: str | None = None
    workflow_status: str | None = None
    issue_subtype: str | None = None
    is_escalated: bool = False


class TicketRecord(BaseModel):
    """Support ticket. organization_id 0 means the ticket has no organization."""

    id: int
    organization_id: int = 0
    subject: str = ""
    status: TicketStatus
    priority: TicketPriority = TicketPriority.NORMAL
    requester_id: int | None = None
    assignee_id: int | None = None
    tags: list[str] = Field(default_factory=list)
    custom_fields: TicketCustomFields = Field(default_factory=TicketCustomFields)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    cached_at: datetime | None = None


# ── CRM Records ─────────────────────────────────────────────────────────────


class CRMAccount(BaseModel):
    """Account as returned by the CRM System, with its (optional) owner."""

    account_id: str
    account_name: str
    owner_id: str | None = None
    owner_name: str | None = None
    owner_email: str | None = None


class OwnershipAssignmentRecord(BaseModel):
    """CSM assignment for a CRM account.

    organization_id is None when the account could not be resolved to a
    cached organization. match_strategy records which resolver strategy
    produced the link.
    """

    account_id: str
    account_name: str
    owner_id: str | None = None
    owner_name: str | None = None
    owner_email: str | None = None
    organization_id: int | None = None
    match_strategy: str | None = None
    cached_at: datetime | None = None


# ── Cross-Reference Records ─────────────────────────────────────────────────


class TicketLinkRecord(BaseModel):
    """A development-tracker issue that references a support ticket."""

    ticket_id: int
    issue_number: int
    repo_name: str
    project_title: str = ""
    project_status: str = ""
    sprint: str | None = None
    milestone: str | None = None
    release_version: str | None = None
    url: str = ""
    issue_updated_at: datetime | None = None


# ── Sync Bookkeeping ────────────────────────────────────────────────────────


class SyncStatusRead(BaseModel):
    """Latest run of one sync type."""

    sync_type: SyncType
    last_sync: datetime
    status: SyncOutcome
    record_count: int = 0
    error_message: str | None = None
    last_success_at: datetime | None = None
