"""Collaborator interfaces consumed by the sync orchestrator.

Every external system the orchestrator reads from implements one of these
ABCs. The orchestrator depends only on the interface, so tests substitute
AsyncMock instances and alternate backends can be plugged in without
touching the sync logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from src.orgsync.cache.schemas import (
    CRMAccount,
    OrganizationRecord,
    TicketLinkRecord,
    TicketRecord,
)


# ── Errors ──────────────────────────────────────────────────────────────────


class ConfigurationError(Exception):
    """Missing or incomplete credentials/endpoints. Fatal for the whole run."""


class NotFoundError(Exception):
    """The requested remote resource does not exist (HTTP 404)."""


class AuthenticationError(Exception):
    """The remote system rejected our credentials or token request."""


class UpstreamResponseError(Exception):
    """The remote system answered, but with a payload we cannot use."""


# ── Interfaces ──────────────────────────────────────────────────────────────


class TicketingClient(ABC):
    """Ticketing System: source of organizations and tickets.

    Methods:
        list_organizations: Every organization, all pages.
        list_tickets_for_organization: Tickets of one organization, optionally
            only those updated since a timestamp. Raises NotFoundError when the
            organization no longer exists.
        get_ticket_fields: Ticket field definitions, loaded once so custom
            field values can be extracted from fetched tickets.
    """

    @abstractmethod
    async def get_ticket_fields(self) -> list[dict]:
        """Fetch (once) the ticket field definitions."""
        ...

    @abstractmethod
    async def list_organizations(self) -> list[OrganizationRecord]:
        """Fetch all organizations."""
        ...

    @abstractmethod
    async def list_tickets_for_organization(
        self,
        organization_id: int,
        since: datetime | None = None,
        max_pages: int | None = None,
    ) -> list[TicketRecord]:
        """Fetch tickets for one organization, bounded to max_pages pages."""
        ...


class CRMClient(ABC):
    """CRM System: source of account ownership (CSM) assignments."""

    @abstractmethod
    async def list_ownership_assignments(self) -> list[CRMAccount]:
        """Fetch every account with its (nullable) owner."""
        ...


class CrossReferenceClient(ABC):
    """Development tracker: issues that reference support tickets."""

    @abstractmethod
    async def list_linked_issues(self) -> list[TicketLinkRecord]:
        """Fetch all issue-to-ticket links with their status metadata."""
        ...
