"""Async HTTP client for the Zendesk REST API (the Ticketing System).

Provides ZendeskClient with retry logic (tenacity, 3 attempts, exponential
backoff 1-10s). Requests are spaced by a fixed delay to stay under the
account rate limit, and a 429 waits for the server's Retry-After before
the next attempt. A 404 is surfaced as NotFoundError so callers can treat
a vanished organization as "no tickets" rather than a failure.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from src.orgsync.cache.schemas import (
    OrganizationRecord,
    TicketCustomFields,
    TicketPriority,
    TicketRecord,
    TicketStatus,
)
from src.orgsync.clients.base import ConfigurationError, NotFoundError, TicketingClient

logger = structlog.get_logger(__name__)

# Organization fields that may hold the CRM account id, first present wins.
CRM_ID_FIELDS: tuple[str, ...] = (
    "salesforce_id",
    "salesforce_account_id",
    "sf_id",
    "sfid",
)

ESCALATED_VALUES = {"true", "escalated"}

# Tag substrings that flag a ticket as escalated ("exec_escalation", ...).
ESCALATION_TAG_MARKERS: tuple[str, ...] = ("escalated", "escalation")

# Ticket field title substrings used to detect each custom field. The first
# field whose lower-cased title matches wins. "request_type" is a secondary
# classifier consulted when ticket_type does not decide bug vs feature.
FIELD_TITLE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "product": ("product", "application", "software"),
    "module": ("module", "component", "area"),
    "ticket_type": ("ticket type", "issue type", "request type"),
    "workflow_status": ("workflow", "stage", "progress", "dev status"),
    "issue_subtype": ("issue subtype", "sub-type", "subtype", "subcategory", "sub-category"),
    "request_type": ("request type", "ticket type", "issue type", "category"),
}

DEFAULT_MODULE = "General"

WORKFLOW_STATUS_BY_TICKET_STATUS: dict[str, str] = {
    "new": "New",
    "open": "In Progress",
    "pending": "Waiting",
    "hold": "Backlogged",
    "solved": "Resolved",
    "closed": "Closed",
}

DEFAULT_RETRY_AFTER_SECONDS = 15.0


class RateLimitedError(Exception):
    """HTTP 429 with the server-requested wait."""

    def __init__(self, retry_after: float) -> None:
        super().__init__(f"Rate limited, retry after {retry_after}s")
        self.retry_after = retry_after


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, (RateLimitedError, httpx.ConnectError, httpx.TimeoutException)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


def _wait_for_retry(retry_state: Any) -> float:
    """Honour Retry-After on 429, otherwise back off exponentially."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    if isinstance(exc, RateLimitedError):
        return exc.retry_after
    return wait_exponential(multiplier=1, min=1, max=10)(retry_state)


_zendesk_retry = retry(
    stop=stop_after_attempt(3),
    wait=_wait_for_retry,
    retry=retry_if_exception(_is_retryable),
    reraise=True,
)


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_retry_after(value: str | None) -> float:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP date)."""
    if not value:
        return DEFAULT_RETRY_AFTER_SECONDS
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER_SECONDS
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


def _str_or_none(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def detect_field_ids(ticket_fields: list[dict]) -> dict[str, int]:
    """Map custom field names to field ids by matching ticket field titles.

    >>> detect_field_ids([{"id": 7, "title": "Product Line"}])
    {'product': 7}
    """
    detected: dict[str, int] = {}
    for field in ticket_fields:
        if field.get("id") is None:
            continue
        title = str(field.get("title") or "").lower()
        for name, keywords in FIELD_TITLE_KEYWORDS.items():
            if name in detected:
                continue
            if any(keyword in title for keyword in keywords) or (
                name == "ticket_type" and title == "type"
            ):
                detected[name] = int(field["id"])
    return detected


def classify_ticket_type(
    type_value: Any,
    request_value: Any,
    tags: list[str],
    subject: str,
) -> str:
    """Classify a ticket as "bug", "feature" or "other".

    The ticket-type field decides first, then the request-type field, then
    tags and subject keywords.
    """
    if type_value:
        lowered = str(type_value).lower()
        if any(word in lowered for word in ("bug", "defect", "issue")):
            return "bug"
        if any(word in lowered for word in ("feature", "enhancement", "request")):
            return "feature"

    if request_value:
        lowered = str(request_value).lower()
        if any(word in lowered for word in ("feature", "enhancement", "request")):
            return "feature"
        if any(word in lowered for word in ("problem", "bug", "issue", "error")):
            return "bug"

    tags = [tag.lower() for tag in tags]
    subject = subject.lower()
    if (
        any("feature" in tag or "enhancement" in tag for tag in tags)
        or "feature request" in subject
        or "enhancement" in subject
    ):
        return "feature"
    if (
        any("bug" in tag or "problem" in tag or "issue" in tag for tag in tags)
        or any(word in subject for word in ("bug", "problem", "error"))
    ):
        return "bug"
    return "other"


class ZendeskClient(TicketingClient):
    """Async client for the Zendesk Support API.

    Args:
        subdomain: Zendesk subdomain (``{subdomain}.zendesk.com``).
        email: Agent email used for API token auth.
        api_token: Zendesk API token.
        field_ids: Custom ticket field name -> field id, see
            Settings.zendesk_field_ids(). Overrides ids detected from
            ticket field titles by get_ticket_fields().
        request_delay: Seconds to sleep before every request.
        per_page: Page size for list endpoints (Zendesk max is 100).
    """

    TIMEOUT = 30.0

    def __init__(
        self,
        subdomain: str,
        email: str,
        api_token: str,
        field_ids: dict[str, int] | None = None,
        *,
        request_delay: float = 0.1,
        per_page: int = 100,
    ) -> None:
        if not (subdomain and email and api_token):
            raise ConfigurationError(
                "Zendesk requires ZENDESK_SUBDOMAIN, ZENDESK_EMAIL and ZENDESK_API_TOKEN"
            )
        self._base_url = f"https://{subdomain}.zendesk.com"
        self._auth = httpx.BasicAuth(f"{email}/token", api_token)
        self._field_ids = dict(field_ids or {})
        self._detected_field_ids: dict[str, int] = {}
        self._ticket_fields: list[dict] | None = None
        self._request_delay = request_delay
        self._per_page = per_page

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            auth=self._auth,
            headers={"Content-Type": "application/json"},
            timeout=self.TIMEOUT,
        )

    @_zendesk_retry
    async def _get(self, path: str, params: dict[str, Any] | None = None) -> dict:
        """GET one page, translating 429 and 404 into typed errors."""
        if self._request_delay:
            await asyncio.sleep(self._request_delay)

        async with self._client() as client:
            response = await client.get(path, params=params)

        if response.status_code == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            logger.warning("zendesk.rate_limited", path=path, retry_after=retry_after)
            raise RateLimitedError(retry_after)
        if response.status_code == 404:
            raise NotFoundError(f"Zendesk resource not found: {path}")
        response.raise_for_status()
        return response.json()

    # ── Ticket Fields ───────────────────────────────────────────────────

    async def get_ticket_fields(self) -> list[dict]:
        """Load ticket field definitions once and detect custom fields by title.

        Configured field ids always take precedence over detected ones.
        """
        if self._ticket_fields is not None:
            return self._ticket_fields

        data = await self._get("/api/v2/ticket_fields.json")
        self._ticket_fields = list(data.get("ticket_fields", []))
        self._detected_field_ids = detect_field_ids(self._ticket_fields)

        logger.info(
            "zendesk.ticket_fields_loaded",
            count=len(self._ticket_fields),
            detected=self._detected_field_ids,
            configured=sorted(self._field_ids),
        )
        return self._ticket_fields

    def field_id(self, name: str) -> int | None:
        """Effective field id for a custom field name, configured before detected."""
        return self._field_ids.get(name, self._detected_field_ids.get(name))

    # ── Organizations ───────────────────────────────────────────────────

    async def list_organizations(self) -> list[OrganizationRecord]:
        """Fetch every organization, following next_page until exhausted."""
        organizations: list[OrganizationRecord] = []
        page = 1
        while True:
            data = await self._get(
                "/api/v2/organizations.json",
                params={"page": page, "per_page": self._per_page},
            )
            for raw in data.get("organizations", []):
                org = self._parse_organization(raw)
                if org is not None:
                    organizations.append(org)
            if not data.get("next_page"):
                break
            page += 1

        logger.info("zendesk.organizations_fetched", count=len(organizations), pages=page)
        return organizations

    def _parse_organization(self, raw: dict) -> OrganizationRecord | None:
        if raw.get("id") is None:
            return None
        fields = raw.get("organization_fields") or {}
        crm_id = next(
            (str(fields[key]) for key in CRM_ID_FIELDS if fields.get(key)),
            None,
        )
        return OrganizationRecord(
            id=int(raw["id"]),
            name=raw.get("name") or "",
            domain_names=tuple(raw.get("domain_names") or ()),
            crm_id=crm_id,
            created_at=_parse_datetime(raw.get("created_at")),
            updated_at=_parse_datetime(raw.get("updated_at")),
        )

    # ── Tickets ─────────────────────────────────────────────────────────

    async def list_tickets_for_organization(
        self,
        organization_id: int,
        since: datetime | None = None,
        max_pages: int | None = None,
    ) -> list[TicketRecord]:
        """Fetch an organization's tickets.

        Without ``since`` the organization's ticket list endpoint is paged.
        With ``since`` the search API is queried for tickets updated at or
        after that instant. Either way at most ``max_pages`` pages are read.

        Raises:
            NotFoundError: The organization does not exist.
        """
        if since is None:
            path = f"/api/v2/organizations/{organization_id}/tickets.json"
            base_params: dict[str, Any] = {"per_page": self._per_page}
            key = "tickets"
        else:
            stamp = since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
            path = "/api/v2/search.json"
            base_params = {
                "query": f"type:ticket organization_id:{organization_id} updated>={stamp}",
                "per_page": self._per_page,
            }
            key = "results"

        tickets: list[TicketRecord] = []
        page = 1
        while True:
            data = await self._get(path, params={**base_params, "page": page})
            for raw in data.get(key, []):
                ticket = self._parse_ticket(raw)
                if ticket is not None:
                    tickets.append(ticket)
            if not data.get("next_page"):
                break
            if max_pages is not None and page >= max_pages:
                logger.info(
                    "zendesk.ticket_page_cap_reached",
                    organization_id=organization_id,
                    max_pages=max_pages,
                )
                break
            page += 1

        logger.debug(
            "zendesk.tickets_fetched",
            organization_id=organization_id,
            count=len(tickets),
            delta=since is not None,
        )
        return tickets

    def _parse_ticket(self, raw: dict) -> TicketRecord | None:
        """Parse a raw ticket, returning None for records we cannot store."""
        try:
            status = TicketStatus(raw.get("status"))
        except ValueError:
            logger.debug("zendesk.ticket_status_skipped", ticket_id=raw.get("id"), status=raw.get("status"))
            return None
        try:
            priority = TicketPriority(raw.get("priority") or "normal")
        except ValueError:
            priority = TicketPriority.NORMAL

        return TicketRecord(
            id=int(raw["id"]),
            organization_id=int(raw.get("organization_id") or 0),
            subject=raw.get("subject") or "",
            status=status,
            priority=priority,
            requester_id=raw.get("requester_id"),
            assignee_id=raw.get("assignee_id"),
            tags=list(raw.get("tags") or []),
            custom_fields=self.extract_custom_fields(raw),
            created_at=_parse_datetime(raw.get("created_at")),
            updated_at=_parse_datetime(raw.get("updated_at")),
        )

    def extract_custom_fields(self, raw: dict) -> TicketCustomFields:
        """Pull custom field values out of a raw ticket.

        Fields without a value fall back: module to "General", issue subtype
        to the module, workflow status to a label for the ticket status.
        Ticket type is classified as bug, feature or other, and escalation is
        also flagged by escalation tags.
        """
        values: dict[int, Any] = {}
        for field in raw.get("custom_fields") or []:
            if field.get("id") is not None:
                values[int(field["id"])] = field.get("value")

        def value_of(name: str) -> Any:
            field_id = self.field_id(name)
            return values.get(field_id) if field_id is not None else None

        tags = [str(tag) for tag in raw.get("tags") or []]
        module = _str_or_none(value_of("module")) or DEFAULT_MODULE
        escalated = value_of("is_escalated")
        escalated_by_tag = any(
            marker in tag.lower() for tag in tags for marker in ESCALATION_TAG_MARKERS
        )

        return TicketCustomFields(
            product=_str_or_none(value_of("product")),
            module=module,
            ticket_type=classify_ticket_type(
                value_of("ticket_type"),
                value_of("request_type"),
                tags,
                raw.get("subject") or "",
            ),
            workflow_status=(
                _str_or_none(value_of("workflow_status"))
                or WORKFLOW_STATUS_BY_TICKET_STATUS.get(str(raw.get("status")), "Unknown")
            ),
            issue_subtype=_str_or_none(value_of("issue_subtype")) or module,
            is_escalated=(
                escalated is True
                or str(escalated).lower() in ESCALATED_VALUES
                or escalated_by_tag
            ),
        )
