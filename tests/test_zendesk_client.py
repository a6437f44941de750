"""Tests for ZendeskClient with mocked httpx responses.

httpx.AsyncClient.get is patched so no network traffic happens; every
response carries a Request so raise_for_status() behaves as in production.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.orgsync.cache.schemas import TicketPriority, TicketStatus
from src.orgsync.clients.base import ConfigurationError, NotFoundError
from src.orgsync.clients.zendesk import ZendeskClient, classify_ticket_type


# ── Helpers ─────────────────────────────────────────────────────────────────


FIELD_IDS = {"product": 11, "module": 12, "is_escalated": 13}


def _make_client(**overrides) -> ZendeskClient:
    defaults = {
        "subdomain": "acme",
        "email": "agent@acme.com",
        "api_token": "tok",
        "field_ids": FIELD_IDS,
        "request_delay": 0,
    }
    defaults.update(overrides)
    return ZendeskClient(**defaults)


def _response(status_code: int = 200, json: dict | None = None, headers: dict | None = None) -> httpx.Response:
    return httpx.Response(
        status_code,
        json=json if json is not None else {},
        headers=headers,
        request=httpx.Request("GET", "https://acme.zendesk.com/api/v2/test.json"),
    )


def _raw_ticket(ticket_id: int, status: str = "open", **overrides) -> dict:
    raw = {
        "id": ticket_id,
        "organization_id": 1,
        "subject": f"Ticket {ticket_id}",
        "status": status,
        "priority": "high",
        "tags": ["vip"],
        "custom_fields": [
            {"id": 11, "value": "Analytics"},
            {"id": 12, "value": None},
            {"id": 13, "value": "escalated"},
        ],
        "created_at": "2026-03-01T10:00:00Z",
        "updated_at": "2026-03-02T11:30:00Z",
    }
    raw.update(overrides)
    return raw


# ── Construction ────────────────────────────────────────────────────────────


class TestConfiguration:
    def test_missing_credentials_raise(self):
        with pytest.raises(ConfigurationError):
            _make_client(api_token="")


# ── Organizations ───────────────────────────────────────────────────────────


class TestListOrganizations:
    async def test_follows_next_page(self):
        pages = [
            _response(json={
                "organizations": [
                    {
                        "id": 1,
                        "name": "Acme Inc",
                        "domain_names": ["acme.com"],
                        "organization_fields": {"salesforce_id": "001A000001abcDE"},
                        "updated_at": "2026-03-01T00:00:00Z",
                    }
                ],
                "next_page": "https://acme.zendesk.com/api/v2/organizations.json?page=2",
            }),
            _response(json={
                "organizations": [
                    {"id": 2, "name": "Globex", "organization_fields": {"sfid": "001B"}},
                    {"name": "No id"},
                ],
                "next_page": None,
            }),
        ]

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock, side_effect=pages) as mock_get:
            orgs = await _make_client().list_organizations()

        assert [o.id for o in orgs] == [1, 2]
        assert orgs[0].crm_id == "001A000001abcDE"
        assert orgs[0].domain_names == ("acme.com",)
        assert orgs[0].updated_at == datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert orgs[1].crm_id == "001B"
        assert mock_get.await_count == 2
        assert mock_get.await_args_list[1].kwargs["params"]["page"] == 2


# ── Tickets ─────────────────────────────────────────────────────────────────


class TestListTickets:
    async def test_full_fetch_parses_tickets(self):
        page = _response(json={
            "tickets": [_raw_ticket(100), _raw_ticket(101, status="deleted")],
            "next_page": None,
        })

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock, return_value=page) as mock_get:
            tickets = await _make_client().list_tickets_for_organization(1)

        assert mock_get.await_args.args[0] == "/api/v2/organizations/1/tickets.json"
        assert [t.id for t in tickets] == [100]
        ticket = tickets[0]
        assert ticket.status == TicketStatus.OPEN
        assert ticket.priority == TicketPriority.HIGH
        assert ticket.custom_fields.product == "Analytics"
        assert ticket.custom_fields.module == "General"
        assert ticket.custom_fields.issue_subtype == "General"
        assert ticket.custom_fields.ticket_type == "other"
        assert ticket.custom_fields.is_escalated is True
        assert ticket.updated_at == datetime(2026, 3, 2, 11, 30, tzinfo=timezone.utc)

    async def test_delta_uses_search_query(self):
        page = _response(json={"results": [_raw_ticket(100)], "next_page": None})
        since = datetime(2026, 3, 4, 2, 0, 5, tzinfo=timezone.utc)

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock, return_value=page) as mock_get:
            tickets = await _make_client().list_tickets_for_organization(42, since=since)

        path = mock_get.await_args.args[0]
        query = mock_get.await_args.kwargs["params"]["query"]
        assert path == "/api/v2/search.json"
        assert query == "type:ticket organization_id:42 updated>=2026-03-04T02:00:05Z"
        assert [t.id for t in tickets] == [100]

    async def test_page_cap(self):
        page = _response(json={"tickets": [_raw_ticket(100)], "next_page": "more"})

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock, return_value=page) as mock_get:
            tickets = await _make_client().list_tickets_for_organization(1, max_pages=2)

        assert mock_get.await_count == 2
        assert len(tickets) == 2

    async def test_not_found(self):
        with patch(
            "httpx.AsyncClient.get", new_callable=AsyncMock, return_value=_response(404)
        ) as mock_get:
            with pytest.raises(NotFoundError):
                await _make_client().list_tickets_for_organization(999)

        assert mock_get.await_count == 1

    async def test_rate_limit_honours_retry_after(self):
        responses = [
            _response(429, headers={"Retry-After": "0"}),
            _response(json={"tickets": [_raw_ticket(100)], "next_page": None}),
        ]

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock, side_effect=responses) as mock_get:
            tickets = await _make_client().list_tickets_for_organization(1)

        assert mock_get.await_count == 2
        assert [t.id for t in tickets] == [100]

    async def test_rate_limit_with_http_date_retry_after(self):
        responses = [
            _response(429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}),
            _response(json={"tickets": [_raw_ticket(100)], "next_page": None}),
        ]

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock, side_effect=responses) as mock_get:
            tickets = await _make_client().list_tickets_for_organization(1)

        assert mock_get.await_count == 2
        assert [t.id for t in tickets] == [100]

    async def test_client_error_not_retried(self):
        with patch(
            "httpx.AsyncClient.get", new_callable=AsyncMock, return_value=_response(403)
        ) as mock_get:
            with pytest.raises(httpx.HTTPStatusError):
                await _make_client().list_tickets_for_organization(1)

        assert mock_get.await_count == 1


class TestCustomFields:
    def test_unconfigured_fields_fall_back(self):
        client = _make_client(field_ids={})

        fields = client.extract_custom_fields(_raw_ticket(100, status="hold"))

        assert fields.product is None
        assert fields.module == "General"
        assert fields.workflow_status == "Backlogged"
        assert fields.is_escalated is False

    def test_boolean_escalation_flag(self):
        raw = _raw_ticket(100, custom_fields=[{"id": 13, "value": True}])

        assert _make_client().extract_custom_fields(raw).is_escalated is True

    def test_escalation_tag(self):
        raw = _raw_ticket(100, tags=["exec_escalation"], custom_fields=[])

        assert _make_client(field_ids={}).extract_custom_fields(raw).is_escalated is True

    def test_issue_subtype_defaults_to_module(self):
        raw = _raw_ticket(100, custom_fields=[{"id": 12, "value": "Reporting"}])

        fields = _make_client().extract_custom_fields(raw)

        assert fields.module == "Reporting"
        assert fields.issue_subtype == "Reporting"


class TestTicketFields:
    """Custom fields are detected from ticket field titles."""

    TICKET_FIELDS = {
        "ticket_fields": [
            {"id": 1, "title": "Subject"},
            {"id": 21, "title": "Product"},
            {"id": 22, "title": "Component"},
            {"id": 23, "title": "Issue Type"},
            {"id": 24, "title": "Dev Status"},
            {"id": 25, "title": "Sub-Category"},
        ]
    }

    async def test_detects_fields_once(self):
        client = _make_client(field_ids={})

        with patch(
            "httpx.AsyncClient.get",
            new_callable=AsyncMock,
            return_value=_response(json=self.TICKET_FIELDS),
        ) as mock_get:
            await client.get_ticket_fields()
            fields = await client.get_ticket_fields()

        assert mock_get.await_count == 1
        assert mock_get.await_args.args[0] == "/api/v2/ticket_fields.json"
        assert len(fields) == 6
        assert client.field_id("product") == 21
        assert client.field_id("module") == 22
        assert client.field_id("ticket_type") == 23
        assert client.field_id("workflow_status") == 24
        assert client.field_id("issue_subtype") == 25

    async def test_configured_id_overrides_detected(self):
        client = _make_client(field_ids={"module": 99})

        with patch(
            "httpx.AsyncClient.get",
            new_callable=AsyncMock,
            return_value=_response(json=self.TICKET_FIELDS),
        ):
            await client.get_ticket_fields()

        assert client.field_id("module") == 99
        assert client.field_id("product") == 21

    async def test_detected_fields_are_extracted(self):
        client = _make_client(field_ids={})
        raw = _raw_ticket(
            100,
            tags=[],
            custom_fields=[
                {"id": 21, "value": "Analytics"},
                {"id": 23, "value": "Defect"},
                {"id": 24, "value": "In QA"},
                {"id": 25, "value": "Login"},
            ],
        )

        with patch(
            "httpx.AsyncClient.get",
            new_callable=AsyncMock,
            return_value=_response(json=self.TICKET_FIELDS),
        ):
            await client.get_ticket_fields()
        fields = client.extract_custom_fields(raw)

        assert fields.product == "Analytics"
        assert fields.module == "General"
        assert fields.ticket_type == "bug"
        assert fields.workflow_status == "In QA"
        assert fields.issue_subtype == "Login"


class TestTicketTypeClassification:
    def test_type_field_decides_first(self):
        assert classify_ticket_type("Enhancement", "Problem", [], "") == "feature"
        assert classify_ticket_type("Bug", None, ["feature"], "") == "bug"

    def test_request_type_field(self):
        assert classify_ticket_type(None, "Feature Request", [], "") == "feature"
        assert classify_ticket_type("Question", "Error report", [], "") == "bug"

    def test_tags_and_subject_fallback(self):
        assert classify_ticket_type(None, None, ["Enhancement_Ask"], "") == "feature"
        assert classify_ticket_type(None, None, [], "Feature request: dark mode") == "feature"
        assert classify_ticket_type(None, None, [], "Export error on save") == "bug"
        assert classify_ticket_type(None, None, ["vip"], "How do I log in?") == "other"
