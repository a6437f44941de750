"""Async GitHub GraphQL client (the Cross-Reference Client).

Finds development issues that reference support tickets in two passes:
- Projects v2 items of each configured project, with their Status,
  sprint/iteration and release/version field values
- Issue search over the organization (or configured repositories) for
  common ticket reference markers

Ticket ids are pulled from issue titles and bodies with
extract_ticket_references(). A project or search term that fails is logged
and skipped so one bad project does not hide the others.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.orgsync.cache.schemas import TicketLinkRecord
from src.orgsync.clients.base import (
    AuthenticationError,
    ConfigurationError,
    CrossReferenceClient,
    UpstreamResponseError,
)

logger = structlog.get_logger(__name__)

GRAPHQL_URL = "https://api.github.com/graphql"

MAX_TICKET_ID = 10_000_000

TICKET_REFERENCE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"ZD[#\-]?(\d+)", re.IGNORECASE),
    re.compile(r"Zendesk[:\s#]+(\d+)", re.IGNORECASE),
    re.compile(r"zendesk\.com/agent/tickets/(\d+)", re.IGNORECASE),
    re.compile(r"\[?Ticket[:\s#]+(\d+)\]?", re.IGNORECASE),
)

SEARCH_TERMS: tuple[str, ...] = ("ZD#", "ZD-", "zendesk.com/agent/tickets")

PROJECT_ITEMS_QUERY = """
query GetProjectItems($org: String!, $projectNumber: Int!, $cursor: String) {
  organization(login: $org) {
    projectV2(number: $projectNumber) {
      title
      items(first: 100, after: $cursor) {
        pageInfo { hasNextPage endCursor }
        nodes {
          content {
            ... on Issue {
              number title body url updatedAt
              milestone { title }
              repository { name }
            }
            ... on PullRequest {
              number title body url updatedAt
              milestone { title }
              repository { name }
            }
          }
          fieldValues(first: 20) {
            nodes {
              ... on ProjectV2ItemFieldSingleSelectValue {
                name
                field { ... on ProjectV2SingleSelectField { name } }
              }
              ... on ProjectV2ItemFieldIterationValue {
                title
                field { ... on ProjectV2IterationField { name } }
              }
              ... on ProjectV2ItemFieldTextValue {
                text
                field { ... on ProjectV2Field { name } }
              }
            }
          }
        }
      }
    }
  }
}
"""

SEARCH_ISSUES_QUERY = """
query SearchIssues($query: String!, $cursor: String) {
  search(query: $query, type: ISSUE, first: 100, after: $cursor) {
    pageInfo { hasNextPage endCursor }
    nodes {
      ... on Issue {
        number title body url state updatedAt
        milestone { title }
        repository { name }
        projectItems(first: 5) {
          nodes {
            project { title }
            fieldValueByName(name: "Status") {
              ... on ProjectV2ItemFieldSingleSelectValue { name }
            }
          }
        }
      }
    }
  }
}
"""


def extract_ticket_references(*texts: str | None) -> list[int]:
    """Return the distinct ticket ids referenced in the given texts, in first-seen order.

    >>> extract_ticket_references("Fix export (ZD#1234)", "See zendesk.com/agent/tickets/99")
    [1234, 99]
    """
    combined = " ".join(t for t in texts if t)
    found: dict[int, None] = {}
    for pattern in TICKET_REFERENCE_PATTERNS:
        for match in pattern.finditer(combined):
            ticket_id = int(match.group(1))
            if 0 < ticket_id < MAX_TICKET_ID:
                found.setdefault(ticket_id, None)
    return list(found)


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.ConnectError, httpx.TimeoutException)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


_github_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(_is_transient),
    reraise=True,
)


class GitHubClient(CrossReferenceClient):
    """GraphQL client for GitHub Projects v2 and issue search.

    Args:
        token: GitHub token with read access to projects and issues.
        org: Organization login.
        project_numbers: Projects v2 to scan.
        search_repos: Limit issue search to these repositories (empty = whole org).
        max_search_pages: Page cap per search term.
    """

    TIMEOUT = 30.0

    def __init__(
        self,
        token: str,
        org: str,
        project_numbers: list[int] | None = None,
        search_repos: list[str] | None = None,
        *,
        max_search_pages: int = 3,
    ) -> None:
        if not (token and org):
            raise ConfigurationError("GitHub requires GITHUB_TOKEN and GITHUB_ORG")
        self._org = org
        self._project_numbers = list(project_numbers or [])
        self._search_repos = list(search_repos or [])
        self._max_search_pages = max_search_pages
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    @_github_retry
    async def _graphql(self, query: str, variables: dict[str, Any]) -> dict:
        async with httpx.AsyncClient(headers=self._headers, timeout=self.TIMEOUT) as client:
            response = await client.post(GRAPHQL_URL, json={"query": query, "variables": variables})
        if response.status_code == 401:
            raise AuthenticationError("GitHub rejected the token")
        response.raise_for_status()
        payload = response.json()
        if payload.get("errors"):
            raise UpstreamResponseError(f"GitHub GraphQL error: {payload['errors']}")
        return payload.get("data") or {}

    # ── Linked Issues ───────────────────────────────────────────────────

    async def list_linked_issues(self) -> list[TicketLinkRecord]:
        """Collect ticket links from projects then search, de-duplicated.

        When the same (ticket, repo, issue) is found by both passes the
        project item wins, since it carries sprint and release fields.
        """
        links: dict[tuple[int, str, int], TicketLinkRecord] = {}

        if not self._project_numbers:
            logger.warning("github.no_projects_configured", org=self._org)
        for project_number in self._project_numbers:
            try:
                project_links = await self._project_links(project_number)
            except (httpx.HTTPError, UpstreamResponseError) as exc:
                logger.warning("github.project_fetch_failed", project_number=project_number, error=str(exc))
                continue
            for link in project_links:
                links.setdefault((link.ticket_id, link.repo_name, link.issue_number), link)

        for term in SEARCH_TERMS:
            try:
                search_links = await self._search_links(term)
            except (httpx.HTTPError, UpstreamResponseError) as exc:
                logger.warning("github.search_failed", term=term, error=str(exc))
                continue
            for link in search_links:
                links.setdefault((link.ticket_id, link.repo_name, link.issue_number), link)

        logger.info("github.linked_issues_fetched", count=len(links))
        return list(links.values())

    async def _project_links(self, project_number: int) -> list[TicketLinkRecord]:
        links: list[TicketLinkRecord] = []
        cursor: str | None = None

        while True:
            data = await self._graphql(
                PROJECT_ITEMS_QUERY,
                {"org": self._org, "projectNumber": project_number, "cursor": cursor},
            )
            project = (data.get("organization") or {}).get("projectV2")
            if project is None:
                logger.warning("github.project_not_found", project_number=project_number, org=self._org)
                break

            items = project.get("items") or {}
            for node in items.get("nodes") or []:
                links.extend(self._links_from_project_item(project.get("title") or "", node))

            page_info = items.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            cursor = page_info.get("endCursor")

        logger.debug("github.project_scanned", project_number=project_number, links=len(links))
        return links

    def _links_from_project_item(self, project_title: str, node: dict) -> list[TicketLinkRecord]:
        content = node.get("content") or {}
        if not content.get("number"):
            return []  # draft item

        status = ""
        sprint: str | None = None
        release: str | None = None
        for value in (node.get("fieldValues") or {}).get("nodes") or []:
            field_name = ((value.get("field") or {}).get("name") or "").lower()
            if field_name == "status" and value.get("name"):
                status = value["name"]
            if ("sprint" in field_name or "iteration" in field_name) and value.get("title"):
                sprint = value["title"]
            if "release" in field_name or "version" in field_name:
                release = value.get("name") or value.get("text") or release

        return [
            TicketLinkRecord(
                ticket_id=ticket_id,
                issue_number=int(content["number"]),
                repo_name=(content.get("repository") or {}).get("name") or "",
                project_title=project_title,
                project_status=status,
                sprint=sprint,
                milestone=(content.get("milestone") or {}).get("title"),
                release_version=release,
                url=content.get("url") or "",
                issue_updated_at=_parse_datetime(content.get("updatedAt")),
            )
            for ticket_id in extract_ticket_references(content.get("title"), content.get("body"))
        ]

    async def _search_links(self, term: str) -> list[TicketLinkRecord]:
        if self._search_repos:
            scope = " ".join(f"repo:{self._org}/{repo}" for repo in self._search_repos)
        else:
            scope = f"org:{self._org}"
        query = f"{term} in:body,title {scope} is:issue"

        links: list[TicketLinkRecord] = []
        cursor: str | None = None
        for _ in range(self._max_search_pages):
            data = await self._graphql(SEARCH_ISSUES_QUERY, {"query": query, "cursor": cursor})
            search = data.get("search") or {}
            for node in search.get("nodes") or []:
                links.extend(self._links_from_search_node(node))

            page_info = search.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            cursor = page_info.get("endCursor")

        return links

    def _links_from_search_node(self, node: dict) -> list[TicketLinkRecord]:
        repo_name = (node.get("repository") or {}).get("name")
        if not node.get("number") or not repo_name:
            return []

        project_items = (node.get("projectItems") or {}).get("nodes") or []
        first_item = project_items[0] if project_items else {}
        project_title = (first_item.get("project") or {}).get("title") or "(No Project)"
        status = (first_item.get("fieldValueByName") or {}).get("name") or node.get("state") or ""

        return [
            TicketLinkRecord(
                ticket_id=ticket_id,
                issue_number=int(node["number"]),
                repo_name=repo_name,
                project_title=project_title,
                project_status=status,
                milestone=(node.get("milestone") or {}).get("title"),
                url=node.get("url") or "",
                issue_updated_at=_parse_datetime(node.get("updatedAt")),
            )
            for ticket_id in extract_ticket_references(node.get("title"), node.get("body"))
        ]
