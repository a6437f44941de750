"""External collaborators -- Ticketing, CRM and Cross-Reference clients.

Provides the ABCs the sync orchestrator depends on, the shared error types,
and httpx-based implementations for Zendesk, Salesforce and GitHub.
"""

from src.orgsync.clients.base import (
    AuthenticationError,
    ConfigurationError,
    CRMClient,
    CrossReferenceClient,
    NotFoundError,
    TicketingClient,
    UpstreamResponseError,
)
from src.orgsync.clients.github import GitHubClient, extract_ticket_references
from src.orgsync.clients.salesforce import SalesforceClient
from src.orgsync.clients.zendesk import ZendeskClient

__all__ = [
    "AuthenticationError",
    "CRMClient",
    "ConfigurationError",
    "CrossReferenceClient",
    "GitHubClient",
    "NotFoundError",
    "SalesforceClient",
    "TicketingClient",
    "UpstreamResponseError",
    "ZendeskClient",
    "extract_ticket_references",
]
