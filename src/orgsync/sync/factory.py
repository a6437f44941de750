"""Wire a SyncOrchestrator from Settings.

The Ticketing client is mandatory; the CRM and Cross-Reference clients are
built only when their credentials are present. A configured but incomplete
collaborator raises ConfigurationError here, before any I/O.
"""

from __future__ import annotations

import structlog

from src.orgsync.cache.repository import CacheStore
from src.orgsync.clients.base import ConfigurationError
from src.orgsync.clients.github import GitHubClient
from src.orgsync.clients.salesforce import SalesforceClient
from src.orgsync.clients.zendesk import ZendeskClient
from src.orgsync.config import Settings
from src.orgsync.sync.orchestrator import SyncOrchestrator

logger = structlog.get_logger(__name__)


def build_ticketing_client(settings: Settings) -> ZendeskClient:
    if not settings.zendesk_configured():
        raise ConfigurationError(
            "Zendesk is not configured: set ZENDESK_SUBDOMAIN, ZENDESK_EMAIL and ZENDESK_API_TOKEN"
        )
    return ZendeskClient(
        settings.ZENDESK_SUBDOMAIN,
        settings.ZENDESK_EMAIL,
        settings.ZENDESK_API_TOKEN,
        settings.zendesk_field_ids(),
        request_delay=settings.ZENDESK_REQUEST_DELAY_SECONDS,
    )


def build_crm_client(settings: Settings) -> SalesforceClient | None:
    if not settings.salesforce_configured():
        return None
    return SalesforceClient(
        settings.SF_LOGIN_URL,
        settings.SF_CLIENT_ID,
        settings.SF_AUTH_TYPE,
        client_secret=settings.SF_CLIENT_SECRET,
        username=settings.SF_USERNAME,
        private_key=settings.SF_PRIVATE_KEY,
        private_key_path=settings.SF_PRIVATE_KEY_PATH,
        api_version=settings.SF_API_VERSION,
        token_ttl_seconds=settings.SF_TOKEN_TTL_MINUTES * 60,
    )


def build_cross_reference_client(settings: Settings) -> GitHubClient | None:
    if not settings.github_configured():
        return None
    return GitHubClient(
        settings.GITHUB_TOKEN,
        settings.GITHUB_ORG,
        settings.github_project_numbers(),
        settings.github_search_repos(),
    )


def build_orchestrator(settings: Settings, store: CacheStore) -> SyncOrchestrator:
    """Build the orchestrator and its collaborators from settings.

    Raises:
        ConfigurationError: Zendesk is unconfigured, or a configured
            collaborator is missing a required setting.
    """
    ticketing = build_ticketing_client(settings)
    crm = build_crm_client(settings)
    cross_reference = build_cross_reference_client(settings)

    logger.info(
        "sync.orchestrator_built",
        crm_enabled=crm is not None,
        cross_reference_enabled=cross_reference is not None,
    )
    return SyncOrchestrator(
        store,
        ticketing,
        crm,
        cross_reference,
        max_pages_per_org=settings.SYNC_TICKET_MAX_PAGES_PER_ORG,
        org_pause_seconds=settings.SYNC_ORG_PAUSE_SECONDS,
    )
