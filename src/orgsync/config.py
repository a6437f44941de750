"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class SalesforceAuthType(str, Enum):
    client_credentials = "client_credentials"
    jwt = "jwt"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/orgsync-cache.db"

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ALLOWED_ORIGINS: str = "*"

    # Monitoring
    SENTRY_DSN: str = ""

    # Zendesk (Ticketing System)
    ZENDESK_SUBDOMAIN: str = ""
    ZENDESK_EMAIL: str = ""
    ZENDESK_API_TOKEN: str = ""
    ZENDESK_REQUEST_DELAY_SECONDS: float = 0.1

    # Zendesk custom ticket field ids. Unset fields are detected by title
    # from ticket_fields.json; a configured id overrides the detected one.
    ZENDESK_FIELD_PRODUCT: int | None = None
    ZENDESK_FIELD_MODULE: int | None = None
    ZENDESK_FIELD_TICKET_TYPE: int | None = None
    ZENDESK_FIELD_WORKFLOW_STATUS: int | None = None
    ZENDESK_FIELD_ISSUE_SUBTYPE: int | None = None
    ZENDESK_FIELD_ESCALATED: int | None = None

    # Salesforce (CRM System)
    SF_LOGIN_URL: str = "https://login.salesforce.com"
    SF_AUTH_TYPE: SalesforceAuthType = SalesforceAuthType.client_credentials
    SF_CLIENT_ID: str = ""
    SF_CLIENT_SECRET: str = ""
    SF_USERNAME: str = ""
    SF_PRIVATE_KEY: str = ""  # PEM content, for containerized deployments
    SF_PRIVATE_KEY_PATH: str = ""  # Path to PEM file, for local dev
    SF_API_VERSION: str = "v59.0"
    SF_TOKEN_TTL_MINUTES: int = 90

    # GitHub (Cross-Reference)
    GITHUB_TOKEN: str = ""
    GITHUB_ORG: str = ""
    GITHUB_PROJECT_NUMBERS: str = ""  # Comma-separated project numbers
    GITHUB_SEARCH_REPOS: str = ""  # Comma-separated repo names; empty = whole org

    # Sync
    SYNC_SCHEDULE: str = "0 2 * * *"
    SYNC_ON_STARTUP_IF_EMPTY: bool = True
    SYNC_TICKET_MAX_PAGES_PER_ORG: int = 10
    SYNC_ORG_PAUSE_SECONDS: float = 0.1

    def zendesk_configured(self) -> bool:
        return bool(self.ZENDESK_SUBDOMAIN and self.ZENDESK_EMAIL and self.ZENDESK_API_TOKEN)

    def salesforce_configured(self) -> bool:
        return bool(self.SF_CLIENT_ID)

    def github_configured(self) -> bool:
        return bool(self.GITHUB_TOKEN and self.GITHUB_ORG)

    def github_project_numbers(self) -> list[int]:
        """Parse GITHUB_PROJECT_NUMBERS into a list of ints, skipping blanks."""
        return [
            int(part)
            for part in self.GITHUB_PROJECT_NUMBERS.split(",")
            if part.strip()
        ]

    def github_search_repos(self) -> list[str]:
        return [part.strip() for part in self.GITHUB_SEARCH_REPOS.split(",") if part.strip()]

    def zendesk_field_ids(self) -> dict[str, int]:
        """Configured ticket custom-field ids by field name, unset ones omitted."""
        configured = {
            "product": self.ZENDESK_FIELD_PRODUCT,
            "module": self.ZENDESK_FIELD_MODULE,
            "ticket_type": self.ZENDESK_FIELD_TICKET_TYPE,
            "workflow_status": self.ZENDESK_FIELD_WORKFLOW_STATUS,
            "issue_subtype": self.ZENDESK_FIELD_ISSUE_SUBTYPE,
            "is_escalated": self.ZENDESK_FIELD_ESCALATED,
        }
        return {name: field_id for name, field_id in configured.items() if field_id is not None}


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
