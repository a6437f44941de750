"""Async client for the Salesforce REST API (the CRM System).

Provides SalesforceClient supporting two OAuth flows:
- client_credentials: client id + secret (sandbox connected apps)
- jwt: JWT bearer assertion signed RS256 with the connected app's private key

The access token is cached with an expiry timestamp and refreshed lazily
on the first call after it has passed. A failed token request raises
AuthenticationError; SOQL pages are retried with tenacity on transient
errors and followed through nextRecordsUrl.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any

import httpx
import structlog
from jose import jwt
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.orgsync.cache.schemas import CRMAccount
from src.orgsync.clients.base import (
    AuthenticationError,
    ConfigurationError,
    CRMClient,
    UpstreamResponseError,
)
from src.orgsync.config import SalesforceAuthType

logger = structlog.get_logger(__name__)

JWT_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"
JWT_ASSERTION_LIFETIME_SECONDS = 300

CSM_QUERY = (
    "SELECT Id, Name, Customer_Success_Manager_csm__c, "
    "Customer_Success_Manager_csm__r.Id, Customer_Success_Manager_csm__r.Name, "
    "Customer_Success_Manager_csm__r.Email "
    "FROM Account WHERE Customer_Success_Manager_csm__c != null"
)

OWNER_QUERY = (
    "SELECT Id, Name, OwnerId, Owner.Id, Owner.Name, Owner.Email "
    "FROM Account WHERE Owner.IsActive = true"
)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.ConnectError, httpx.TimeoutException)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code == 429 or exc.response.status_code >= 500
    return False


_salesforce_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(_is_transient),
    reraise=True,
)


class SalesforceClient(CRMClient):
    """Async Salesforce client for account ownership queries.

    Args:
        login_url: OAuth host, e.g. https://login.salesforce.com.
        client_id: Connected app consumer key.
        auth_type: client_credentials or jwt.
        client_secret: Required for client_credentials.
        username: Required for jwt (the ``sub`` claim).
        private_key: PEM content, for jwt.
        private_key_path: Path to a PEM file, for jwt when private_key is empty.
        api_version: REST API version segment.
        token_ttl_seconds: How long a token is reused before re-authenticating.

    Raises:
        ConfigurationError: The selected flow is missing a required setting.
    """

    TIMEOUT = 30.0

    def __init__(
        self,
        login_url: str,
        client_id: str,
        auth_type: SalesforceAuthType = SalesforceAuthType.client_credentials,
        *,
        client_secret: str = "",
        username: str = "",
        private_key: str = "",
        private_key_path: str = "",
        api_version: str = "v59.0",
        token_ttl_seconds: float = 90 * 60,
    ) -> None:
        if not (login_url and client_id):
            raise ConfigurationError("Salesforce requires SF_LOGIN_URL and SF_CLIENT_ID")
        if auth_type == SalesforceAuthType.client_credentials and not client_secret:
            raise ConfigurationError("Salesforce client_credentials auth requires SF_CLIENT_SECRET")
        if auth_type == SalesforceAuthType.jwt:
            if not username:
                raise ConfigurationError("Salesforce JWT auth requires SF_USERNAME")
            if not (private_key or private_key_path):
                raise ConfigurationError(
                    "Salesforce JWT auth requires SF_PRIVATE_KEY or SF_PRIVATE_KEY_PATH"
                )

        self._login_url = login_url.rstrip("/")
        self._client_id = client_id
        self._auth_type = auth_type
        self._client_secret = client_secret
        self._username = username
        self._private_key = private_key
        self._private_key_path = private_key_path
        self._api_version = api_version
        self._token_ttl_seconds = token_ttl_seconds

        self._access_token: str | None = None
        self._instance_url: str | None = None
        self._token_expires_at: float = 0.0
        self._auth_lock = asyncio.Lock()

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.TIMEOUT)

    # ── Authentication ──────────────────────────────────────────────────

    @property
    def token_valid(self) -> bool:
        return self._access_token is not None and time.monotonic() < self._token_expires_at

    def _load_private_key(self) -> str:
        if self._private_key:
            return self._private_key.replace("\\n", "\n")
        path = Path(self._private_key_path).expanduser().resolve()
        if not path.is_file():
            raise ConfigurationError(f"Salesforce private key file not found: {path}")
        return path.read_text(encoding="utf-8")

    def _create_jwt_assertion(self) -> str:
        claims = {
            "iss": self._client_id,
            "sub": self._username,
            "aud": self._login_url,
            "exp": int(time.time()) + JWT_ASSERTION_LIFETIME_SECONDS,
        }
        return jwt.encode(claims, self._load_private_key(), algorithm="RS256")

    def _token_request_body(self) -> dict[str, str]:
        if self._auth_type == SalesforceAuthType.jwt:
            return {"grant_type": JWT_GRANT_TYPE, "assertion": self._create_jwt_assertion()}
        return {
            "grant_type": "client_credentials",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        }

    async def _ensure_token(self) -> str:
        """Return a valid access token, authenticating if the held one expired."""
        async with self._auth_lock:
            if self.token_valid:
                return self._access_token  # type: ignore[return-value]

            logger.info("salesforce.authenticating", auth_type=self._auth_type.value)
            body = self._token_request_body()
            try:
                async with self._client() as client:
                    response = await client.post(
                        f"{self._login_url}/services/oauth2/token",
                        data=body,
                    )
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as exc:
                detail = _error_description(exc.response)
                logger.error(
                    "salesforce.auth_failed",
                    status_code=exc.response.status_code,
                    detail=detail,
                )
                raise AuthenticationError(f"Salesforce authentication failed: {detail}") from exc
            except httpx.HTTPError as exc:
                raise AuthenticationError(f"Salesforce authentication failed: {exc}") from exc

            if not data.get("access_token") or not data.get("instance_url"):
                raise AuthenticationError("Salesforce token response missing access_token/instance_url")

            self._access_token = data["access_token"]
            self._instance_url = data["instance_url"].rstrip("/")
            self._token_expires_at = time.monotonic() + self._token_ttl_seconds
            logger.info("salesforce.authenticated", instance_url=self._instance_url)
            return self._access_token

    def invalidate_token(self) -> None:
        self._access_token = None
        self._token_expires_at = 0.0

    # ── Queries ─────────────────────────────────────────────────────────

    @_salesforce_retry
    async def _get_page(self, url: str, params: dict[str, Any] | None = None) -> dict:
        token = await self._ensure_token()
        async with self._client() as client:
            response = await client.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
        if response.status_code == 401:
            self.invalidate_token()
            raise AuthenticationError("Salesforce rejected the access token")
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise UpstreamResponseError(f"Unexpected Salesforce query payload from {url}")
        return data

    async def query(self, soql: str) -> list[dict]:
        """Run a SOQL query and return every record across all result pages."""
        await self._ensure_token()
        data = await self._get_page(
            f"{self._instance_url}/services/data/{self._api_version}/query",
            params={"q": soql},
        )
        records: list[dict] = list(data.get("records", []))
        while not data.get("done", True) and data.get("nextRecordsUrl"):
            data = await self._get_page(f"{self._instance_url}{data['nextRecordsUrl']}")
            records.extend(data.get("records", []))
        return records

    async def list_ownership_assignments(self) -> list[CRMAccount]:
        """Fetch accounts with their CSM.

        Uses the Customer_Success_Manager_csm__c lookup; orgs without that
        field reject the query, in which case the account Owner stands in
        for the CSM.
        """
        try:
            records = await self.query(CSM_QUERY)
            relation, id_field = "Customer_Success_Manager_csm__r", "Customer_Success_Manager_csm__c"
            source = "csm_field"
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "salesforce.csm_query_rejected",
                status_code=exc.response.status_code,
                detail=_error_description(exc.response),
            )
            records = await self.query(OWNER_QUERY)
            relation, id_field = "Owner", "OwnerId"
            source = "owner"

        accounts: list[CRMAccount] = []
        for record in records:
            if not record.get("Id"):
                continue
            owner = record.get(relation) or {}
            accounts.append(
                CRMAccount(
                    account_id=record["Id"],
                    account_name=record.get("Name") or "",
                    owner_id=owner.get("Id") or record.get(id_field) or None,
                    owner_name=owner.get("Name") or None,
                    owner_email=owner.get("Email") or None,
                )
            )

        logger.info("salesforce.accounts_fetched", count=len(accounts), source=source)
        return accounts


def _error_description(response: httpx.Response) -> str:
    """Best-effort human-readable error from a Salesforce error response."""
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        return payload.get("error_description") or payload.get("error") or str(payload)[:200]
    if isinstance(payload, list) and payload and isinstance(payload[0], dict):
        return payload[0].get("message", "") or str(payload[0])[:200]
    return str(payload)[:200]
