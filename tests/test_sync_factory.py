"""Tests for building the orchestrator and its collaborators from Settings."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from src.orgsync.clients.base import ConfigurationError
from src.orgsync.clients.github import GitHubClient
from src.orgsync.clients.salesforce import SalesforceClient
from src.orgsync.config import Settings
from src.orgsync.sync.factory import (
    build_crm_client,
    build_cross_reference_client,
    build_orchestrator,
)


def _make_settings(**overrides) -> Settings:
    defaults = {
        "ZENDESK_SUBDOMAIN": "acme",
        "ZENDESK_EMAIL": "agent@acme.com",
        "ZENDESK_API_TOKEN": "tok",
        "SF_CLIENT_ID": "",
        "GITHUB_TOKEN": "",
        "GITHUB_ORG": "",
    }
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


class TestBuildOrchestrator:
    def test_zendesk_only(self):
        orchestrator = build_orchestrator(_make_settings(), MagicMock())

        assert orchestrator is not None
        assert not orchestrator.is_sync_in_progress()

    def test_missing_zendesk_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            build_orchestrator(_make_settings(ZENDESK_API_TOKEN=""), MagicMock())

    def test_incomplete_salesforce_jwt_is_configuration_error(self):
        settings = _make_settings(SF_CLIENT_ID="key", SF_AUTH_TYPE="jwt", SF_USERNAME="")

        with pytest.raises(ConfigurationError):
            build_orchestrator(settings, MagicMock())


class TestOptionalCollaborators:
    def test_unconfigured_collaborators_are_none(self):
        settings = _make_settings()

        assert build_crm_client(settings) is None
        assert build_cross_reference_client(settings) is None

    def test_configured_collaborators(self):
        settings = _make_settings(
            SF_CLIENT_ID="key",
            SF_CLIENT_SECRET="secret",
            GITHUB_TOKEN="ghp",
            GITHUB_ORG="acme",
            GITHUB_PROJECT_NUMBERS="3, 7,",
        )

        assert isinstance(build_crm_client(settings), SalesforceClient)
        assert isinstance(build_cross_reference_client(settings), GitHubClient)
        assert settings.github_project_numbers() == [3, 7]
