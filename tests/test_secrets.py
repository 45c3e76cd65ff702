"""Tests for credential placeholder resolution."""

from unittest.mock import MagicMock

import pytest

from conduit.exceptions import ConfigurationError
from conduit.services.secrets import CredentialResolver, SecretManagerService, secret_name_for


def test_secret_name_for():
    assert secret_name_for("CRM_API_KEY") == "crm-api-key"


def test_resolves_from_environment(monkeypatch):
    monkeypatch.setenv("CRM_API_KEY", "env-key")
    resolver = CredentialResolver()

    resolved = resolver.resolve({
        "url": "https://crm.example.com",
        "headers": {"X-Key": "${CRM_API_KEY}"},
        "scopes": ["read", "token=${CRM_API_KEY}"],
        "page_size": 50,
    })

    assert resolved == {
        "url": "https://crm.example.com",
        "headers": {"X-Key": "env-key"},
        "scopes": ["read", "token=env-key"],
        "page_size": 50,
    }


def test_secret_manager_takes_precedence(monkeypatch):
    monkeypatch.setenv("CRM_API_KEY", "env-key")
    secrets = MagicMock(spec=SecretManagerService)
    secrets.get_secret.return_value = "secret-key"

    assert CredentialResolver(secrets).resolve("${CRM_API_KEY}") == "secret-key"
    secrets.get_secret.assert_called_once_with("crm-api-key")


def test_falls_back_to_environment_when_secret_missing(monkeypatch):
    monkeypatch.setenv("CRM_API_KEY", "env-key")
    secrets = MagicMock(spec=SecretManagerService)
    secrets.get_secret.side_effect = RuntimeError("not found")

    assert CredentialResolver(secrets).resolve("${CRM_API_KEY}") == "env-key"


def test_unresolvable_placeholder(monkeypatch):
    monkeypatch.delenv("MISSING_TOKEN", raising=False)

    with pytest.raises(ConfigurationError, match="MISSING_TOKEN"):
        CredentialResolver().resolve({"token": "${MISSING_TOKEN}"})


def test_options_are_not_mutated(monkeypatch):
    monkeypatch.setenv("CRM_API_KEY", "env-key")
    options = {"headers": {"X-Key": "${CRM_API_KEY}"}}

    CredentialResolver().resolve(options)

    assert options == {"headers": {"X-Key": "${CRM_API_KEY}"}}
