"""Tests for relayer settings."""

import logging

import pytest
from pydantic import ValidationError

from rotor.config import NOT_CONFIGURED_MESSAGE, Settings, configure_logging, get_settings, reset_settings
from rotor.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("ROTOR_CONTRACT_ID", "ROTOR_RELAYER_SECRET", "ROTOR_LEDGER_BACKEND", "ROTOR_PORT"):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.port == 3001
    assert settings.confirmation_timeout == 60.0
    assert settings.poll_interval == 2.0
    assert settings.amount_decimals == 7
    assert not settings.is_configured


def test_environment_prefix(monkeypatch):
    monkeypatch.setenv("ROTOR_CONTRACT_ID", "CABC")
    monkeypatch.setenv("ROTOR_RELAYER_SECRET", "SSECRET")
    monkeypatch.setenv("ROTOR_PORT", "8080")
    settings = Settings(_env_file=None)
    assert settings.port == 8080
    assert settings.is_configured
    settings.require_ledger_credentials()


def test_secret_not_in_repr():
    settings = Settings(relayer_secret="SSECRET", _env_file=None)
    assert "SSECRET" not in repr(settings)
    assert settings.relayer_secret.get_secret_value() == "SSECRET"


def test_missing_credentials():
    with pytest.raises(ConfigurationError) as exc_info:
        Settings(_env_file=None).require_ledger_credentials()
    assert str(exc_info.value) == NOT_CONFIGURED_MESSAGE


def test_memory_backend_is_configured():
    assert Settings(ledger_backend="memory", _env_file=None).is_configured


def test_invalid_values():
    with pytest.raises(ValidationError):
        Settings(poll_interval=0, _env_file=None)
    with pytest.raises(ValidationError):
        Settings(ledger_backend="ethereum", _env_file=None)


def test_get_settings_is_cached():
    assert get_settings() is get_settings()


def test_configure_logging(monkeypatch):
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
    configure_logging("debug")
    assert calls[0]["level"] == logging.DEBUG
    configure_logging("nonsense")
    assert calls[1]["level"] == logging.INFO
