from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.config import Settings, get_settings


def _make_settings(monkeypatch: pytest.MonkeyPatch, **overrides: str) -> Settings:
    for key, value in overrides.items():
        monkeypatch.setenv(key, value)
    return Settings(_env_file=None)  # type: ignore[call-arg]


# --- 1. Settings loads successfully ---
def test_settings_loads_successfully(monkeypatch: pytest.MonkeyPatch) -> None:
    settings = _make_settings(monkeypatch)
    assert settings.database_url.startswith("postgresql+asyncpg://")
    assert settings.ai_provider == "openai"
    assert settings.ai_model == "gpt-4o-mini"
    assert settings.statistical_sample_size == 40
    assert settings.positive_percent_threshold == 2.5
    assert settings.lead_positive_threshold == 1.0


# --- 2. Missing required env var raises validation error ---
def test_missing_database_url_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)  # type: ignore[call-arg]


# --- 3. get_settings() caching ---
def test_get_settings_uses_cache() -> None:
    get_settings.cache_clear()
    first = get_settings()
    second = get_settings()
    assert first is second


# --- 4. Provider selection ---
def test_provider_is_case_insensitive(monkeypatch: pytest.MonkeyPatch) -> None:
    settings = _make_settings(monkeypatch, AI_PROVIDER=" Azure ", AZURE_OPENAI_API_KEY="azure-key")
    assert settings.ai_provider == "azure"
    assert settings.ai_api_key() == "azure-key"


def test_unknown_provider_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    with pytest.raises(ValidationError):
        _make_settings(monkeypatch, AI_PROVIDER="anthropic")


def test_openai_key_used_for_openai_provider(monkeypatch: pytest.MonkeyPatch) -> None:
    settings = _make_settings(monkeypatch)
    assert settings.ai_api_key() == "sk-test-key-000000"


# --- 5. Validation of tunables ---
@pytest.mark.parametrize("value", ["-0.1", "2.5"])
def test_temperature_out_of_range_rejected(monkeypatch: pytest.MonkeyPatch, value: str) -> None:
    with pytest.raises(ValidationError, match="AI_TEMPERATURE"):
        _make_settings(monkeypatch, AI_TEMPERATURE=value)


def test_max_retries_must_allow_one_attempt(monkeypatch: pytest.MonkeyPatch) -> None:
    with pytest.raises(ValidationError):
        _make_settings(monkeypatch, AI_MAX_RETRIES="0")


def test_rate_limit_status_codes_parsed(monkeypatch: pytest.MonkeyPatch) -> None:
    settings = _make_settings(monkeypatch, AI_RATE_LIMIT_STATUS_CODES="429, 503,")
    assert settings.ai_rate_limit_status_code_set() == {429, 503}
