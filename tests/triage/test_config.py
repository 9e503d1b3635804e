"""Tests for TriageSettings loading and validation."""

import os

import pytest
from pydantic import ValidationError

from src.triage.config import TriageSettings, get_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Isolate tests from TRIAGE_ variables in the developer's shell."""
    for name in list(os.environ):
        if name.startswith("TRIAGE_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("TRIAGE_GITHUB_WEBHOOK_SECRET", "s3cret")


class TestDefaults:
    def test_defaults(self):
        settings = get_settings()

        assert settings.github_webhook_secret == "s3cret"
        assert settings.github_base_url == "https://api.github.com"
        assert settings.openai_api_key is None
        assert settings.openai_model == "gpt-3.5-turbo"
        assert settings.database_url is None
        assert settings.default_usage_limit == 30
        assert settings.engineer_max_steps == 15
        assert settings.external_call_timeout_seconds == 30.0
        assert settings.engineer_api_token == ""
        assert settings.sandbox_env_names == ["PATH", "LANG", "LC_ALL", "TZ"]
        assert settings.port == 8080

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("TRIAGE_OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("TRIAGE_DEFAULT_USAGE_LIMIT", "5")
        monkeypatch.setenv("TRIAGE_DATABASE_URL", "postgresql://u:p@db:5432/triage")

        settings = get_settings()

        assert settings.openai_api_key == "sk-test"
        assert settings.default_usage_limit == 5
        assert settings.database_url == "postgresql://u:p@db:5432/triage"

    def test_private_key_newlines_are_restored(self, monkeypatch):
        monkeypatch.setenv("TRIAGE_GITHUB_PRIVATE_KEY", "-----BEGIN-----\\nabc\\n-----END-----")

        assert get_settings().github_private_key_pem == "-----BEGIN-----\nabc\n-----END-----"


class TestValidation:
    def test_webhook_secret_is_required(self, monkeypatch):
        monkeypatch.delenv("TRIAGE_GITHUB_WEBHOOK_SECRET")

        with pytest.raises(ValidationError):
            TriageSettings()

    def test_blank_webhook_secret_is_rejected(self, monkeypatch):
        monkeypatch.setenv("TRIAGE_GITHUB_WEBHOOK_SECRET", "   ")

        with pytest.raises(ValidationError):
            TriageSettings()

    @pytest.mark.parametrize(
        "name,value",
        [
            ("TRIAGE_GITHUB_BASE_URL", "ftp://github.example.com"),
            ("TRIAGE_DATABASE_URL", "mysql://db/triage"),
            ("TRIAGE_SANDBOX_BASE_PATH", "relative/path"),
            ("TRIAGE_ENGINEER_MAX_STEPS", "0"),
            ("TRIAGE_EXTERNAL_CALL_TIMEOUT_SECONDS", "0"),
            ("TRIAGE_DEFAULT_USAGE_LIMIT", "-1"),
            ("TRIAGE_PORT", "70000"),
            ("TRIAGE_SANDBOX_ENV_PASSTHROUGH", "PATH,triage_openai_api_key"),
        ],
    )
    def test_invalid_values_are_rejected(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)

        with pytest.raises(ValidationError):
            TriageSettings()

    def test_blank_database_url_means_in_memory(self, monkeypatch):
        monkeypatch.setenv("TRIAGE_DATABASE_URL", "")

        assert TriageSettings().database_url is None

    def test_trailing_slash_is_stripped(self, monkeypatch):
        monkeypatch.setenv("TRIAGE_GITHUB_BASE_URL", "https://ghe.example.com/api/v3/")

        assert TriageSettings().github_base_url == "https://ghe.example.com/api/v3"

    def test_sandbox_env_names_drop_blanks(self, monkeypatch):
        monkeypatch.setenv("TRIAGE_SANDBOX_ENV_PASSTHROUGH", " PATH , ,HTTPS_PROXY,")

        assert TriageSettings().sandbox_env_names == ["PATH", "HTTPS_PROXY"]
