"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from lead_intake.core.config import TriageSettings, load_app_settings


def test_defaults_loaded_without_env_file() -> None:
    """Default values should be returned when no overrides are present."""

    settings = load_app_settings(include_environment=False)
    assert settings.storage.db_path == Path("./lead_intake.db")
    assert settings.classifier.model == "gemini-2.0-flash"
    assert settings.classifier.lead_threshold == pytest.approx(0.6)
    assert settings.classifier.dismiss_threshold == pytest.approx(0.85)
    assert settings.triage.company_name == "Superior"
    assert settings.triage.blocked_domains == ()
    assert settings.automation.queue_size == 100
    assert settings.google.pubsub_topic is None


def test_env_file_overrides(tmp_path: Path) -> None:
    """Values defined in an env file should override defaults."""

    env_file = tmp_path / "test.env"
    env_file.write_text(
        "LEAD_INTAKE_STORAGE__DB_PATH=/tmp/other.db\n"
        "LEAD_INTAKE_LOGGING__STRUCTURED=true\n"
        "LEAD_INTAKE_CLASSIFIER__LEAD_THRESHOLD=0.7\n",
        encoding="utf-8",
    )

    settings = load_app_settings(env_file=env_file, include_environment=False)
    assert settings.storage.db_path == Path("/tmp/other.db")
    assert settings.logging.structured is True
    assert settings.classifier.lead_threshold == pytest.approx(0.7)


def test_deployment_aliases_are_recognised(tmp_path: Path) -> None:
    env_file = tmp_path / "deploy.env"
    env_file.write_text(
        "GOOGLE_CLIENT_ID=client-123\n"
        "GEMINI_API_KEY=gem-key\n"
        "BLOCKED_EMAIL_DOMAINS= Vendor.com, ,spam.io\n"
        "COMPANY_NAME=Acme\n"
        "N8N_PROSPECT_REPLY_WEBHOOK_URL=https://hooks.example.com/reply\n"
        "GCP_PROJECT_ID=demo-project\n",
        encoding="utf-8",
    )

    settings = load_app_settings(env_file=env_file, include_environment=False)
    assert settings.google.client_id == "client-123"
    assert settings.classifier.api_key == "gem-key"
    assert settings.triage.blocked_domains == ("vendor.com", "spam.io")
    assert settings.triage.company_name == "Acme"
    assert settings.automation.webhook_url == "https://hooks.example.com/reply"
    assert settings.google.pubsub_topic == "projects/demo-project/topics/gmail-notifications"


def test_prefixed_key_wins_over_alias(tmp_path: Path) -> None:
    env_file = tmp_path / "both.env"
    env_file.write_text(
        "GEMINI_API_KEY=alias-key\nLEAD_INTAKE_CLASSIFIER__API_KEY=prefixed-key\n",
        encoding="utf-8",
    )

    settings = load_app_settings(env_file=env_file, include_environment=False)
    assert settings.classifier.api_key == "prefixed-key"


def test_environment_overrides_env_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    env_file = tmp_path / "file.env"
    env_file.write_text("LEAD_INTAKE_WEB__PORT=9000\n", encoding="utf-8")
    monkeypatch.setenv("LEAD_INTAKE_WEB__PORT", "9100")

    settings = load_app_settings(env_file=env_file)
    assert settings.web.port == 9100


def test_empty_values_fall_back_to_defaults(tmp_path: Path) -> None:
    env_file = tmp_path / "empty.env"
    env_file.write_text("LEAD_INTAKE_AUTOMATION__WEBHOOK_URL=\n", encoding="utf-8")

    settings = load_app_settings(env_file=env_file, include_environment=False)
    assert settings.automation.webhook_url is None


def test_blocked_domains_accept_sequences() -> None:
    settings = TriageSettings(blocked_domains=["Example.ORG", "  "])
    assert settings.blocked_domains == ("example.org",)
