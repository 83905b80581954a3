"""Application configuration models and loader utilities."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from dotenv import dotenv_values
from pydantic import BaseModel, Field, field_validator


class GoogleSettings(BaseModel):
    """Settings for the Google identity provider and Gmail API."""

    client_id: str | None = Field(default=None, description="OAuth client id")
    client_secret: str | None = Field(
        default=None, description="OAuth client secret"
    )
    token_url: str = Field(
        default="https://oauth2.googleapis.com/token",
        description="Token endpoint used for refresh-token exchanges",
    )
    gmail_api_base: str = Field(
        default="https://gmail.googleapis.com/gmail/v1",
        description="Gmail REST API base URL",
    )
    timeout_seconds: float = Field(
        default=15.0, gt=0, description="Timeout for Google HTTP calls"
    )
    token_refresh_skew_seconds: int = Field(
        default=60,
        ge=0,
        description="Refresh access tokens this many seconds before expiry",
    )
    gcp_project_id: str | None = Field(
        default=None, description="Project hosting the Pub/Sub topic"
    )
    pubsub_topic_name: str = Field(
        default="gmail-notifications", description="Pub/Sub topic short name"
    )

    @property
    def pubsub_topic(self) -> str | None:
        """Return the fully qualified Pub/Sub topic, if a project is set."""
        if not self.gcp_project_id:
            return None
        return f"projects/{self.gcp_project_id}/topics/{self.pubsub_topic_name}"


class ClassifierSettings(BaseModel):
    """Settings for the generative classification model."""

    api_key: str | None = Field(default=None, description="Gemini API key")
    base_url: str = Field(
        default="https://generativelanguage.googleapis.com",
        description="Generative Language API URL",
    )
    model: str = Field(default="gemini-2.0-flash", description="Model identifier")
    timeout_seconds: float = Field(
        default=10.0, gt=0, description="Request timeout for model calls"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Sampling temperature for classification",
    )
    max_output_tokens: int = Field(
        default=150, ge=16, description="Maximum tokens requested from the model"
    )
    max_attempts: int = Field(
        default=2, ge=1, description="Attempts before the model is unreachable"
    )
    lead_threshold: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Minimum confidence to flag a likely lead",
    )
    dismiss_threshold: float = Field(
        default=0.85,
        ge=0.0,
        le=1.0,
        description="Minimum confidence to auto-dismiss automated mail",
    )


class TriageSettings(BaseModel):
    """Settings for matching, deduplication, and heuristic filtering."""

    blocked_domains: tuple[str, ...] = Field(
        default=(), description="Sender domains that are never leads"
    )
    company_name: str = Field(
        default="Superior",
        description="Product name used in outbound 'Sent via' footers",
    )
    duplicate_window_seconds: int = Field(
        default=60, ge=0, description="Window for duplicate message suppression"
    )
    max_body_chars: int = Field(
        default=10000, ge=1, description="Stored body length bound"
    )

    @field_validator("blocked_domains", mode="before")
    @classmethod
    def _split_domains(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, str):
            value = value.split(",")
        return tuple(
            domain.strip().lower() for domain in value if domain and domain.strip()
        )


class AutomationSettings(BaseModel):
    """Settings for the downstream automation webhook."""

    webhook_url: str | None = Field(
        default=None, description="Endpoint notified when a prospect replies"
    )
    queue_size: int = Field(default=100, ge=1, description="Pending event bound")
    max_attempts: int = Field(default=4, ge=1, description="Delivery attempts")
    backoff_seconds: float = Field(
        default=1.0, ge=0.0, description="Initial retry delay, doubled per attempt"
    )
    timeout_seconds: float = Field(default=10.0, gt=0, description="POST timeout")


class WatchSettings(BaseModel):
    """Settings for Gmail watch registration."""

    renew_within_days: int = Field(
        default=2, ge=0, description="Renew watches expiring within this window"
    )


class StorageSettings(BaseModel):
    """Settings for local persistence."""

    db_path: Path = Field(
        default=Path("./lead_intake.db"), description="SQLite database path"
    )


class WebSettings(BaseModel):
    """Settings for the HTTP surface."""

    webhook_token: str | None = Field(
        default=None, description="Shared token expected on push deliveries"
    )
    api_token: str | None = Field(
        default=None, description="Bearer token guarding the review API"
    )
    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=8080, description="Bind port")


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Toggle JSON structured logging"
    )


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    google: GoogleSettings = Field(default_factory=GoogleSettings)
    classifier: ClassifierSettings = Field(default_factory=ClassifierSettings)
    triage: TriageSettings = Field(default_factory=TriageSettings)
    automation: AutomationSettings = Field(default_factory=AutomationSettings)
    watch: WatchSettings = Field(default_factory=WatchSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    web: WebSettings = Field(default_factory=WebSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


ENV_PREFIX = "LEAD_INTAKE_"

# Deployment keys used by existing installations.
ENV_ALIASES: dict[str, tuple[str, ...]] = {
    "GOOGLE_CLIENT_ID": ("google", "client_id"),
    "GOOGLE_CLIENT_SECRET": ("google", "client_secret"),
    "GCP_PROJECT_ID": ("google", "gcp_project_id"),
    "GEMINI_API_KEY": ("classifier", "api_key"),
    "BLOCKED_EMAIL_DOMAINS": ("triage", "blocked_domains"),
    "COMPANY_NAME": ("triage", "company_name"),
    "N8N_PROSPECT_REPLY_WEBHOOK_URL": ("automation", "webhook_url"),
}


def _normalize_key(raw_key: str) -> list[str]:
    """Convert an environment variable key into a nested attribute path."""
    if raw_key in ENV_ALIASES:
        return list(ENV_ALIASES[raw_key])
    trimmed = raw_key.removeprefix(ENV_PREFIX)
    return [segment.lower() for segment in trimmed.split("__") if segment]


def _is_recognised(key: str | None) -> bool:
    return bool(key) and (key.startswith(ENV_PREFIX) or key in ENV_ALIASES)


def _merge_into_tree(tree: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a value to a nested dictionary given a path."""
    cursor = tree
    for segment in path[:-1]:
        next_node = cursor.setdefault(segment, {})
        cursor = cast(dict[str, Any], next_node)
    cursor[path[-1]] = value


def _collect_env_values(
    env_file: Path | str | None, *, include_environment: bool = True
) -> dict[str, Any]:
    """Load configuration values from environment variables and optional file."""
    collected: dict[str, Any] = {}

    file_values = {}
    if env_file:
        env_path = Path(env_file)
        if env_path.is_file():
            file_values = {
                key: value
                for key, value in dotenv_values(env_path).items()
                if _is_recognised(key)
            }

    env_values = (
        {key: value for key, value in os.environ.items() if _is_recognised(key)}
        if include_environment
        else {}
    )

    combined: dict[str, Any] = {**file_values, **env_values}

    # Prefixed keys win over aliases when both are present.
    for key in sorted(combined, key=lambda item: item.startswith(ENV_PREFIX)):
        value = combined[key]
        path = _normalize_key(key)
        if not path:
            continue
        normalized_value: Any = value
        if isinstance(value, str) and value == "":
            normalized_value = None
        elif isinstance(value, str):
            lowercase_value = value.lower()
            if lowercase_value == "true":
                normalized_value = True
            elif lowercase_value == "false":
                normalized_value = False
        _merge_into_tree(collected, path, normalized_value)

    return collected


@lru_cache(maxsize=1)
def load_app_settings(
    env_file: Path | str | None = None,
    *,
    include_environment: bool = True,
) -> AppSettings:
    """Load application settings from the environment and an optional env file."""
    collected = _collect_env_values(env_file, include_environment=include_environment)
    return AppSettings.model_validate(collected)


__all__ = [
    "AppSettings",
    "AutomationSettings",
    "ClassifierSettings",
    "GoogleSettings",
    "LoggingSettings",
    "StorageSettings",
    "TriageSettings",
    "WatchSettings",
    "WebSettings",
    "load_app_settings",
]
