"""LLM client abstractions used by intelligence features."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from lead_intake.core.config import ClassifierSettings
from lead_intake.core.interfaces import ClassifierUnreachable

LOGGER = logging.getLogger(__name__)


class LLMError(ClassifierUnreachable):
    """Raised when the LLM provider fails to respond as expected."""


class LLMClient(Protocol):
    """Protocol describing the minimal LLM client behaviour."""

    @property
    def provider_id(self) -> str:
        """Identifier describing the backing model/provider."""
        raise NotImplementedError

    def generate(self, prompt: str) -> str:
        """Return the raw text completion for ``prompt``."""
        raise NotImplementedError


@dataclass(slots=True)
class GeminiClient:
    """Thin synchronous client for the Gemini ``generateContent`` API."""

    settings: ClassifierSettings
    http_client: httpx.Client | None = None
    sleep: Callable[[float], None] = field(default=time.sleep)

    def generate(self, prompt: str) -> str:
        """Send a JSON-mode completion request and return the candidate text."""
        if not self.settings.api_key:
            raise LLMError("Gemini API key is not configured")
        endpoint = _resolve_endpoint(self.settings.base_url, self.settings.model)
        payload: dict[str, object] = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.settings.temperature,
                "maxOutputTokens": self.settings.max_output_tokens,
                "responseMimeType": "application/json",
            },
        }
        attempts = self.settings.max_attempts
        data: dict[str, Any] | None = None
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                response = self._post(endpoint, payload)
                response.raise_for_status()
                data = response.json()
                break
            except httpx.HTTPStatusError as exc:
                if not _is_retryable(exc.response.status_code):
                    raise LLMError(
                        f"LLM request rejected with status {exc.response.status_code}"
                    ) from exc
                last_error = exc
                LOGGER.debug("Gemini attempt %d/%d failed: %s", attempt, attempts, exc)
            except httpx.HTTPError as exc:
                last_error = exc
                LOGGER.debug("Gemini attempt %d/%d failed: %s", attempt, attempts, exc)
            except json.JSONDecodeError as exc:
                raise LLMError("LLM returned invalid JSON") from exc

            if attempt < attempts:
                self.sleep(min(2**attempt, 8))

        if data is None:
            raise LLMError("LLM request failed after retries") from last_error

        text = _candidate_text(data)
        if text is None:
            raise LLMError("LLM response missing candidate text")
        return text

    @property
    def provider_id(self) -> str:
        """Return a human readable identifier for the configured model."""
        return f"gemini:{self.settings.model}"

    def _post(self, endpoint: str, payload: dict[str, object]) -> httpx.Response:
        params = {"key": self.settings.api_key or ""}
        if self.http_client is not None:
            return self.http_client.post(
                endpoint,
                params=params,
                json=payload,
                timeout=self.settings.timeout_seconds,
            )
        return httpx.post(
            endpoint,
            params=params,
            json=payload,
            timeout=self.settings.timeout_seconds,
        )


def _is_retryable(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def _resolve_endpoint(base_url: str, model: str) -> str:
    return f"{base_url.rstrip('/')}/v1beta/models/{model}:generateContent"


def _candidate_text(data: Any) -> str | None:
    if not isinstance(data, dict):
        return None
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    return text if isinstance(text, str) and text.strip() else None


__all__ = ["GeminiClient", "LLMClient", "LLMError"]
