"""Refresh-token exchange against the Google identity provider."""

from __future__ import annotations

import logging

import httpx

from ..core.config import GoogleSettings
from ..core.interfaces import RefreshFailed
from .payloads import TokenDenied, TokenGrant, parse_token_response

LOGGER = logging.getLogger(__name__)


class GoogleOAuthClient:
    """Exchange stored refresh tokens for fresh access tokens."""

    def __init__(
        self, settings: GoogleSettings, *, http_client: httpx.Client | None = None
    ) -> None:
        self._settings = settings
        self._http = http_client or httpx.Client(timeout=settings.timeout_seconds)
        self._owns_client = http_client is None

    def refresh(self, refresh_token: str) -> TokenGrant:
        """Return a new grant for ``refresh_token`` or raise ``RefreshFailed``."""
        if not self._settings.client_id or not self._settings.client_secret:
            raise RefreshFailed("Google OAuth client credentials are not configured")
        form = {
            "client_id": self._settings.client_id,
            "client_secret": self._settings.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        try:
            response = self._http.post(
                self._settings.token_url,
                data=form,
                timeout=self._settings.timeout_seconds,
            )
            data = response.json()
        except httpx.HTTPError as exc:
            raise RefreshFailed(f"Token endpoint unreachable: {exc}") from exc
        except ValueError as exc:
            raise RefreshFailed("Token endpoint returned invalid JSON") from exc

        if not isinstance(data, dict):
            raise RefreshFailed("Token endpoint returned an unexpected body")
        result = parse_token_response(data)
        if isinstance(result, TokenDenied):
            LOGGER.warning(
                "Refresh token rejected: %s (%s)", result.error, result.description
            )
            raise RefreshFailed(f"Token refresh rejected: {result.error}")
        return result

    def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            self._http.close()


__all__ = ["GoogleOAuthClient"]
