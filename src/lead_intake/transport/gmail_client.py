"""Gmail REST API adapter."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from types import TracebackType
from typing import Any

import httpx

from ..core.config import GoogleSettings
from ..core.interfaces import CursorExpired, UpstreamUnavailable
from ..core.models import RawMessage
from .payloads import (
    HistoryPage,
    PayloadError,
    WatchRegistration,
    error_message,
    parse_history_page,
    parse_message,
    parse_watch_response,
)

LOGGER = logging.getLogger(__name__)


class GmailClient:
    """Thin synchronous wrapper around the Gmail ``users.*`` endpoints."""

    def __init__(
        self, settings: GoogleSettings, *, http_client: httpx.Client | None = None
    ) -> None:
        """Initialise the client; an owned ``httpx.Client`` is created if absent."""
        self._settings = settings
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(timeout=settings.timeout_seconds)
        self._base_url = settings.gmail_api_base.rstrip("/")

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> GmailClient:
        """Enter context manager scope."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Release the HTTP client when owned."""
        self.close()

    # Public API ---------------------------------------------------------------
    def list_history(
        self,
        access_token: str,
        start_history_id: str,
        *,
        page_token: str | None = None,
    ) -> HistoryPage:
        """Return one page of INBOX message additions after ``start_history_id``."""
        params = {
            "startHistoryId": start_history_id,
            "historyTypes": "messageAdded",
        }
        if page_token:
            params["pageToken"] = page_token
        response = self._request("GET", "/users/me/history", access_token, params=params)
        if response.status_code == 404:
            raise CursorExpired(
                f"History cursor {start_history_id} is no longer available"
            )
        return parse_history_page(self._json_or_raise(response, "history.list"))

    def get_message(self, access_token: str, message_id: str) -> RawMessage:
        """Fetch a single message with its full MIME payload."""
        response = self._request(
            "GET",
            f"/users/me/messages/{message_id}",
            access_token,
            params={"format": "full"},
        )
        data = self._json_or_raise(response, "messages.get")
        try:
            return parse_message(data)
        except PayloadError as exc:
            raise UpstreamUnavailable(f"Unexpected message payload: {exc}") from exc

    def watch(
        self,
        access_token: str,
        topic_name: str,
        *,
        label_ids: Sequence[str] = ("INBOX",),
    ) -> WatchRegistration:
        """Register a push watch for ``label_ids`` on ``topic_name``."""
        body = {
            "topicName": topic_name,
            "labelIds": list(label_ids),
            "labelFilterAction": "include",
        }
        response = self._request("POST", "/users/me/watch", access_token, json=body)
        data = self._json_or_raise(response, "users.watch")
        try:
            return parse_watch_response(data)
        except PayloadError as exc:
            raise UpstreamUnavailable(str(exc)) from exc

    def stop(self, access_token: str) -> None:
        """Cancel push notifications for the mailbox."""
        response = self._request("POST", "/users/me/stop", access_token)
        if response.is_error:
            self._raise_for_error(response, "users.stop")

    def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            self._http.close()

    # Internal helpers --------------------------------------------------------
    def _request(
        self,
        method: str,
        path: str,
        access_token: str,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        url = f"{self._base_url}{path}"
        try:
            return self._http.request(
                method,
                url,
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self._settings.timeout_seconds,
            )
        except httpx.HTTPError as exc:
            LOGGER.warning("Gmail request %s %s failed: %s", method, path, exc)
            raise UpstreamUnavailable(f"Gmail request failed: {exc}") from exc

    def _json_or_raise(self, response: httpx.Response, operation: str) -> dict[str, Any]:
        if response.is_error:
            self._raise_for_error(response, operation)
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamUnavailable(f"{operation} returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise UpstreamUnavailable(f"{operation} returned an unexpected body")
        message = error_message(data)
        if message:
            raise UpstreamUnavailable(f"{operation} failed: {message}")
        return data

    @staticmethod
    def _raise_for_error(response: httpx.Response, operation: str) -> None:
        try:
            detail = error_message(response.json())
        except ValueError:
            detail = None
        raise UpstreamUnavailable(
            f"{operation} failed with HTTP {response.status_code}: "
            f"{detail or response.reason_phrase}"
        )


__all__ = ["GmailClient"]
