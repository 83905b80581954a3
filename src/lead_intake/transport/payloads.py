"""Typed views over Google API JSON responses."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from ..core.models import MessagePart, RawMessage


class PayloadError(ValueError):
    """Raised when a provider response does not have the expected shape."""


@dataclass(frozen=True, slots=True)
class HistoryPage:
    """One page of ``users.history.list`` results."""

    message_ids: tuple[str, ...]
    next_page_token: str | None
    history_id: str | None


@dataclass(frozen=True, slots=True)
class WatchRegistration:
    """Result of a ``users.watch`` call."""

    history_id: str
    expiration: datetime | None


@dataclass(frozen=True, slots=True)
class TokenGrant:
    """Successful refresh-token exchange."""

    access_token: str
    expires_in: int
    refresh_token: str | None = None


@dataclass(frozen=True, slots=True)
class TokenDenied:
    """Identity provider rejected the exchange."""

    error: str
    description: str | None = None


TokenResponse = TokenGrant | TokenDenied


def parse_history_page(data: Mapping[str, Any], *, label: str = "INBOX") -> HistoryPage:
    """Collect ids of added messages carrying ``label`` in change-log order."""
    message_ids: list[str] = []
    for record in _as_list(data.get("history")):
        for added in _as_list(_as_mapping(record).get("messagesAdded")):
            message = _as_mapping(_as_mapping(added).get("message"))
            message_id = message.get("id")
            if not isinstance(message_id, str) or not message_id:
                continue
            labels = message.get("labelIds") or []
            if label in labels:
                message_ids.append(message_id)
    next_token = data.get("nextPageToken")
    history_id = data.get("historyId")
    return HistoryPage(
        message_ids=tuple(message_ids),
        next_page_token=next_token if isinstance(next_token, str) and next_token else None,
        history_id=str(history_id) if history_id is not None else None,
    )


def parse_message(data: Mapping[str, Any]) -> RawMessage:
    """Convert a ``format=full`` message resource into a :class:`RawMessage`."""
    message_id = data.get("id")
    if not isinstance(message_id, str) or not message_id:
        raise PayloadError("Message resource is missing an id")
    payload = _as_mapping(data.get("payload"))
    headers = tuple(
        (str(header.get("name", "")), str(header.get("value", "")))
        for header in (_as_mapping(item) for item in _as_list(payload.get("headers")))
        if header.get("name")
    )
    thread_id = data.get("threadId")
    return RawMessage(
        id=message_id,
        thread_id=thread_id if isinstance(thread_id, str) else None,
        label_ids=tuple(str(label) for label in _as_list(data.get("labelIds"))),
        headers=headers,
        payload=_parse_part(payload),
        internal_date=_parse_epoch_millis(data.get("internalDate")),
    )


def parse_watch_response(data: Mapping[str, Any]) -> WatchRegistration:
    """Extract the starting cursor and expiry from a watch registration."""
    history_id = data.get("historyId")
    if history_id is None or str(history_id) == "":
        raise PayloadError("Watch response is missing historyId")
    return WatchRegistration(
        history_id=str(history_id),
        expiration=_parse_epoch_millis(data.get("expiration")),
    )


def parse_token_response(data: Mapping[str, Any]) -> TokenResponse:
    """Classify a token endpoint response as a grant or a denial."""
    error = data.get("error")
    if error:
        description = data.get("error_description")
        return TokenDenied(
            error=str(error),
            description=str(description) if description else None,
        )
    access_token = data.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        return TokenDenied(error="missing_access_token")
    try:
        expires_in = int(data.get("expires_in", 3600))
    except (TypeError, ValueError):
        expires_in = 3600
    refresh_token = data.get("refresh_token")
    return TokenGrant(
        access_token=access_token,
        expires_in=expires_in,
        refresh_token=refresh_token if isinstance(refresh_token, str) else None,
    )


def error_message(data: Any) -> str | None:
    """Return the ``error.message`` of a Google API error body, if any."""
    if not isinstance(data, Mapping):
        return None
    error = data.get("error")
    if isinstance(error, Mapping):
        message = error.get("message")
        return str(message) if message else str(error.get("status", "error"))
    if error:
        return str(error)
    return None


def _parse_part(part: Mapping[str, Any]) -> MessagePart:
    body = _as_mapping(part.get("body"))
    data = body.get("data")
    return MessagePart(
        mime_type=str(part.get("mimeType") or ""),
        body_data=data if isinstance(data, str) and data else None,
        parts=tuple(_parse_part(_as_mapping(child)) for child in _as_list(part.get("parts"))),
    )


def _parse_epoch_millis(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=UTC)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


__all__ = [
    "HistoryPage",
    "PayloadError",
    "TokenDenied",
    "TokenGrant",
    "TokenResponse",
    "WatchRegistration",
    "error_message",
    "parse_history_page",
    "parse_message",
    "parse_token_response",
    "parse_watch_response",
]
