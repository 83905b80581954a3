"""Incremental retrieval of new inbox messages through the history API."""

from __future__ import annotations

import logging
from typing import Protocol

from ..core.interfaces import UpstreamUnavailable
from ..core.models import RawMessage
from ..transport.payloads import HistoryPage

LOGGER = logging.getLogger(__name__)


class HistoryApi(Protocol):
    """Subset of the Gmail client used for history retrieval."""

    def list_history(
        self,
        access_token: str,
        start_history_id: str,
        *,
        page_token: str | None = None,
    ) -> HistoryPage:
        """Return one page of history additions."""
        raise NotImplementedError

    def get_message(self, access_token: str, message_id: str) -> RawMessage:
        """Return a full message resource."""
        raise NotImplementedError


class HistoryFetcher:
    """Pull messages added to the inbox since a history cursor."""

    def __init__(self, api: HistoryApi, *, max_pages: int = 20) -> None:
        if max_pages <= 0:
            raise ValueError("max_pages must be positive")
        self._api = api
        self._max_pages = max_pages

    def fetch_since(self, access_token: str, cursor: str) -> list[RawMessage]:
        """Return full messages added after ``cursor``, oldest change first.

        History listing failures propagate as ``UpstreamUnavailable`` (or its
        ``CursorExpired`` subclass). A failure fetching an individual message
        is logged and that message is skipped.
        """
        message_ids = self._collect_ids(access_token, cursor)
        if not message_ids:
            LOGGER.debug("No inbox additions since history %s", cursor)
            return []

        messages: list[RawMessage] = []
        for message_id in message_ids:
            try:
                messages.append(self._api.get_message(access_token, message_id))
            except UpstreamUnavailable as exc:
                LOGGER.warning("Skipping message %s: %s", message_id, exc)
        LOGGER.info(
            "Fetched %d of %d new messages since history %s",
            len(messages),
            len(message_ids),
            cursor,
        )
        return messages

    def _collect_ids(self, access_token: str, cursor: str) -> list[str]:
        seen: set[str] = set()
        ordered: list[str] = []
        page_token: str | None = None
        for _ in range(self._max_pages):
            page = self._api.list_history(access_token, cursor, page_token=page_token)
            for message_id in page.message_ids:
                if message_id not in seen:
                    seen.add(message_id)
                    ordered.append(message_id)
            page_token = page.next_page_token
            if not page_token:
                break
        else:
            LOGGER.warning(
                "History listing for %s truncated after %d pages", cursor, self._max_pages
            )
        return ordered


__all__ = ["HistoryApi", "HistoryFetcher"]
