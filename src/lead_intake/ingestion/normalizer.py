"""Convert provider messages into clean plain-text records."""

from __future__ import annotations

import base64
import binascii
import html
import logging
import re
from collections.abc import Callable, Iterable
from datetime import datetime
from email.utils import parseaddr

from ..core.datetime_utils import parse_header_date, utcnow
from ..core.models import MessagePart, NormalizedMessage, RawMessage

LOGGER = logging.getLogger(__name__)

NO_SUBJECT = "(No Subject)"

_STYLE_SCRIPT = re.compile(r"<(style|script)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_BREAK_TAG = re.compile(r"<br\s*/?>", re.IGNORECASE)
_BLOCK_TAG = re.compile(r"</?(p|div|h[1-6]|li|tr|blockquote|pre|hr)\b[^>]*>", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]*>")
_HTML_HINT = re.compile(r"<(html|body|div|p|br|table|span|a)\b", re.IGNORECASE)
_HORIZONTAL_WS = re.compile(r"[ \t]+")
_LEADING_SPACE = re.compile(r"\n ")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")

_ON_WROTE = re.compile(r"On\s+(?:Mon|Tue|Wed|Thu|Fri|Sat|Sun).*?wrote:", re.IGNORECASE | re.DOTALL)
_ON_DATE = re.compile(r"On\s+\w{3},\s+\w{3}\s+\d", re.IGNORECASE)


class MessageNormalizer:
    """Derive a :class:`NormalizedMessage` from a provider message."""

    def __init__(
        self,
        *,
        company_name: str = "Superior",
        max_body_chars: int = 10000,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._footer = re.compile(
            rf"Sent via {re.escape(company_name)}[^\n]*", re.IGNORECASE
        )
        self._max_body_chars = max_body_chars
        self._clock = clock

    def normalize(self, raw: RawMessage) -> NormalizedMessage:
        """Return the cleaned representation of ``raw``; never raises."""
        sender_name, sender_email = parseaddr(raw.header("From"))
        subject = raw.header("Subject").strip() or NO_SUBJECT
        try:
            body = self.strip_quoted(extract_body(raw.payload))
        except Exception:  # pylint: disable=broad-except
            LOGGER.warning("Falling back to empty body for message %s", raw.id, exc_info=True)
            body = ""
        received_at = parse_header_date(raw.header("Date")) or raw.internal_date or self._clock()
        headers: dict[str, str] = {}
        for name, value in raw.headers:
            headers.setdefault(name.lower(), value)
        return NormalizedMessage(
            provider_message_id=raw.id,
            thread_id=raw.thread_id,
            sender_email=sender_email.strip().lower(),
            sender_name=sender_name.strip(),
            subject=subject,
            body=body[: self._max_body_chars],
            received_at=received_at,
            headers=headers,
        )

    def strip_quoted(self, body: str) -> str:
        """Remove quoted reply chains and the product footer from ``body``."""
        cleaned = body
        match = _ON_WROTE.search(cleaned)
        if match:
            cleaned = cleaned[: match.start()].strip()
        match = _ON_DATE.search(cleaned)
        if match:
            cleaned = cleaned[: match.start()].strip()
        cleaned = "\n".join(
            line for line in cleaned.split("\n") if not line.strip().startswith(">")
        ).strip()
        cleaned = self._footer.sub("", cleaned).strip()
        return cleaned or body


def extract_body(payload: MessagePart) -> str:
    """Decode the preferred body of ``payload`` into normalised plain text."""
    if payload.body_data:
        text = decode_base64url(payload.body_data)
        is_html = payload.mime_type == "text/html" or (
            payload.mime_type != "text/plain" and bool(_HTML_HINT.search(text))
        )
    else:
        part = _find_part(payload.parts, "text/plain") or _find_part(
            payload.parts, "text/html"
        )
        if part is None or not part.body_data:
            return ""
        text = decode_base64url(part.body_data)
        is_html = part.mime_type == "text/html"
    if is_html:
        text = html_to_text(text)
    return normalize_whitespace(text)


def decode_base64url(data: str) -> str:
    """Decode base64url ``data``, tolerating missing padding and bad UTF-8."""
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError):
        return ""
    return raw.decode("utf-8", errors="replace")


def html_to_text(markup: str) -> str:
    """Reduce HTML to paragraph-preserving text."""
    text = _STYLE_SCRIPT.sub("", markup)
    text = _BREAK_TAG.sub("\n", text)
    text = _BLOCK_TAG.sub("\n", text)
    text = _ANY_TAG.sub("", text)
    return html.unescape(text)


def normalize_whitespace(text: str) -> str:
    """Collapse horizontal runs and excess blank lines."""
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\xa0", " ")
    text = _HORIZONTAL_WS.sub(" ", text)
    text = _LEADING_SPACE.sub("\n", text)
    text = _EXCESS_NEWLINES.sub("\n\n", text)
    return text.strip()


def _find_part(parts: Iterable[MessagePart], mime_type: str) -> MessagePart | None:
    for part in parts:
        if part.mime_type == mime_type and part.body_data:
            return part
        nested = _find_part(part.parts, mime_type)
        if nested is not None:
            return nested
    return None


__all__ = [
    "MessageNormalizer",
    "NO_SUBJECT",
    "decode_base64url",
    "extract_body",
    "html_to_text",
    "normalize_whitespace",
]
