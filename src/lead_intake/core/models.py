"""Core domain models used across the application."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class PendingStatus(StrEnum):
    """Lifecycle states of a triage record."""

    PENDING = "pending"
    LIKELY_LEAD = "likely_lead"
    NEEDS_REVIEW = "needs_review"
    AUTO_DISMISSED = "auto_dismissed"


class Classification(StrEnum):
    """Labels the classification model may return."""

    LEAD = "lead"
    SPAM = "spam"
    PROMOTIONAL = "promotional"
    TRANSACTIONAL = "transactional"
    UNKNOWN = "unknown"


# pylint: disable=too-many-instance-attributes
@dataclass(frozen=True, slots=True)
class MailboxCredential:
    """OAuth credential and history cursor for one connected mailbox."""

    user_id: str
    gmail_email: str
    access_token: str
    refresh_token: str
    token_expiry: datetime
    history_id: str | None = None
    watch_expiration: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class MessagePart:
    """One node of a provider MIME tree."""

    mime_type: str
    body_data: str | None = None
    parts: tuple[MessagePart, ...] = ()


@dataclass(frozen=True, slots=True)
class RawMessage:
    """Provider-shaped message as returned by a full message fetch."""

    id: str
    thread_id: str | None
    label_ids: tuple[str, ...]
    headers: tuple[tuple[str, str], ...]
    payload: MessagePart
    internal_date: datetime | None = None

    def header(self, name: str) -> str:
        """Return the first header named ``name`` (case-insensitive) or ``""``."""
        wanted = name.lower()
        for header_name, value in self.headers:
            if header_name.lower() == wanted:
                return value
        return ""


@dataclass(frozen=True, slots=True)
class NormalizedMessage:
    """Plain-text message ready for matching and persistence."""

    provider_message_id: str
    thread_id: str | None
    sender_email: str
    sender_name: str
    subject: str
    body: str
    received_at: datetime
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Lead:
    """Contact tracked in the sales pipeline."""

    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    company: str = ""
    phone: str | None = None
    estimated_value: float = 0
    lead_status: str = "new"
    lead_source: str = ""
    research_report: str | None = None
    pain_points: str | None = None
    linkedin_url: str | None = None
    prospect_id: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class Prospect:
    """Cold-outreach contact that has not yet replied."""

    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    phone: str | None = None
    company_name: str | None = None
    research_report: str | None = None
    pain_points: str | None = None
    linkedin_url: str | None = None
    converted_to_lead_id: str | None = None


@dataclass(frozen=True, slots=True)
class StoredMessage:
    """Persisted communication attached to a lead."""

    id: str
    lead_id: str
    user_id: str | None
    direction: str
    subject: str
    body: str
    sent_at: datetime
    is_read: bool
    gmail_thread_id: str | None = None
    gmail_message_id: str | None = None
    sender_name: str | None = None
    sender_email: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class PendingEmail:
    """Triage record for mail from an unrecognised sender."""

    id: str
    user_id: str
    from_email: str
    from_name: str | None
    subject: str
    content: str
    gmail_message_id: str | None
    received_at: datetime
    status: PendingStatus = PendingStatus.PENDING
    ai_classification: str | None = None
    ai_confidence: float | None = None
    created_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    """Model verdict for an unknown sender."""

    classification: Classification
    confidence: float
    reason: str


@dataclass(frozen=True, slots=True)
class MailboxNotification:
    """Decoded push notification for a mailbox change."""

    email_address: str
    history_id: str
    delivery_id: str | None = None
    publish_time: str | None = None


@dataclass(slots=True)
class ProcessReport:
    """Outcome summary for one webhook invocation."""

    processed: int = 0
    filed: int = 0
    promoted: int = 0
    triaged: int = 0
    skipped: int = 0
    duplicates: int = 0
    failed: int = 0
    cursor_advanced: bool = False


__all__ = [
    "Classification",
    "ClassificationResult",
    "Lead",
    "MailboxCredential",
    "MailboxNotification",
    "MessagePart",
    "NormalizedMessage",
    "PendingEmail",
    "PendingStatus",
    "ProcessReport",
    "Prospect",
    "RawMessage",
    "StoredMessage",
]
