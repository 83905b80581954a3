"""Sender matching, message filing and prospect promotion."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from ..core.datetime_utils import serialize_datetime, utcnow
from ..core.interfaces import CrmRepository, EventSink
from ..core.models import Lead, NormalizedMessage, Prospect, StoredMessage

LOGGER = logging.getLogger(__name__)

INBOUND = "inbound"
PROSPECT_LEAD_SOURCE = "cold_outreach"
EVENT_BODY_CHARS = 2000


@dataclass(frozen=True, slots=True)
class MatchedLead:
    """Sender is a known lead."""

    lead: Lead


@dataclass(frozen=True, slots=True)
class MatchedProspect:
    """Sender is a prospect that has not been promoted yet."""

    prospect: Prospect


@dataclass(frozen=True, slots=True)
class NoMatch:
    """Sender is unknown."""

    email: str


Resolution = MatchedLead | MatchedProspect | NoMatch


class FileOutcome(StrEnum):
    """Result of filing a message against a lead."""

    FILED = "filed"
    DUPLICATE = "duplicate"


@dataclass(frozen=True, slots=True)
class PromotionResult:
    """Lead linked to a prospect after promotion and how the message was filed."""

    lead: Lead
    created: bool
    outcome: FileOutcome


def new_id() -> str:
    """Return a fresh record identifier."""
    return str(uuid.uuid4())


def inbound_message(
    lead_id: str,
    *,
    user_id: str | None,
    subject: str,
    body: str,
    sent_at: datetime,
    sender_email: str,
    sender_name: str | None,
    thread_id: str | None = None,
    provider_message_id: str | None = None,
    message_id: str | None = None,
    created_at: datetime | None = None,
) -> StoredMessage:
    """Build an unread inbound message row."""
    return StoredMessage(
        id=message_id or new_id(),
        lead_id=lead_id,
        user_id=user_id,
        direction=INBOUND,
        subject=subject,
        body=body,
        sent_at=sent_at,
        is_read=False,
        gmail_thread_id=thread_id,
        gmail_message_id=provider_message_id,
        sender_name=sender_name or None,
        sender_email=sender_email,
        created_at=created_at,
    )


class EntityResolver:
    """Match senders against leads then prospects and file their mail."""

    def __init__(
        self,
        repository: CrmRepository,
        *,
        events: EventSink | None = None,
        duplicate_window_seconds: int = 60,
        id_factory: Callable[[], str] = new_id,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._events = events
        self._window = timedelta(seconds=duplicate_window_seconds)
        self._id_factory = id_factory
        self._clock = clock

    def resolve(self, sender_email: str) -> Resolution:
        """Return the record the sender belongs to; leads win over prospects."""
        email = sender_email.strip().lower()
        if not email:
            return NoMatch(email=email)
        lead = self._repository.find_lead_by_email(email)
        if lead is not None:
            return MatchedLead(lead=lead)
        prospect = self._repository.find_prospect_by_email(email)
        if prospect is not None:
            if prospect.converted_to_lead_id:
                converted = self._repository.get_lead(prospect.converted_to_lead_id)
                if converted is not None:
                    return MatchedLead(lead=converted)
            return MatchedProspect(prospect=prospect)
        return NoMatch(email=email)

    def file_message(
        self, lead: Lead, message: NormalizedMessage, user_id: str | None
    ) -> FileOutcome:
        """Store ``message`` against ``lead`` unless an equivalent one exists."""
        now = self._clock()
        if self._repository.has_recent_message(
            lead.id,
            subject=message.subject,
            direction=INBOUND,
            since=now - self._window,
            gmail_message_id=message.provider_message_id,
        ):
            LOGGER.info(
                "Suppressing duplicate message %s for lead %s",
                message.provider_message_id,
                lead.id,
            )
            return FileOutcome.DUPLICATE
        self._repository.insert_message(
            inbound_message(
                lead.id,
                user_id=user_id,
                subject=message.subject,
                body=message.body,
                sent_at=message.received_at,
                sender_email=message.sender_email,
                sender_name=message.sender_name,
                thread_id=message.thread_id,
                provider_message_id=message.provider_message_id,
                message_id=self._id_factory(),
                created_at=now,
            )
        )
        LOGGER.debug("Filed message %s for lead %s", message.provider_message_id, lead.id)
        return FileOutcome.FILED

    def promote(
        self, prospect: Prospect, message: NormalizedMessage, user_id: str | None
    ) -> PromotionResult:
        """Convert ``prospect`` into a lead (at most once) and file ``message``."""
        candidate = Lead(
            id=self._id_factory(),
            email=prospect.email,
            first_name=prospect.first_name,
            last_name=prospect.last_name,
            company=prospect.company_name or "",
            phone=prospect.phone,
            estimated_value=0,
            lead_status="new",
            lead_source=PROSPECT_LEAD_SOURCE,
            research_report=prospect.research_report,
            pain_points=prospect.pain_points,
            linkedin_url=prospect.linkedin_url,
            prospect_id=prospect.id,
            created_at=self._clock(),
        )
        lead, created = self._repository.promote_prospect(prospect.id, candidate)
        if created:
            LOGGER.info("Promoted prospect %s to lead %s", prospect.id, lead.id)
        outcome = self.file_message(lead, message, user_id)
        if created:
            self._notify_conversion(prospect, lead, message)
        return PromotionResult(lead=lead, created=created, outcome=outcome)

    def _notify_conversion(
        self, prospect: Prospect, lead: Lead, message: NormalizedMessage
    ) -> None:
        if self._events is None:
            return
        event = build_prospect_replied_event(prospect, lead, message, now=self._clock())
        try:
            accepted = self._events.submit(event)
        except Exception:  # pylint: disable=broad-except
            LOGGER.warning("Automation event for lead %s failed", lead.id, exc_info=True)
            return
        if not accepted:
            LOGGER.warning("Automation event for lead %s was not queued", lead.id)


def build_prospect_replied_event(
    prospect: Prospect, lead: Lead, message: NormalizedMessage, *, now: datetime
) -> dict[str, Any]:
    """Return the ``prospect_replied`` automation payload."""
    return {
        "event": "prospect_replied",
        "prospect_email": prospect.email,
        "prospect": {
            "id": prospect.id,
            "email": prospect.email,
            "first_name": prospect.first_name,
            "last_name": prospect.last_name,
            "company_name": prospect.company_name,
        },
        "lead": {"id": lead.id, "email": lead.email},
        "message": {
            "subject": message.subject,
            "body": message.body[:EVENT_BODY_CHARS],
            "received_at": serialize_datetime(message.received_at),
        },
        "timestamp": serialize_datetime(now),
    }


__all__ = [
    "EntityResolver",
    "FileOutcome",
    "MatchedLead",
    "MatchedProspect",
    "NoMatch",
    "PromotionResult",
    "Resolution",
    "build_prospect_replied_event",
    "inbound_message",
    "new_id",
]
