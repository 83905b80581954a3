"""Human review actions on triage records."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from ..core.datetime_utils import utcnow
from ..core.interfaces import CrmRepository
from ..core.models import Lead, PendingEmail, PendingStatus, StoredMessage
from .resolver import inbound_message, new_id

LOGGER = logging.getLogger(__name__)

OPEN_STATUS_ORDER = (
    PendingStatus.LIKELY_LEAD,
    PendingStatus.NEEDS_REVIEW,
    PendingStatus.PENDING,
)
DEFAULT_LEAD_SOURCE = "inbound_email"
DISMISSED_RETENTION_DAYS = 14


class PendingEmailNotFound(LookupError):
    """Raised when a triage record does not exist."""


class LeadNotFound(LookupError):
    """Raised when a lead referenced by a review action does not exist."""


@dataclass(frozen=True, slots=True)
class ApprovalResult:
    """Lead and message created by approving a triage record."""

    lead: Lead
    message: StoredMessage


class PendingReviewService:
    """List, approve, link, dismiss and restore triage records."""

    def __init__(
        self,
        repository: CrmRepository,
        *,
        user_id: str | None = None,
        id_factory: Callable[[], str] = new_id,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._user_id = user_id
        self._id_factory = id_factory
        self._clock = clock

    def list_open(self) -> list[PendingEmail]:
        """Return open records, likely leads first, then newest first."""
        rank = {status: index for index, status in enumerate(OPEN_STATUS_ORDER)}
        records = self._repository.list_pending_emails(OPEN_STATUS_ORDER)
        # Stable sort keeps the repository's newest-first order within a status.
        return sorted(records, key=lambda record: rank.get(record.status, len(rank)))

    def list_dismissed(self, limit: int = 50) -> list[PendingEmail]:
        """Return the most recent auto-dismissed records."""
        return self._repository.list_pending_emails(
            (PendingStatus.AUTO_DISMISSED,), limit=limit
        )

    def approve_as_new_lead(
        self,
        pending_id: str,
        *,
        first_name: str,
        last_name: str,
        company: str,
        lead_source: str | None = None,
    ) -> ApprovalResult:
        """Create a lead from the record's sender and file the email against it."""
        pending = self._require_pending(pending_id)
        now = self._clock()
        lead = Lead(
            id=self._id_factory(),
            email=pending.from_email,
            first_name=first_name,
            last_name=last_name,
            company=company,
            estimated_value=0,
            lead_status="new",
            lead_source=lead_source or DEFAULT_LEAD_SOURCE,
            created_at=now,
        )
        message = self._message_for(pending, lead.id, now)
        if not self._repository.resolve_pending_email(
            pending_id, message, new_lead=lead
        ):
            raise PendingEmailNotFound(pending_id)
        LOGGER.info("Approved pending email %s as lead %s", pending_id, lead.id)
        return ApprovalResult(lead=lead, message=message)

    def link_to_existing_lead(self, pending_id: str, lead_id: str) -> StoredMessage:
        """File the record's email against an existing lead."""
        pending = self._require_pending(pending_id)
        if self._repository.get_lead(lead_id) is None:
            raise LeadNotFound(lead_id)
        message = self._message_for(pending, lead_id, self._clock())
        if not self._repository.resolve_pending_email(pending_id, message):
            raise PendingEmailNotFound(pending_id)
        LOGGER.info("Linked pending email %s to lead %s", pending_id, lead_id)
        return message

    def dismiss(self, pending_id: str) -> None:
        """Delete a triage record."""
        if not self._repository.delete_pending_email(pending_id):
            raise PendingEmailNotFound(pending_id)

    def restore(self, pending_id: str) -> None:
        """Return a dismissed record to the review queue."""
        if not self._repository.set_pending_status(
            pending_id, PendingStatus.NEEDS_REVIEW
        ):
            raise PendingEmailNotFound(pending_id)

    def cleanup_expired_dismissed(
        self, retention_days: int = DISMISSED_RETENTION_DAYS
    ) -> int:
        """Delete auto-dismissed records older than ``retention_days``."""
        cutoff = self._clock() - timedelta(days=retention_days)
        removed = self._repository.delete_pending_before(
            PendingStatus.AUTO_DISMISSED, cutoff
        )
        LOGGER.info("Removed %d expired dismissed emails", removed)
        return removed

    def _require_pending(self, pending_id: str) -> PendingEmail:
        pending = self._repository.get_pending_email(pending_id)
        if pending is None:
            raise PendingEmailNotFound(pending_id)
        return pending

    def _message_for(
        self, pending: PendingEmail, lead_id: str, now: datetime
    ) -> StoredMessage:
        return inbound_message(
            lead_id,
            user_id=self._user_id or pending.user_id,
            subject=pending.subject,
            body=pending.content,
            sent_at=pending.received_at,
            sender_email=pending.from_email,
            sender_name=pending.from_name,
            provider_message_id=pending.gmail_message_id,
            message_id=self._id_factory(),
            created_at=now,
        )


__all__ = [
    "ApprovalResult",
    "LeadNotFound",
    "PendingEmailNotFound",
    "PendingReviewService",
]
