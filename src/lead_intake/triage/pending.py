"""Triage records for mail from unknown senders."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from ..core.datetime_utils import utcnow
from ..core.interfaces import CrmRepository
from ..core.models import NormalizedMessage, PendingEmail, PendingStatus
from ..intelligence.classifier import SenderClassifier, StatusPolicy
from ..intelligence.heuristics import is_obviously_not_a_lead
from .resolver import new_id

LOGGER = logging.getLogger(__name__)


class TriageOutcome(StrEnum):
    """What happened to a message from an unknown sender."""

    CREATED = "created"
    SKIPPED = "skipped"
    DUPLICATE = "duplicate"


@dataclass(frozen=True, slots=True)
class TriageResult:
    """Outcome of :meth:`PendingEmailWriter.triage`."""

    outcome: TriageOutcome
    pending_id: str | None = None
    status: PendingStatus | None = None


class PendingEmailWriter:
    """Persist triage records and classify them before returning."""

    def __init__(
        self,
        repository: CrmRepository,
        classifier: SenderClassifier,
        *,
        policy: StatusPolicy | None = None,
        blocked_domains: Iterable[str] = (),
        id_factory: Callable[[], str] = new_id,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._classifier = classifier
        self._policy = policy or StatusPolicy()
        self._blocked_domains = tuple(blocked_domains)
        self._id_factory = id_factory
        self._clock = clock

    def triage(self, message: NormalizedMessage, user_id: str) -> TriageResult:
        """Record ``message`` for review unless it is obviously automated."""
        if is_obviously_not_a_lead(
            message.sender_email,
            message.headers,
            blocked_domains=self._blocked_domains,
        ):
            LOGGER.info(
                "Skipping automated sender %s (message %s)",
                message.sender_email,
                message.provider_message_id,
            )
            return TriageResult(outcome=TriageOutcome.SKIPPED)

        pending = PendingEmail(
            id=self._id_factory(),
            user_id=user_id,
            from_email=message.sender_email,
            from_name=message.sender_name or None,
            subject=message.subject,
            content=message.body,
            gmail_message_id=message.provider_message_id,
            received_at=message.received_at,
            status=PendingStatus.PENDING,
            created_at=self._clock(),
        )
        if not self._repository.insert_pending_email(pending):
            LOGGER.info("Message %s already triaged", message.provider_message_id)
            return TriageResult(outcome=TriageOutcome.DUPLICATE)

        # Classification runs inline; the host may stop once the webhook responds.
        status = self._classify(pending)
        return TriageResult(
            outcome=TriageOutcome.CREATED, pending_id=pending.id, status=status
        )

    def _classify(self, pending: PendingEmail) -> PendingStatus:
        result = self._classifier.classify(
            pending.from_email,
            pending.from_name or "",
            pending.subject,
            pending.content,
        )
        if result is None:
            return PendingStatus.PENDING
        status = self._policy.status_for(result)
        self._repository.update_pending_classification(
            pending.id, status=status, result=result
        )
        LOGGER.info(
            "Classified %s as %s (%.2f) -> %s",
            pending.from_email,
            result.classification,
            result.confidence,
            status,
        )
        return status


__all__ = ["PendingEmailWriter", "TriageOutcome", "TriageResult"]
