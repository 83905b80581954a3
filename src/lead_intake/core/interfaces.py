"""Protocol interfaces and the error taxonomy shared across components."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol

from .models import (
    ClassificationResult,
    Lead,
    MailboxCredential,
    PendingEmail,
    PendingStatus,
    Prospect,
    StoredMessage,
)


class PipelineError(RuntimeError):
    """Base class for failures raised by the ingestion pipeline."""


class CredentialMissing(PipelineError):
    """Raised when no credential record exists for a mailbox."""


class RefreshFailed(PipelineError):
    """Raised when the identity provider rejects a refresh-token exchange."""


class UpstreamUnavailable(PipelineError):
    """Raised when the mailbox provider cannot be reached or returns an error."""


class CursorExpired(UpstreamUnavailable):
    """Raised when the stored history cursor is older than the provider retains."""


class MalformedNotification(PipelineError):
    """Raised when a push notification envelope cannot be decoded."""


class ClassifierUnreachable(PipelineError):
    """Raised when the classification model cannot produce a response."""


class PersistenceFailure(PipelineError):
    """Raised when a data store write fails."""


class CredentialStore(Protocol):
    """Persistence for per-mailbox OAuth credentials and cursors."""

    def get_credential_by_email(self, gmail_email: str) -> MailboxCredential | None:
        """Return the credential for a connected Gmail address."""
        raise NotImplementedError

    def get_credential(self, user_id: str) -> MailboxCredential | None:
        """Return the credential owned by ``user_id``."""
        raise NotImplementedError

    def list_credentials(self) -> list[MailboxCredential]:
        """Return every stored credential."""
        raise NotImplementedError

    def save_access_token(
        self,
        user_id: str,
        *,
        access_token: str,
        token_expiry: datetime,
        refresh_token: str | None = None,
    ) -> None:
        """Persist a refreshed access token; keep the refresh token unless given."""
        raise NotImplementedError

    def compare_and_set_cursor(
        self, user_id: str, *, expected: str | None, new: str
    ) -> bool:
        """Set the cursor to ``new`` only if it still equals ``expected``."""
        raise NotImplementedError

    def update_watch(
        self, user_id: str, *, history_id: str | None, expiration: datetime | None
    ) -> None:
        """Store watch registration state, replacing the cursor."""
        raise NotImplementedError


class CrmRepository(Protocol):
    """Persistence for leads, prospects, messages, and triage records."""

    def find_lead_by_email(self, email: str) -> Lead | None:
        """Return the lead with ``email`` (case-insensitive)."""
        raise NotImplementedError

    def get_lead(self, lead_id: str) -> Lead | None:
        """Return a lead by identifier."""
        raise NotImplementedError

    def find_prospect_by_email(self, email: str) -> Prospect | None:
        """Return the prospect with ``email`` (case-insensitive)."""
        raise NotImplementedError

    def get_prospect(self, prospect_id: str) -> Prospect | None:
        """Return a prospect by identifier."""
        raise NotImplementedError

    def promote_prospect(self, prospect_id: str, lead: Lead) -> tuple[Lead, bool]:
        """Insert ``lead`` and link it to the prospect unless already converted.

        Returns the lead now linked to the prospect and whether it was created.
        """
        raise NotImplementedError

    def has_recent_message(
        self,
        lead_id: str,
        *,
        subject: str,
        direction: str,
        since: datetime,
        gmail_message_id: str | None = None,
    ) -> bool:
        """Return ``True`` if a matching message already exists."""
        raise NotImplementedError

    def insert_message(self, message: StoredMessage) -> StoredMessage:
        """Persist a message row."""
        raise NotImplementedError

    def list_messages(self, lead_id: str) -> list[StoredMessage]:
        """Return messages filed against a lead, oldest first."""
        raise NotImplementedError

    def insert_pending_email(self, pending: PendingEmail) -> bool:
        """Insert a triage record; ``False`` if its provider id already exists."""
        raise NotImplementedError

    def get_pending_email(self, pending_id: str) -> PendingEmail | None:
        """Return a triage record by identifier."""
        raise NotImplementedError

    def update_pending_classification(
        self, pending_id: str, *, status: PendingStatus, result: ClassificationResult
    ) -> None:
        """Record the classifier verdict on a triage record."""
        raise NotImplementedError

    def set_pending_status(self, pending_id: str, status: PendingStatus) -> bool:
        """Change the status of a triage record."""
        raise NotImplementedError

    def list_pending_emails(
        self, statuses: Sequence[PendingStatus], *, limit: int | None = None
    ) -> list[PendingEmail]:
        """Return triage records with one of ``statuses``, newest first."""
        raise NotImplementedError

    def delete_pending_email(self, pending_id: str) -> bool:
        """Delete a triage record."""
        raise NotImplementedError

    def resolve_pending_email(
        self, pending_id: str, message: StoredMessage, *, new_lead: Lead | None = None
    ) -> bool:
        """Atomically file ``message`` (creating ``new_lead`` first) and delete the record."""
        raise NotImplementedError

    def delete_pending_before(self, status: PendingStatus, cutoff: datetime) -> int:
        """Delete records with ``status`` received before ``cutoff``."""
        raise NotImplementedError


class EventSink(Protocol):
    """Destination for automation events emitted by the pipeline."""

    def submit(self, event: dict[str, Any]) -> bool:
        """Queue ``event`` for delivery without blocking."""
        raise NotImplementedError


__all__ = [
    "ClassifierUnreachable",
    "CredentialMissing",
    "CredentialStore",
    "CrmRepository",
    "CursorExpired",
    "EventSink",
    "MalformedNotification",
    "PersistenceFailure",
    "PipelineError",
    "RefreshFailed",
    "UpstreamUnavailable",
]
