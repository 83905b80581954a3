"""Registration and renewal of Gmail push watches."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from ..auth.tokens import TokenStoreAccessor
from ..core.datetime_utils import ensure_utc, utcnow
from ..core.interfaces import CredentialMissing, CredentialStore, PipelineError
from ..core.models import MailboxCredential
from ..transport.payloads import WatchRegistration

LOGGER = logging.getLogger(__name__)


class WatchApi(Protocol):
    """Subset of the Gmail client used for watch management."""

    def watch(
        self, access_token: str, topic_name: str, *, label_ids: Sequence[str] = ("INBOX",)
    ) -> WatchRegistration:
        """Register a push watch."""
        raise NotImplementedError

    def stop(self, access_token: str) -> None:
        """Cancel the push watch."""
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class WatchResult:
    """Per-mailbox outcome of a renewal run."""

    gmail_email: str
    status: str
    expiration: datetime | None = None
    error: str | None = None


@dataclass(slots=True)
class RenewalReport:
    """Summary of :meth:`WatchManager.renew_all`."""

    renewed: int = 0
    failed: int = 0
    skipped: int = 0
    results: list[WatchResult] = field(default_factory=list)


class WatchManager:
    """Start, stop and renew Gmail watches for stored mailboxes."""

    def __init__(
        self,
        store: CredentialStore,
        tokens: TokenStoreAccessor,
        api: WatchApi,
        *,
        topic_name: str | None,
        renew_within_days: int = 2,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._tokens = tokens
        self._api = api
        self._topic_name = topic_name
        self._renew_within = timedelta(days=renew_within_days)
        self._clock = clock

    def start(self, user_id: str) -> WatchRegistration:
        """Register a watch for ``user_id`` and record its expiry."""
        credential = self._require(user_id)
        return self._register(credential)

    def stop(self, user_id: str) -> None:
        """Cancel the watch for ``user_id`` and clear its cursor."""
        credential = self._tokens.ensure_valid(self._require(user_id))
        self._api.stop(credential.access_token)
        self._store.update_watch(user_id, history_id=None, expiration=None)
        LOGGER.info("Stopped watch for %s", credential.gmail_email)

    def renew_all(self) -> RenewalReport:
        """Renew every watch that is missing or close to expiry."""
        report = RenewalReport()
        threshold = self._clock() + self._renew_within
        for credential in self._store.list_credentials():
            expiration = ensure_utc(credential.watch_expiration)
            if expiration is not None and expiration > threshold:
                report.skipped += 1
                report.results.append(
                    WatchResult(
                        gmail_email=credential.gmail_email,
                        status="skipped",
                        expiration=expiration,
                    )
                )
                continue
            try:
                registration = self._register(credential)
            except PipelineError as exc:
                LOGGER.error("Watch renewal failed for %s: %s", credential.gmail_email, exc)
                report.failed += 1
                report.results.append(
                    WatchResult(
                        gmail_email=credential.gmail_email, status="failed", error=str(exc)
                    )
                )
                continue
            report.renewed += 1
            report.results.append(
                WatchResult(
                    gmail_email=credential.gmail_email,
                    status="renewed",
                    expiration=registration.expiration,
                )
            )
        LOGGER.info(
            "Watch renewal complete: renewed=%d failed=%d skipped=%d",
            report.renewed,
            report.failed,
            report.skipped,
        )
        return report

    def _require(self, user_id: str) -> MailboxCredential:
        credential = self._store.get_credential(user_id)
        if credential is None:
            raise CredentialMissing(f"No credential stored for user {user_id}")
        return credential

    def _register(self, credential: MailboxCredential) -> WatchRegistration:
        if not self._topic_name:
            raise PipelineError("Pub/Sub topic is not configured")
        credential = self._tokens.ensure_valid(credential)
        registration = self._api.watch(credential.access_token, self._topic_name)
        # An existing cursor is kept so unprocessed history is not skipped.
        cursor = credential.history_id or registration.history_id
        self._store.update_watch(
            credential.user_id, history_id=cursor, expiration=registration.expiration
        )
        LOGGER.info(
            "Watch registered for %s (history %s, expires %s)",
            credential.gmail_email,
            registration.history_id,
            registration.expiration,
        )
        return registration


__all__ = ["RenewalReport", "WatchApi", "WatchManager", "WatchResult"]
