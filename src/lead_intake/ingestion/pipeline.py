"""Orchestration of one push notification from cursor to CRM records."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Protocol

from ..auth.tokens import TokenRefresher, TokenStoreAccessor
from ..core.config import AppSettings
from ..core.datetime_utils import utcnow
from ..core.interfaces import (
    CredentialStore,
    CrmRepository,
    CursorExpired,
    EventSink,
    PersistenceFailure,
    RefreshFailed,
    UpstreamUnavailable,
)
from ..core.models import MailboxCredential, MailboxNotification, ProcessReport, RawMessage
from ..intelligence.classifier import SenderClassifier, StatusPolicy
from ..intelligence.llm import LLMClient
from ..triage.pending import PendingEmailWriter, TriageOutcome
from ..triage.resolver import (
    EntityResolver,
    FileOutcome,
    MatchedLead,
    MatchedProspect,
)
from .history import HistoryApi, HistoryFetcher
from .normalizer import MessageNormalizer

LOGGER = logging.getLogger(__name__)

CURSOR_ATTEMPTS = 3


class CrmStore(CredentialStore, CrmRepository, Protocol):
    """Combined persistence surface used by the pipeline."""


class InboundPipeline:
    """Process a mailbox notification and advance its history cursor."""

    def __init__(
        self,
        store: CrmStore,
        tokens: TokenStoreAccessor,
        fetcher: HistoryFetcher,
        normalizer: MessageNormalizer,
        resolver: EntityResolver,
        pending_writer: PendingEmailWriter,
    ) -> None:
        # pylint: disable=too-many-arguments
        self._store = store
        self._tokens = tokens
        self._fetcher = fetcher
        self._normalizer = normalizer
        self._resolver = resolver
        self._pending_writer = pending_writer

    def handle(self, notification: MailboxNotification) -> ProcessReport | None:
        """Run the pipeline; ``None`` means the notification was acknowledged as a no-op."""
        mailbox = notification.email_address
        credential = self._store.get_credential_by_email(mailbox)
        if credential is None:
            LOGGER.warning("Ignoring notification for unknown mailbox %s", mailbox)
            return None

        try:
            credential = self._tokens.ensure_valid(credential)
        except RefreshFailed as exc:
            LOGGER.error("Token refresh failed for %s: %s", mailbox, exc)
            return None

        start_cursor = credential.history_id
        fetch_from = start_cursor or notification.history_id
        LOGGER.info(
            "Processing notification for %s (cursor %s, notified %s)",
            mailbox,
            fetch_from,
            notification.history_id,
        )
        try:
            messages = self._fetcher.fetch_since(credential.access_token, fetch_from)
        except CursorExpired as exc:
            LOGGER.warning("History cursor expired for %s: %s", mailbox, exc)
            report = ProcessReport()
            report.cursor_advanced = self.advance_cursor(
                credential.user_id, start_cursor, notification.history_id
            )
            return report
        except UpstreamUnavailable as exc:
            LOGGER.error("History fetch failed for %s: %s", mailbox, exc)
            return None

        report = ProcessReport()
        for raw in messages:
            self._process_message(raw, credential, report)

        report.cursor_advanced = self.advance_cursor(
            credential.user_id, start_cursor, notification.history_id
        )
        LOGGER.info(
            "Processed %d message(s) for %s: filed=%d promoted=%d triaged=%d "
            "skipped=%d duplicates=%d failed=%d",
            report.processed,
            mailbox,
            report.filed,
            report.promoted,
            report.triaged,
            report.skipped,
            report.duplicates,
            report.failed,
        )
        return report

    def advance_cursor(self, user_id: str, expected: str | None, target: str) -> bool:
        """Move the stored cursor forward to ``target``; never backward."""
        current = expected
        try:
            for _ in range(CURSOR_ATTEMPTS):
                if current is not None and not is_behind(current, target):
                    LOGGER.debug(
                        "Cursor for %s already at %s (target %s)", user_id, current, target
                    )
                    return False
                if self._store.compare_and_set_cursor(
                    user_id, expected=current, new=target
                ):
                    LOGGER.debug("Advanced cursor for %s to %s", user_id, target)
                    return True
                refreshed = self._store.get_credential(user_id)
                if refreshed is None:
                    return False
                current = refreshed.history_id
        except PersistenceFailure as exc:
            LOGGER.error("Failed to advance cursor for %s: %s", user_id, exc)
            return False
        LOGGER.warning("Gave up advancing cursor for %s after contention", user_id)
        return False

    def _process_message(
        self, raw: RawMessage, credential: MailboxCredential, report: ProcessReport
    ) -> None:
        report.processed += 1
        try:
            message = self._normalizer.normalize(raw)
            resolution = self._resolver.resolve(message.sender_email)
            if isinstance(resolution, MatchedLead):
                outcome = self._resolver.file_message(
                    resolution.lead, message, credential.user_id
                )
                if outcome is FileOutcome.FILED:
                    report.filed += 1
                else:
                    report.duplicates += 1
            elif isinstance(resolution, MatchedProspect):
                promotion = self._resolver.promote(
                    resolution.prospect, message, credential.user_id
                )
                if promotion.created:
                    report.promoted += 1
                if promotion.outcome is FileOutcome.FILED:
                    report.filed += 1
                else:
                    report.duplicates += 1
            else:
                result = self._pending_writer.triage(message, credential.user_id)
                if result.outcome is TriageOutcome.CREATED:
                    report.triaged += 1
                elif result.outcome is TriageOutcome.DUPLICATE:
                    report.duplicates += 1
                else:
                    report.skipped += 1
        except Exception as exc:  # pylint: disable=broad-except
            report.failed += 1
            LOGGER.error("Failed to process message %s: %s", raw.id, exc, exc_info=True)


def is_behind(current: str, target: str) -> bool:
    """Return whether history id ``current`` precedes ``target``."""
    try:
        return int(current) < int(target)
    except ValueError:
        return current != target


def build_pipeline(
    settings: AppSettings,
    store: CrmStore,
    *,
    gmail: HistoryApi,
    oauth: TokenRefresher,
    llm_client: LLMClient | None = None,
    events: EventSink | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> InboundPipeline:
    """Wire the pipeline components from settings and collaborators."""
    tokens = TokenStoreAccessor(
        store,
        oauth,
        skew_seconds=settings.google.token_refresh_skew_seconds,
        clock=clock,
    )
    normalizer = MessageNormalizer(
        company_name=settings.triage.company_name,
        max_body_chars=settings.triage.max_body_chars,
        clock=clock,
    )
    resolver = EntityResolver(
        store,
        events=events,
        duplicate_window_seconds=settings.triage.duplicate_window_seconds,
        clock=clock,
    )
    pending_writer = PendingEmailWriter(
        store,
        SenderClassifier(llm_client),
        policy=StatusPolicy.from_settings(settings.classifier),
        blocked_domains=settings.triage.blocked_domains,
        clock=clock,
    )
    return InboundPipeline(
        store,
        tokens,
        HistoryFetcher(gmail),
        normalizer,
        resolver,
        pending_writer,
    )


__all__ = ["CrmStore", "InboundPipeline", "build_pipeline", "is_behind"]
