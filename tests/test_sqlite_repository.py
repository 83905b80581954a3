"""Tests for the SQLite-backed CRM repository."""

from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import timedelta
from pathlib import Path

import pytest

from fakes import NOW, make_credential
from lead_intake.core.config import StorageSettings
from lead_intake.core.interfaces import PersistenceFailure
from lead_intake.core.models import (
    Classification,
    ClassificationResult,
    Lead,
    PendingEmail,
    PendingStatus,
    Prospect,
    StoredMessage,
)
from lead_intake.storage import SqliteCrmRepository


def _pending(pending_id: str, *, gmail_id: str, status: PendingStatus, hours_ago: int = 0):
    return PendingEmail(
        id=pending_id,
        user_id="user-1",
        from_email="stranger@example.com",
        from_name="Stranger",
        subject=f"Subject {pending_id}",
        content="Body",
        gmail_message_id=gmail_id,
        received_at=NOW - timedelta(hours=hours_ago),
        status=status,
    )


def _message(message_id: str, lead_id: str, *, subject: str = "Hello", gmail_id=None):
    return StoredMessage(
        id=message_id,
        lead_id=lead_id,
        user_id="user-1",
        direction="inbound",
        subject=subject,
        body="Body",
        sent_at=NOW,
        is_read=False,
        gmail_message_id=gmail_id,
        sender_email="lead@example.com",
    )


def test_migrations_create_tables_once(db_path: Path) -> None:
    SqliteCrmRepository(StorageSettings(db_path=db_path)).close()
    SqliteCrmRepository(StorageSettings(db_path=db_path)).close()

    with sqlite3.connect(db_path) as conn:
        names = [row[0] for row in conn.execute("SELECT name FROM schema_migrations")]
        tables = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
    assert sorted(names) == ["001_initial", "002_indexes"]
    assert {"gmail_tokens", "leads", "prospects", "messages", "pending_emails"} <= tables


def test_credential_lookup_is_case_insensitive(repository: SqliteCrmRepository) -> None:
    repository.upsert_credential(make_credential(gmail_email="Owner@Example.com"))

    credential = repository.get_credential_by_email("OWNER@example.COM")

    assert credential is not None
    assert credential.user_id == "user-1"
    assert credential.gmail_email == "owner@example.com"
    assert credential.token_expiry.tzinfo is not None


def test_save_access_token_keeps_refresh_token(repository: SqliteCrmRepository) -> None:
    repository.upsert_credential(make_credential())

    repository.save_access_token(
        "user-1", access_token="new-token", token_expiry=NOW + timedelta(hours=2)
    )
    stored = repository.get_credential("user-1")
    assert stored is not None
    assert stored.access_token == "new-token"
    assert stored.refresh_token == "refresh-1"
    assert stored.token_expiry == NOW + timedelta(hours=2)

    repository.save_access_token(
        "user-1",
        access_token="newer-token",
        token_expiry=NOW + timedelta(hours=3),
        refresh_token="refresh-2",
    )
    rotated = repository.get_credential("user-1")
    assert rotated is not None
    assert rotated.refresh_token == "refresh-2"


def test_compare_and_set_cursor_requires_expected_value(
    repository: SqliteCrmRepository,
) -> None:
    repository.upsert_credential(make_credential(history_id="100"))

    assert repository.compare_and_set_cursor("user-1", expected="99", new="150") is False
    assert repository.compare_and_set_cursor("user-1", expected="100", new="150") is True
    assert repository.compare_and_set_cursor("user-1", expected="100", new="160") is False

    credential = repository.get_credential("user-1")
    assert credential is not None
    assert credential.history_id == "150"


def test_compare_and_set_cursor_handles_unset_cursor(
    repository: SqliteCrmRepository,
) -> None:
    repository.upsert_credential(make_credential(history_id=None))
    assert repository.compare_and_set_cursor("user-1", expected=None, new="42") is True
    credential = repository.get_credential("user-1")
    assert credential is not None
    assert credential.history_id == "42"


def test_update_watch_records_expiration(repository: SqliteCrmRepository) -> None:
    repository.upsert_credential(make_credential())
    expiration = NOW + timedelta(days=7)

    repository.update_watch("user-1", history_id="500", expiration=expiration)

    credential = repository.get_credential("user-1")
    assert credential is not None
    assert credential.history_id == "500"
    assert credential.watch_expiration == expiration


def test_promote_prospect_creates_single_lead(repository: SqliteCrmRepository) -> None:
    repository.insert_prospect(Prospect(id="p-1", email="cold@example.com"))
    first = Lead(id="lead-a", email="cold@example.com", prospect_id="p-1")
    second = Lead(id="lead-b", email="cold@example.com", prospect_id="p-1")

    lead, created = repository.promote_prospect("p-1", first)
    again, created_again = repository.promote_prospect("p-1", second)

    assert created is True
    assert created_again is False
    assert lead.id == again.id == "lead-a"
    prospect = repository.get_prospect("p-1")
    assert prospect is not None
    assert prospect.converted_to_lead_id == "lead-a"
    assert repository.get_lead("lead-b") is None


def test_promote_unknown_prospect_raises(repository: SqliteCrmRepository) -> None:
    with pytest.raises(LookupError):
        repository.promote_prospect("missing", Lead(id="x", email="x@example.com"))


def test_duplicate_lead_for_prospect_is_rejected(repository: SqliteCrmRepository) -> None:
    repository.insert_prospect(Prospect(id="p-1", email="cold@example.com"))
    repository.insert_lead(Lead(id="lead-a", email="cold@example.com", prospect_id="p-1"))

    with pytest.raises(PersistenceFailure):
        repository.insert_lead(
            Lead(id="lead-b", email="cold@example.com", prospect_id="p-1")
        )


def test_has_recent_message_checks_window_and_provider_id(
    repository: SqliteCrmRepository,
) -> None:
    repository.insert_lead(Lead(id="lead-1", email="lead@example.com"))
    repository.insert_message(
        replace(_message("msg-1", "lead-1", gmail_id="g-1"), created_at=NOW)
    )

    def recent(**overrides) -> bool:
        query = {
            "subject": "Hello",
            "direction": "inbound",
            "since": NOW - timedelta(seconds=60),
            "gmail_message_id": None,
        }
        query.update(overrides)
        return repository.has_recent_message("lead-1", **query)

    assert recent() is True
    assert recent(subject="Other") is False
    assert recent(direction="outbound") is False
    assert recent(since=NOW + timedelta(seconds=1)) is False
    assert recent(subject="Other", since=NOW + timedelta(hours=1), gmail_message_id="g-1")


def test_messages_listed_oldest_first(repository: SqliteCrmRepository) -> None:
    repository.insert_lead(Lead(id="lead-1", email="lead@example.com"))
    repository.insert_message(
        replace(_message("late", "lead-1"), created_at=NOW + timedelta(minutes=5))
    )
    repository.insert_message(replace(_message("early", "lead-1"), created_at=NOW))

    assert [message.id for message in repository.list_messages("lead-1")] == [
        "early",
        "late",
    ]


def test_pending_insert_ignores_duplicate_provider_id(
    repository: SqliteCrmRepository,
) -> None:
    first = _pending("pe-1", gmail_id="g-1", status=PendingStatus.PENDING)
    duplicate = _pending("pe-2", gmail_id="g-1", status=PendingStatus.PENDING)

    assert repository.insert_pending_email(first) is True
    assert repository.insert_pending_email(duplicate) is False
    assert repository.get_pending_email("pe-2") is None


def test_pending_classification_and_listing(repository: SqliteCrmRepository) -> None:
    repository.insert_pending_email(
        _pending("old", gmail_id="g-1", status=PendingStatus.PENDING, hours_ago=5)
    )
    repository.insert_pending_email(
        _pending("new", gmail_id="g-2", status=PendingStatus.PENDING, hours_ago=1)
    )
    repository.insert_pending_email(
        _pending("gone", gmail_id="g-3", status=PendingStatus.AUTO_DISMISSED)
    )

    repository.update_pending_classification(
        "old",
        status=PendingStatus.LIKELY_LEAD,
        result=ClassificationResult(
            classification=Classification.LEAD, confidence=0.9, reason="asks for a quote"
        ),
    )

    open_items = repository.list_pending_emails(
        [PendingStatus.PENDING, PendingStatus.LIKELY_LEAD]
    )
    assert [item.id for item in open_items] == ["new", "old"]
    classified = repository.get_pending_email("old")
    assert classified is not None
    assert classified.status is PendingStatus.LIKELY_LEAD
    assert classified.ai_classification == "lead"
    assert classified.ai_confidence == pytest.approx(0.9)

    dismissed = repository.list_pending_emails([PendingStatus.AUTO_DISMISSED], limit=1)
    assert [item.id for item in dismissed] == ["gone"]
    assert repository.list_pending_emails([]) == []


def test_resolve_pending_email_files_message_atomically(
    repository: SqliteCrmRepository,
) -> None:
    repository.insert_pending_email(
        _pending("pe-1", gmail_id="g-1", status=PendingStatus.LIKELY_LEAD)
    )
    lead = Lead(id="lead-new", email="stranger@example.com", lead_source="inbound_email")

    resolved = repository.resolve_pending_email(
        "pe-1", _message("msg-1", "lead-new", gmail_id="g-1"), new_lead=lead
    )

    assert resolved is True
    assert repository.get_pending_email("pe-1") is None
    assert repository.get_lead("lead-new") is not None
    assert [message.id for message in repository.list_messages("lead-new")] == ["msg-1"]

    again = repository.resolve_pending_email(
        "pe-1", _message("msg-2", "lead-new"), new_lead=None
    )
    assert again is False
    assert len(repository.list_messages("lead-new")) == 1


def test_resolve_pending_email_rolls_back_on_failure(
    repository: SqliteCrmRepository,
) -> None:
    repository.insert_pending_email(
        _pending("pe-1", gmail_id="g-1", status=PendingStatus.PENDING)
    )

    # The message references a lead that does not exist.
    with pytest.raises(PersistenceFailure):
        repository.resolve_pending_email("pe-1", _message("msg-1", "no-such-lead"))

    assert repository.get_pending_email("pe-1") is not None


def test_status_changes_and_cleanup(repository: SqliteCrmRepository) -> None:
    repository.insert_pending_email(
        _pending("stale", gmail_id="g-1", status=PendingStatus.AUTO_DISMISSED, hours_ago=400)
    )
    repository.insert_pending_email(
        _pending("fresh", gmail_id="g-2", status=PendingStatus.AUTO_DISMISSED, hours_ago=1)
    )

    assert repository.set_pending_status("fresh", PendingStatus.PENDING) is True
    assert repository.set_pending_status("missing", PendingStatus.PENDING) is False

    removed = repository.delete_pending_before(
        PendingStatus.AUTO_DISMISSED, NOW - timedelta(days=14)
    )
    assert removed == 1
    assert repository.get_pending_email("stale") is None
    assert repository.delete_pending_email("fresh") is True
    assert repository.delete_pending_email("fresh") is False
