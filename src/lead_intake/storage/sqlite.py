"""SQLite-backed CRM repository implementation."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from types import TracebackType
from typing import cast

from ..core.config import StorageSettings
from ..core.datetime_utils import parse_datetime, serialize_datetime, utcnow
from ..core.interfaces import CredentialStore, CrmRepository, PersistenceFailure
from ..core.models import (
    ClassificationResult,
    Lead,
    MailboxCredential,
    PendingEmail,
    PendingStatus,
    Prospect,
    StoredMessage,
)

LOGGER = logging.getLogger(__name__)

_LEAD_COLUMNS = (
    "id",
    "first_name",
    "last_name",
    "company",
    "email",
    "phone",
    "estimated_value",
    "lead_status",
    "lead_source",
    "research_report",
    "pain_points",
    "linkedin_url",
    "prospect_id",
    "created_at",
)
_MESSAGE_COLUMNS = (
    "id",
    "lead_id",
    "user_id",
    "direction",
    "subject",
    "body",
    "sent_at",
    "is_read",
    "gmail_thread_id",
    "gmail_message_id",
    "sender_name",
    "sender_email",
    "created_at",
)


class SqliteCrmRepository(CredentialStore, CrmRepository):
    """Persist credentials, leads, prospects, messages, and triage records."""

    def __init__(self, settings: StorageSettings) -> None:
        """Open the database and apply pending migrations."""
        self._settings = settings
        db_path = Path(settings.db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = sqlite3.connect(
            db_path,
            timeout=10.0,
            check_same_thread=False,
        )
        self._connection.row_factory = sqlite3.Row
        self._enable_foreign_keys()
        self._apply_migrations()

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> SqliteCrmRepository:
        """Enter context manager scope."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure the connection is closed when exiting context manager."""
        self.close()

    # Credentials --------------------------------------------------------------
    def upsert_credential(self, credential: MailboxCredential) -> None:
        """Insert or replace the credential row for a user."""
        now = serialize_datetime(utcnow())
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO gmail_tokens (
                    user_id, gmail_email, access_token, refresh_token,
                    token_expiry, history_id, watch_expiration, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    gmail_email=excluded.gmail_email,
                    access_token=excluded.access_token,
                    refresh_token=excluded.refresh_token,
                    token_expiry=excluded.token_expiry,
                    history_id=excluded.history_id,
                    watch_expiration=excluded.watch_expiration,
                    updated_at=excluded.updated_at
                """,
                (
                    credential.user_id,
                    credential.gmail_email.strip().lower(),
                    credential.access_token,
                    credential.refresh_token,
                    serialize_datetime(credential.token_expiry),
                    credential.history_id,
                    serialize_datetime(credential.watch_expiration),
                    now,
                    now,
                ),
            )

    def get_credential_by_email(self, gmail_email: str) -> MailboxCredential | None:
        """Return the credential for a connected Gmail address."""
        row = self._connection.execute(
            "SELECT * FROM gmail_tokens WHERE gmail_email = ? COLLATE NOCASE",
            (gmail_email.strip(),),
        ).fetchone()
        return _row_to_credential(row) if row else None

    def get_credential(self, user_id: str) -> MailboxCredential | None:
        """Return the credential owned by ``user_id``."""
        row = self._connection.execute(
            "SELECT * FROM gmail_tokens WHERE user_id = ?", (user_id,)
        ).fetchone()
        return _row_to_credential(row) if row else None

    def list_credentials(self) -> list[MailboxCredential]:
        """Return every stored credential ordered by mailbox address."""
        rows = self._connection.execute(
            "SELECT * FROM gmail_tokens ORDER BY gmail_email"
        ).fetchall()
        return [_row_to_credential(row) for row in rows]

    def save_access_token(
        self,
        user_id: str,
        *,
        access_token: str,
        token_expiry: datetime,
        refresh_token: str | None = None,
    ) -> None:
        """Persist a refreshed access token without dropping the refresh token."""
        LOGGER.debug("Saving refreshed access token for user %s", user_id)
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE gmail_tokens
                SET access_token = ?,
                    token_expiry = ?,
                    refresh_token = COALESCE(NULLIF(?, ''), refresh_token),
                    updated_at = ?
                WHERE user_id = ?
                """,
                (
                    access_token,
                    serialize_datetime(token_expiry),
                    refresh_token,
                    serialize_datetime(utcnow()),
                    user_id,
                ),
            )

    def compare_and_set_cursor(
        self, user_id: str, *, expected: str | None, new: str
    ) -> bool:
        """Set the history cursor only if it still holds ``expected``."""
        with self._transaction() as conn:
            cur = conn.execute(
                """
                UPDATE gmail_tokens
                SET history_id = ?, updated_at = ?
                WHERE user_id = ? AND history_id IS ?
                """,
                (new, serialize_datetime(utcnow()), user_id, expected),
            )
        return cur.rowcount == 1

    def update_watch(
        self, user_id: str, *, history_id: str | None, expiration: datetime | None
    ) -> None:
        """Store watch registration state, replacing the cursor."""
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE gmail_tokens
                SET history_id = ?, watch_expiration = ?, updated_at = ?
                WHERE user_id = ?
                """,
                (
                    history_id,
                    serialize_datetime(expiration),
                    serialize_datetime(utcnow()),
                    user_id,
                ),
            )

    # Leads and prospects ------------------------------------------------------
    def insert_lead(self, lead: Lead) -> Lead:
        """Persist a new lead row."""
        with self._transaction() as conn:
            stored = self._insert_lead(conn, lead)
        return stored

    def find_lead_by_email(self, email: str) -> Lead | None:
        """Return the oldest lead whose email matches case-insensitively."""
        row = self._connection.execute(
            """
            SELECT * FROM leads
            WHERE email = ? COLLATE NOCASE
            ORDER BY created_at
            LIMIT 1
            """,
            (email.strip(),),
        ).fetchone()
        return _row_to_lead(row) if row else None

    def get_lead(self, lead_id: str) -> Lead | None:
        """Return a lead by identifier."""
        row = self._connection.execute(
            "SELECT * FROM leads WHERE id = ?", (lead_id,)
        ).fetchone()
        return _row_to_lead(row) if row else None

    def insert_prospect(self, prospect: Prospect) -> Prospect:
        """Persist a new prospect row."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO prospects (
                    id, first_name, last_name, email, phone, company_name,
                    research_report, pain_points, linkedin_url,
                    converted_to_lead_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    prospect.id,
                    prospect.first_name,
                    prospect.last_name,
                    prospect.email,
                    prospect.phone,
                    prospect.company_name,
                    prospect.research_report,
                    prospect.pain_points,
                    prospect.linkedin_url,
                    prospect.converted_to_lead_id,
                    serialize_datetime(utcnow()),
                ),
            )
        return prospect

    def find_prospect_by_email(self, email: str) -> Prospect | None:
        """Return the oldest prospect whose email matches case-insensitively."""
        row = self._connection.execute(
            """
            SELECT * FROM prospects
            WHERE email = ? COLLATE NOCASE
            ORDER BY created_at
            LIMIT 1
            """,
            (email.strip(),),
        ).fetchone()
        return _row_to_prospect(row) if row else None

    def get_prospect(self, prospect_id: str) -> Prospect | None:
        """Return a prospect by identifier."""
        row = self._connection.execute(
            "SELECT * FROM prospects WHERE id = ?", (prospect_id,)
        ).fetchone()
        return _row_to_prospect(row) if row else None

    def promote_prospect(self, prospect_id: str, lead: Lead) -> tuple[Lead, bool]:
        """Insert ``lead`` and link it to the prospect unless already converted."""
        with self._transaction(immediate=True) as conn:
            row = conn.execute(
                "SELECT converted_to_lead_id FROM prospects WHERE id = ?",
                (prospect_id,),
            ).fetchone()
            if row is None:
                raise LookupError(f"Prospect {prospect_id} does not exist")

            existing_id = row["converted_to_lead_id"]
            existing_row = None
            if existing_id:
                existing_row = conn.execute(
                    "SELECT * FROM leads WHERE id = ?", (existing_id,)
                ).fetchone()
            if existing_row is None:
                existing_row = conn.execute(
                    "SELECT * FROM leads WHERE prospect_id = ?", (prospect_id,)
                ).fetchone()
            if existing_row is not None:
                existing = _row_to_lead(existing_row)
                conn.execute(
                    "UPDATE prospects SET converted_to_lead_id = ? WHERE id = ?",
                    (existing.id, prospect_id),
                )
                LOGGER.info(
                    "Prospect %s already converted to lead %s", prospect_id, existing.id
                )
                return existing, False

            stored = self._insert_lead(conn, lead)
            conn.execute(
                "UPDATE prospects SET converted_to_lead_id = ? WHERE id = ?",
                (stored.id, prospect_id),
            )
        return stored, True

    # Messages -----------------------------------------------------------------
    def has_recent_message(
        self,
        lead_id: str,
        *,
        subject: str,
        direction: str,
        since: datetime,
        gmail_message_id: str | None = None,
    ) -> bool:
        """Return ``True`` if an equivalent message is already filed."""
        row = self._connection.execute(
            """
            SELECT 1 FROM messages
            WHERE lead_id = ?
              AND direction = ?
              AND (
                    (subject = ? AND created_at >= ?)
                 OR (? IS NOT NULL AND gmail_message_id = ?)
              )
            LIMIT 1
            """,
            (
                lead_id,
                direction,
                subject,
                serialize_datetime(since),
                gmail_message_id,
                gmail_message_id,
            ),
        ).fetchone()
        return row is not None

    def insert_message(self, message: StoredMessage) -> StoredMessage:
        """Persist a message row, stamping ``created_at`` when absent."""
        with self._transaction() as conn:
            stored = self._insert_message(conn, message)
        return stored

    def list_messages(self, lead_id: str) -> list[StoredMessage]:
        """Return messages filed against ``lead_id``, oldest first."""
        rows = self._connection.execute(
            "SELECT * FROM messages WHERE lead_id = ? ORDER BY created_at, sent_at",
            (lead_id,),
        ).fetchall()
        return [_row_to_message(row) for row in rows]

    # Pending emails -----------------------------------------------------------
    def insert_pending_email(self, pending: PendingEmail) -> bool:
        """Insert a triage record; ``False`` when its provider id already exists."""
        with self._transaction() as conn:
            cur = conn.execute(
                """
                INSERT INTO pending_emails (
                    id, user_id, from_email, from_name, subject, content,
                    gmail_message_id, received_at, status, ai_classification,
                    ai_confidence, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(gmail_message_id) DO NOTHING
                """,
                (
                    pending.id,
                    pending.user_id,
                    pending.from_email,
                    pending.from_name,
                    pending.subject,
                    pending.content,
                    pending.gmail_message_id,
                    serialize_datetime(pending.received_at),
                    str(pending.status),
                    pending.ai_classification,
                    pending.ai_confidence,
                    serialize_datetime(pending.created_at or utcnow()),
                ),
            )
        return cur.rowcount == 1

    def get_pending_email(self, pending_id: str) -> PendingEmail | None:
        """Return a triage record by identifier."""
        row = self._connection.execute(
            "SELECT * FROM pending_emails WHERE id = ?", (pending_id,)
        ).fetchone()
        return _row_to_pending(row) if row else None

    def update_pending_classification(
        self, pending_id: str, *, status: PendingStatus, result: ClassificationResult
    ) -> None:
        """Record the classifier verdict on a triage record."""
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE pending_emails
                SET status = ?, ai_classification = ?, ai_confidence = ?
                WHERE id = ?
                """,
                (
                    str(status),
                    str(result.classification),
                    result.confidence,
                    pending_id,
                ),
            )

    def set_pending_status(self, pending_id: str, status: PendingStatus) -> bool:
        """Change the status of a triage record."""
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE pending_emails SET status = ? WHERE id = ?",
                (str(status), pending_id),
            )
        return cur.rowcount > 0

    def list_pending_emails(
        self, statuses: Sequence[PendingStatus], *, limit: int | None = None
    ) -> list[PendingEmail]:
        """Return triage records with one of ``statuses``, newest first."""
        if not statuses:
            return []
        placeholders = ", ".join("?" for _ in statuses)
        query = (
            f"SELECT * FROM pending_emails WHERE status IN ({placeholders}) "
            "ORDER BY received_at DESC"
        )
        params: list[object] = [str(status) for status in statuses]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        rows = self._connection.execute(query, params).fetchall()
        return [_row_to_pending(row) for row in rows]

    def delete_pending_email(self, pending_id: str) -> bool:
        """Delete a triage record."""
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM pending_emails WHERE id = ?", (pending_id,))
        return cur.rowcount > 0

    def resolve_pending_email(
        self, pending_id: str, message: StoredMessage, *, new_lead: Lead | None = None
    ) -> bool:
        """Atomically file ``message`` (creating ``new_lead`` first) and drop the record."""
        with self._transaction(immediate=True) as conn:
            exists = conn.execute(
                "SELECT 1 FROM pending_emails WHERE id = ?", (pending_id,)
            ).fetchone()
            if exists is None:
                return False
            if new_lead is not None:
                self._insert_lead(conn, new_lead)
            self._insert_message(conn, message)
            conn.execute("DELETE FROM pending_emails WHERE id = ?", (pending_id,))
        return True

    def delete_pending_before(self, status: PendingStatus, cutoff: datetime) -> int:
        """Delete records with ``status`` received before ``cutoff``."""
        with self._transaction() as conn:
            cur = conn.execute(
                "DELETE FROM pending_emails WHERE status = ? AND received_at < ?",
                (str(status), serialize_datetime(cutoff)),
            )
        return cur.rowcount

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        self._connection.close()

    # Internal helpers --------------------------------------------------------
    @contextmanager
    def _transaction(self, *, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Run a write transaction, surfacing driver errors as ``PersistenceFailure``."""
        try:
            with self._connection:
                if immediate:
                    self._connection.execute("BEGIN IMMEDIATE")
                yield self._connection
        except sqlite3.Error as exc:
            LOGGER.error("Database write failed: %s", exc, exc_info=True)
            raise PersistenceFailure(str(exc)) from exc

    def _insert_lead(self, conn: sqlite3.Connection, lead: Lead) -> Lead:
        created_at = lead.created_at or utcnow()
        conn.execute(
            f"INSERT INTO leads ({', '.join(_LEAD_COLUMNS)}) "
            f"VALUES ({', '.join('?' for _ in _LEAD_COLUMNS)})",
            (
                lead.id,
                lead.first_name,
                lead.last_name,
                lead.company,
                lead.email,
                lead.phone,
                lead.estimated_value,
                lead.lead_status,
                lead.lead_source,
                lead.research_report,
                lead.pain_points,
                lead.linkedin_url,
                lead.prospect_id,
                serialize_datetime(created_at),
            ),
        )
        return _row_to_lead(
            conn.execute("SELECT * FROM leads WHERE id = ?", (lead.id,)).fetchone()
        )

    def _insert_message(
        self, conn: sqlite3.Connection, message: StoredMessage
    ) -> StoredMessage:
        created_at = message.created_at or utcnow()
        conn.execute(
            f"INSERT INTO messages ({', '.join(_MESSAGE_COLUMNS)}) "
            f"VALUES ({', '.join('?' for _ in _MESSAGE_COLUMNS)})",
            (
                message.id,
                message.lead_id,
                message.user_id,
                message.direction,
                message.subject,
                message.body,
                serialize_datetime(message.sent_at),
                1 if message.is_read else 0,
                message.gmail_thread_id,
                message.gmail_message_id,
                message.sender_name,
                message.sender_email,
                serialize_datetime(created_at),
            ),
        )
        return _row_to_message(
            conn.execute("SELECT * FROM messages WHERE id = ?", (message.id,)).fetchone()
        )

    def _enable_foreign_keys(self) -> None:
        with self._connection:
            self._connection.execute("PRAGMA foreign_keys = ON")

    def _apply_migrations(self) -> None:
        schema_dir = Path(__file__).resolve().parent / "schema"
        with self._connection:
            self._connection.execute(
                "CREATE TABLE IF NOT EXISTS schema_migrations "
                "(name TEXT PRIMARY KEY, applied_at TEXT NOT NULL)"
            )
        applied = {
            row["name"]
            for row in self._connection.execute("SELECT name FROM schema_migrations")
        }
        for migration in sorted(schema_dir.glob("*.sql")):
            if migration.stem in applied:
                continue
            LOGGER.debug("Applying migration %s", migration.name)
            script = migration.read_text(encoding="utf-8")
            # executescript commits on its own, so record the name separately.
            self._connection.executescript(script)
            with self._connection:
                self._connection.execute(
                    "INSERT INTO schema_migrations (name, applied_at) VALUES (?, ?)",
                    (migration.stem, serialize_datetime(utcnow())),
                )


def _row_to_credential(row: sqlite3.Row) -> MailboxCredential:
    return MailboxCredential(
        user_id=row["user_id"],
        gmail_email=row["gmail_email"],
        access_token=row["access_token"],
        refresh_token=row["refresh_token"],
        token_expiry=cast(datetime, parse_datetime(row["token_expiry"])),
        history_id=row["history_id"],
        watch_expiration=parse_datetime(row["watch_expiration"]),
        updated_at=parse_datetime(row["updated_at"]),
    )


def _row_to_lead(row: sqlite3.Row) -> Lead:
    return Lead(
        id=row["id"],
        email=row["email"],
        first_name=row["first_name"] or "",
        last_name=row["last_name"] or "",
        company=row["company"] or "",
        phone=row["phone"],
        estimated_value=row["estimated_value"] or 0,
        lead_status=row["lead_status"] or "new",
        lead_source=row["lead_source"] or "",
        research_report=row["research_report"],
        pain_points=row["pain_points"],
        linkedin_url=row["linkedin_url"],
        prospect_id=row["prospect_id"],
        created_at=parse_datetime(row["created_at"]),
    )


def _row_to_prospect(row: sqlite3.Row) -> Prospect:
    return Prospect(
        id=row["id"],
        email=row["email"],
        first_name=row["first_name"] or "",
        last_name=row["last_name"] or "",
        phone=row["phone"],
        company_name=row["company_name"],
        research_report=row["research_report"],
        pain_points=row["pain_points"],
        linkedin_url=row["linkedin_url"],
        converted_to_lead_id=row["converted_to_lead_id"],
    )


def _row_to_message(row: sqlite3.Row) -> StoredMessage:
    return StoredMessage(
        id=row["id"],
        lead_id=row["lead_id"],
        user_id=row["user_id"],
        direction=row["direction"],
        subject=row["subject"] or "",
        body=row["body"] or "",
        sent_at=cast(datetime, parse_datetime(row["sent_at"])),
        is_read=bool(row["is_read"]),
        gmail_thread_id=row["gmail_thread_id"],
        gmail_message_id=row["gmail_message_id"],
        sender_name=row["sender_name"],
        sender_email=row["sender_email"],
        created_at=parse_datetime(row["created_at"]),
    )


def _row_to_pending(row: sqlite3.Row) -> PendingEmail:
    return PendingEmail(
        id=row["id"],
        user_id=row["user_id"],
        from_email=row["from_email"],
        from_name=row["from_name"],
        subject=row["subject"],
        content=row["content"] or "",
        gmail_message_id=row["gmail_message_id"],
        received_at=cast(datetime, parse_datetime(row["received_at"])),
        status=PendingStatus(row["status"]),
        ai_classification=row["ai_classification"],
        ai_confidence=row["ai_confidence"],
        created_at=parse_datetime(row["created_at"]),
    )


__all__ = ["SqliteCrmRepository"]
