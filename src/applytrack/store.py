"""SQLite persistence for email messages and job applications."""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

from .errors import PersistenceError
from .types import ApplicationRecord, ApplicationStatus, EmailRecord

LOGGER = logging.getLogger(__name__)
MEMORY_DATABASE = ":memory:"

SCHEMA = """
CREATE TABLE IF NOT EXISTS job_applications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    company TEXT NOT NULL,
    position TEXT NOT NULL,
    location TEXT,
    application_date TEXT,
    status TEXT NOT NULL DEFAULT 'applied'
        CHECK (status IN ('applied', 'interview', 'offer', 'not_chosen')),
    job_url TEXT,
    description TEXT,
    salary_range TEXT,
    contact_person TEXT,
    contact_email TEXT,
    notes TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS email_messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    message_id TEXT NOT NULL UNIQUE,
    sender TEXT,
    recipient TEXT,
    subject TEXT,
    body TEXT,
    email_date TEXT,
    email_type TEXT,
    processed INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_job_applications_contact_email
    ON job_applications (contact_email);
"""

_APPLICATION_COLUMNS = (
    "company",
    "position",
    "location",
    "application_date",
    "status",
    "job_url",
    "description",
    "salary_range",
    "contact_person",
    "contact_email",
    "notes",
    "created_at",
    "updated_at",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApplicationStore:
    """Storage contract used by the scanner.

    Every write is a single statement committed on its own; the internal lock
    lets the scheduler thread and CLI callers share one connection.
    """

    def __init__(
        self,
        path: Path | str,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._path = str(path) if str(path) == MEMORY_DATABASE else str(Path(path).expanduser())
        self._clock = clock
        self._lock = threading.Lock()
        try:
            if self._path != MEMORY_DATABASE:
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self._path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            with self._conn:
                self._conn.executescript(SCHEMA)
        except (OSError, sqlite3.Error) as exc:
            raise PersistenceError(f"Cannot open database {self._path}: {exc}") from exc

    @property
    def path(self) -> str:
        return self._path

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> ApplicationStore:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    # Email messages

    def upsert_email(self, email: EmailRecord) -> int:
        """Insert or update a message keyed by its message id; returns the row id."""

        params = {
            "message_id": email.message_id,
            "sender": email.sender,
            "recipient": email.recipient,
            "subject": email.subject,
            "body": email.body,
            "email_date": _format_datetime(email.email_date),
            "email_type": email.category,
            "processed": int(email.processed),
            "created_at": _format_datetime(self._clock()),
        }
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO email_messages
                    (message_id, sender, recipient, subject, body, email_date,
                     email_type, processed, created_at)
                VALUES
                    (:message_id, :sender, :recipient, :subject, :body, :email_date,
                     :email_type, :processed, :created_at)
                ON CONFLICT (message_id) DO UPDATE SET
                    sender = excluded.sender,
                    recipient = excluded.recipient,
                    subject = excluded.subject,
                    body = excluded.body,
                    email_date = excluded.email_date,
                    email_type = excluded.email_type,
                    processed = excluded.processed
                """,
                params,
            )
            row = conn.execute(
                "SELECT id FROM email_messages WHERE message_id = ?", (email.message_id,)
            ).fetchone()
        return int(row["id"])

    def mark_email_processed(self, message_id: str, processed: bool = True) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE email_messages SET processed = ? WHERE message_id = ?",
                (int(processed), message_id),
            )
        return cursor.rowcount > 0

    def get_email(self, email_id: int) -> EmailRecord | None:
        row = self._fetchone("SELECT * FROM email_messages WHERE id = ?", (email_id,))
        return _email_from_row(row) if row else None

    def get_email_by_message_id(self, message_id: str) -> EmailRecord | None:
        row = self._fetchone("SELECT * FROM email_messages WHERE message_id = ?", (message_id,))
        return _email_from_row(row) if row else None

    def recent_emails(self, limit: int = 50) -> list[EmailRecord]:
        rows = self._fetchall(
            "SELECT * FROM email_messages ORDER BY email_date DESC, id DESC LIMIT ?", (limit,)
        )
        return [_email_from_row(row) for row in rows]

    # Job applications

    def insert_application(self, record: ApplicationRecord) -> ApplicationRecord:
        now = self._clock()
        values = {
            "company": record.company,
            "position": record.position,
            "location": record.location,
            "application_date": record.application_date.isoformat()
            if record.application_date
            else None,
            "status": ApplicationStatus(record.status).value,
            "job_url": record.job_url,
            "description": record.description,
            "salary_range": record.salary_range,
            "contact_person": record.contact_person,
            "contact_email": record.contact_email,
            "notes": record.notes,
            "created_at": _format_datetime(record.created_at or now),
            "updated_at": _format_datetime(record.updated_at or now),
        }
        columns = ", ".join(_APPLICATION_COLUMNS)
        placeholders = ", ".join(f":{name}" for name in _APPLICATION_COLUMNS)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"INSERT INTO job_applications ({columns}) VALUES ({placeholders})", values
            )
            row = conn.execute(
                "SELECT * FROM job_applications WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
        return _application_from_row(row)

    def update_application_status(
        self,
        application_id: int,
        status: ApplicationStatus,
        *,
        updated_at: datetime | None = None,
    ) -> bool:
        timestamp = _format_datetime(updated_at or self._clock())
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE job_applications SET status = ?, updated_at = ? WHERE id = ?",
                (ApplicationStatus(status).value, timestamp, application_id),
            )
        return cursor.rowcount > 0

    def get_application(self, application_id: int) -> ApplicationRecord | None:
        row = self._fetchone("SELECT * FROM job_applications WHERE id = ?", (application_id,))
        return _application_from_row(row) if row else None

    def list_applications(self) -> list[ApplicationRecord]:
        rows = self._fetchall("SELECT * FROM job_applications ORDER BY created_at DESC, id DESC")
        return [_application_from_row(row) for row in rows]

    def find_applications_by_contact(self, fragment: str) -> list[ApplicationRecord]:
        """Return applications whose contact email contains ``fragment``.

        Most recently updated first, ties broken by the newest id.
        """

        if not fragment:
            return []
        pattern = "%" + _escape_like(fragment.lower()) + "%"
        rows = self._fetchall(
            """
            SELECT * FROM job_applications
            WHERE lower(contact_email) LIKE ? ESCAPE '\\'
            ORDER BY updated_at DESC, id DESC
            """,
            (pattern,),
        )
        return [_application_from_row(row) for row in rows]

    def counts(self) -> dict[str, int]:
        """Return row counts used by status reporting."""

        with self._lock:
            try:
                applications = self._conn.execute(
                    "SELECT COUNT(*) FROM job_applications"
                ).fetchone()[0]
                emails = self._conn.execute("SELECT COUNT(*) FROM email_messages").fetchone()[0]
                unprocessed = self._conn.execute(
                    "SELECT COUNT(*) FROM email_messages WHERE processed = 0"
                ).fetchone()[0]
            except sqlite3.Error as exc:
                raise PersistenceError(f"Failed to count rows: {exc}") from exc
        return {
            "applications": int(applications),
            "emails": int(emails),
            "unprocessed_emails": int(unprocessed),
        }

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as exc:
                raise PersistenceError(str(exc)) from exc

    def _fetchone(self, sql: str, params: tuple[Any, ...]) -> sqlite3.Row | None:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchone()
            except sqlite3.Error as exc:
                raise PersistenceError(str(exc)) from exc

    def _fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return list(self._conn.execute(sql, params).fetchall())
            except sqlite3.Error as exc:
                raise PersistenceError(str(exc)) from exc


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _format_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        LOGGER.debug("Unparseable timestamp in store: %r", value)
        return None
    # SQLite CURRENT_TIMESTAMP values carry no offset and are UTC.
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        LOGGER.debug("Unparseable date in store: %r", value)
        return None


def _email_from_row(row: sqlite3.Row) -> EmailRecord:
    return EmailRecord(
        id=row["id"],
        message_id=row["message_id"],
        sender=row["sender"] or "",
        recipient=row["recipient"] or "",
        subject=row["subject"] or "",
        body=row["body"] or "",
        email_date=_parse_datetime(row["email_date"]),
        category=row["email_type"],
        processed=bool(row["processed"]),
    )


def _application_from_row(row: sqlite3.Row) -> ApplicationRecord:
    return ApplicationRecord(
        id=row["id"],
        company=row["company"],
        position=row["position"],
        location=row["location"],
        application_date=_parse_date(row["application_date"]),
        status=ApplicationStatus(row["status"]),
        job_url=row["job_url"],
        description=row["description"],
        salary_range=row["salary_range"],
        contact_person=row["contact_person"],
        contact_email=row["contact_email"],
        notes=row["notes"],
        created_at=_parse_datetime(row["created_at"]),
        updated_at=_parse_datetime(row["updated_at"]),
    )


__all__ = ["ApplicationStore", "MEMORY_DATABASE", "SCHEMA"]
