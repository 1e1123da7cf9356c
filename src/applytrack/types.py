"""Core data structures used throughout applytrack."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum


class ApplicationStatus(str, Enum):
    """Closed set of application states."""

    APPLIED = "applied"
    INTERVIEW = "interview"
    OFFER = "offer"
    NOT_CHOSEN = "not_chosen"


@dataclass(frozen=True)
class MessageRef:
    """Reference to a candidate message on the mail server."""

    uid: str
    folder: str = "INBOX"


@dataclass(frozen=True)
class EmailRecord:
    """A fetched (or stored) email message."""

    message_id: str
    sender: str
    recipient: str
    subject: str
    body: str
    email_date: datetime | None = None
    category: str | None = None
    processed: bool = False
    id: int | None = None

    def with_outcome(self, category: str, processed: bool) -> EmailRecord:
        return replace(self, category=category, processed=processed)


@dataclass
class ApplicationRecord:
    """A tracked job application."""

    company: str
    position: str
    status: ApplicationStatus = ApplicationStatus.APPLIED
    application_date: date | None = None
    location: str | None = None
    job_url: str | None = None
    description: str | None = None
    salary_range: str | None = None
    contact_person: str | None = None
    contact_email: str | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    id: int | None = None


__all__ = [
    "ApplicationRecord",
    "ApplicationStatus",
    "EmailRecord",
    "MessageRef",
]
