"""Turn classified messages into application creates and status updates."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from .errors import PersistenceError
from .extract import DetailsExtractor, HeuristicExtractor, sender_address, sender_domain
from .rules import APPLICATION_CONFIRMATION, INTERVIEW_INVITATION, JOB_OFFER, OTHER, REJECTION
from .types import ApplicationRecord, ApplicationStatus, EmailRecord

LOGGER = logging.getLogger(__name__)

AUTO_CREATED_NOTE = "Auto-created from email"

STATUS_TRANSITIONS: dict[str, ApplicationStatus] = {
    INTERVIEW_INVITATION: ApplicationStatus.INTERVIEW,
    JOB_OFFER: ApplicationStatus.OFFER,
    REJECTION: ApplicationStatus.NOT_CHOSEN,
}


class ReconcileStore(Protocol):
    def upsert_email(self, email: EmailRecord) -> int: ...

    def mark_email_processed(self, message_id: str, processed: bool = True) -> bool: ...

    def insert_application(self, record: ApplicationRecord) -> ApplicationRecord: ...

    def update_application_status(
        self,
        application_id: int,
        status: ApplicationStatus,
        *,
        updated_at: datetime | None = None,
    ) -> bool: ...


@dataclass(frozen=True)
class ReconcileOutcome:
    """Result of reconciling one message."""

    action: str  # "stored" | "created" | "updated" | "unchanged" | "error"
    category: str
    email_id: int | None = None
    application_id: int | None = None
    status: ApplicationStatus | None = None

    @property
    def processed(self) -> bool:
        return self.action in ("created", "updated", "unchanged")


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class KeyedLocks:
    """Hands out one re-entrant lock per key.

    A key's lock exists only while some thread holds or waits for it.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _LockEntry] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, key: str | None) -> Iterator[None]:
        name = key or ""
        with self._guard:
            entry = self._entries.get(name)
            if entry is None:
                entry = self._entries[name] = _LockEntry()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[name]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationEngine:
    """Persists messages and applies the category-driven state machine."""

    def __init__(
        self,
        store: ReconcileStore,
        *,
        extractor: DetailsExtractor | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._extractor = extractor or HeuristicExtractor()
        self._clock = clock
        self.locks = KeyedLocks()

    def reconcile(
        self,
        email: EmailRecord,
        category: str,
        matched: ApplicationRecord | None,
    ) -> ReconcileOutcome:
        """Store ``email`` and create or update the correlated application.

        Persistence failures are logged and reported as an ``error`` outcome;
        the message then stays unprocessed for manual reprocessing.
        """

        try:
            email_id = self._store.upsert_email(email.with_outcome(category, processed=False))
        except PersistenceError as exc:
            LOGGER.error("Failed to store message %s: %s", email.message_id, exc)
            return ReconcileOutcome(action="error", category=category)

        try:
            outcome = self._apply(email, category, matched, email_id)
            if outcome.processed:
                self._store.mark_email_processed(email.message_id, True)
        except PersistenceError as exc:
            LOGGER.error(
                "Reconciliation of %s (%s) failed; left unprocessed: %s",
                email.message_id,
                category,
                exc,
            )
            return ReconcileOutcome(action="error", category=category, email_id=email_id)
        return outcome

    def _apply(
        self,
        email: EmailRecord,
        category: str,
        matched: ApplicationRecord | None,
        email_id: int,
    ) -> ReconcileOutcome:
        if category == OTHER:
            return ReconcileOutcome(action="stored", category=category, email_id=email_id)

        if matched is not None:
            return self._update_existing(email, category, matched, email_id)

        if category == APPLICATION_CONFIRMATION:
            created = self._create_application(email)
            LOGGER.info(
                "Created application id=%s for %s (%s) from %s",
                created.id,
                created.company,
                created.position,
                email.message_id,
            )
            return ReconcileOutcome(
                action="created",
                category=category,
                email_id=email_id,
                application_id=created.id,
                status=created.status,
            )

        LOGGER.debug("No application correlates with %s (%s)", email.message_id, category)
        return ReconcileOutcome(action="stored", category=category, email_id=email_id)

    def _update_existing(
        self,
        email: EmailRecord,
        category: str,
        matched: ApplicationRecord,
        email_id: int,
    ) -> ReconcileOutcome:
        new_status = STATUS_TRANSITIONS.get(category)
        if new_status is None or matched.id is None:
            return ReconcileOutcome(
                action="unchanged",
                category=category,
                email_id=email_id,
                application_id=matched.id,
                status=matched.status,
            )
        self._store.update_application_status(matched.id, new_status, updated_at=self._clock())
        LOGGER.info(
            "Application id=%s (%s) %s -> %s after %s",
            matched.id,
            matched.company,
            ApplicationStatus(matched.status).value,
            new_status.value,
            email.message_id,
        )
        return ReconcileOutcome(
            action="updated",
            category=category,
            email_id=email_id,
            application_id=matched.id,
            status=new_status,
        )

    def _create_application(self, email: EmailRecord) -> ApplicationRecord:
        now = self._clock()
        record = ApplicationRecord(
            company=self._extractor.company(sender_domain(email.sender), email.subject, email.body),
            position=self._extractor.position(email.subject, email.body),
            status=ApplicationStatus.APPLIED,
            application_date=now.date(),
            contact_email=sender_address(email.sender),
            notes=AUTO_CREATED_NOTE,
            created_at=now,
            updated_at=now,
        )
        return self._store.insert_application(record)


__all__ = [
    "AUTO_CREATED_NOTE",
    "KeyedLocks",
    "ReconcileOutcome",
    "ReconciliationEngine",
    "STATUS_TRANSITIONS",
]
