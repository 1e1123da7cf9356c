"""Scan pipeline: fetch, classify, correlate and reconcile messages."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Protocol

from .classifier import Classifier
from .config import MailboxConfig
from .errors import MessageParseError, PersistenceError
from .extract import sender_domain
from .mailbox import MailboxClient
from .matcher import RecordMatcher
from .reconcile import ReconcileOutcome, ReconciliationEngine
from .types import EmailRecord

LOGGER = logging.getLogger(__name__)


class StoredEmails(Protocol):
    def get_email(self, email_id: int) -> EmailRecord | None: ...


@dataclass
class PipelineMetrics:
    """Lightweight counters accumulated across cycles."""

    cycles: int = 0
    failed_cycles: int = 0
    fetched: int = 0
    parse_errors: int = 0
    reconcile_errors: int = 0
    created: int = 0
    updated: int = 0
    category_counts: dict[str, int] = field(default_factory=dict)

    def record(self, outcome: ReconcileOutcome) -> None:
        self.category_counts[outcome.category] = self.category_counts.get(outcome.category, 0) + 1
        if outcome.action == "created":
            self.created += 1
        elif outcome.action == "updated":
            self.updated += 1
        elif outcome.action == "error":
            self.reconcile_errors += 1


@dataclass
class CycleResult:
    """Outcome of one scan cycle."""

    started_at: datetime
    outcomes: list[ReconcileOutcome] = field(default_factory=list)
    skipped: int = 0

    @property
    def processed(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.processed)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScanPipeline:
    """Runs scan cycles and manual reprocessing against one mailbox and store."""

    def __init__(
        self,
        *,
        mailbox_config: MailboxConfig,
        classifier: Classifier,
        matcher: RecordMatcher,
        engine: ReconciliationEngine,
        store: StoredEmails,
        mailbox_factory: Callable[[MailboxConfig], MailboxClient] = MailboxClient,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._mailbox_config = mailbox_config
        self._classifier = classifier
        self._matcher = matcher
        self._engine = engine
        self._store = store
        self._mailbox_factory = mailbox_factory
        self._clock = clock
        self.metrics = PipelineMetrics()

    @property
    def enabled(self) -> bool:
        return self._mailbox_config.enabled

    def run_cycle(self) -> CycleResult:
        """Fetch unread messages from the trailing window and reconcile each.

        Connection-level errors propagate and abort the cycle; per-message
        parse and persistence failures are logged and skipped.
        """

        started = self._clock()
        since = started - timedelta(days=self._mailbox_config.since_days)
        result = CycleResult(started_at=started)
        self.metrics.cycles += 1
        try:
            with self._mailbox_factory(self._mailbox_config) as mailbox:
                for ref in mailbox.list_candidates(since):
                    try:
                        email = mailbox.fetch_and_parse(ref)
                    except MessageParseError as exc:
                        LOGGER.warning("Skipping message uid=%s: %s", ref.uid, exc)
                        self.metrics.parse_errors += 1
                        result.skipped += 1
                        continue
                    self.metrics.fetched += 1
                    result.outcomes.append(self.process(email))
        except Exception:
            self.metrics.failed_cycles += 1
            raise

        LOGGER.info(
            "Scan cycle finished: %s message(s), %s reconciled, %s skipped",
            len(result.outcomes),
            result.processed,
            result.skipped,
        )
        return result

    def process(self, email: EmailRecord) -> ReconcileOutcome:
        """Classify, correlate and reconcile one message.

        Failures are contained here and reported as an ``error`` outcome so the
        rest of the cycle continues.
        """

        category = self._classifier.classify(email)
        with self._engine.locks.hold(sender_domain(email.sender)):
            try:
                matched = self._matcher.find_correlated(email)
                outcome = self._engine.reconcile(email, category, matched)
            except PersistenceError as exc:
                LOGGER.error("Application lookup failed for %s: %s", email.message_id, exc)
                outcome = ReconcileOutcome(action="error", category=category)
            except Exception:
                LOGGER.exception("Processing of %s (%s) failed", email.message_id, category)
                outcome = ReconcileOutcome(action="error", category=category)
        self.metrics.record(outcome)
        LOGGER.debug(
            "Message %s from %s classified as %s -> %s",
            email.message_id,
            email.sender,
            category,
            outcome.action,
        )
        return outcome

    def reprocess(self, email_id: int) -> ReconcileOutcome | None:
        """Re-run classification and reconciliation for a stored message.

        Returns None when no message with ``email_id`` exists.
        """

        email = self._store.get_email(email_id)
        if email is None:
            LOGGER.warning("Stored message id=%s not found", email_id)
            return None
        LOGGER.info("Reprocessing stored message id=%s (%s)", email_id, email.message_id)
        return self.process(email)


__all__ = ["CycleResult", "PipelineMetrics", "ScanPipeline"]
