"""Correlate inbound messages with stored applications."""

from __future__ import annotations

import logging
from typing import Protocol

from .extract import sender_domain
from .types import ApplicationRecord, EmailRecord

LOGGER = logging.getLogger(__name__)


class ApplicationLookup(Protocol):
    def find_applications_by_contact(self, fragment: str) -> list[ApplicationRecord]: ...


class RecordMatcher:
    """Finds the application whose contact email shares the sender's domain.

    When several applications share the domain, the most recently updated one
    wins and ties go to the highest id.
    """

    def __init__(self, store: ApplicationLookup) -> None:
        self._store = store

    def find_correlated(self, email: EmailRecord) -> ApplicationRecord | None:
        domain = sender_domain(email.sender)
        if not domain:
            LOGGER.debug("No sender domain for %s; nothing to correlate", email.message_id)
            return None
        candidates = self._store.find_applications_by_contact(domain)
        if not candidates:
            return None
        chosen = max(candidates, key=_recency_key)
        if len(candidates) > 1:
            LOGGER.info(
                "%s applications match domain %s; using most recently updated id=%s",
                len(candidates),
                domain,
                chosen.id,
            )
        return chosen


def _recency_key(record: ApplicationRecord) -> tuple[float, int]:
    updated = record.updated_at or record.created_at
    return (updated.timestamp() if updated else 0.0, record.id or 0)


__all__ = ["ApplicationLookup", "RecordMatcher"]
