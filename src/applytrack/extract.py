"""Best-effort heuristics for deriving application details from a message."""

from __future__ import annotations

from email.utils import parseaddr
from typing import Protocol

POSITION_KEYWORDS = ("engineer", "developer", "manager", "analyst", "designer")
UNKNOWN_POSITION = "Unknown Position"
UNKNOWN_COMPANY = "Unknown Company"


def sender_address(raw: str) -> str:
    """Return the bare address from a From header value."""

    _, address = parseaddr(raw or "")
    if address:
        return address.strip()
    return (raw or "").strip()


def sender_domain(raw: str) -> str | None:
    """Return the lowercased domain after ``@`` in the sender, if any."""

    address = sender_address(raw)
    if "@" not in address:
        return None
    domain = address.rsplit("@", 1)[1].strip().strip(">").lower()
    return domain or None


class DetailsExtractor(Protocol):
    """Strategy deriving company and position for auto-created applications."""

    def company(self, domain: str | None, subject: str, body: str) -> str: ...

    def position(self, subject: str, body: str) -> str: ...


class HeuristicExtractor:
    """Company from the sender domain, position from keywords in the subject.

    Positions are returned lowercased, as a window of words around the first
    keyword hit.
    """

    def __init__(self, keywords: tuple[str, ...] = POSITION_KEYWORDS, window: int = 2) -> None:
        self._keywords = tuple(keyword.lower() for keyword in keywords)
        self._window = window

    def company(self, domain: str | None, subject: str = "", body: str = "") -> str:
        return company_from_domain(domain)

    def position(self, subject: str, body: str = "") -> str:
        words = (subject or "").lower().split()
        for index, word in enumerate(words):
            if any(keyword in word for keyword in self._keywords):
                start = max(0, index - self._window)
                return " ".join(words[start : index + self._window + 1])
        return UNKNOWN_POSITION


def company_from_domain(domain: str | None) -> str:
    if not domain:
        return UNKNOWN_COMPANY
    label = domain.split(".", 1)[0]
    if not label:
        return UNKNOWN_COMPANY
    return label[:1].upper() + label[1:]


__all__ = [
    "DetailsExtractor",
    "HeuristicExtractor",
    "POSITION_KEYWORDS",
    "UNKNOWN_COMPANY",
    "UNKNOWN_POSITION",
    "company_from_domain",
    "sender_address",
    "sender_domain",
]
