"""Exception hierarchy shared by the scanning pipeline."""

from __future__ import annotations


class ConfigError(ValueError):
    """Raised when configuration is invalid or missing."""


class MailboxError(RuntimeError):
    """Base class for mailbox failures."""


class MailboxConnectionError(MailboxError):
    """Raised when the mailbox is unreachable or rejects the session.

    Aborts the current scan cycle; the next scheduled tick starts a fresh one.
    """


class MailboxDisabledError(MailboxError):
    """Raised when a connection is requested while the mailbox is disabled."""


class MessageParseError(MailboxError):
    """Raised when a single message cannot be fetched or parsed."""

    def __init__(self, message: str, *, uid: str | None = None) -> None:
        super().__init__(message)
        self.uid = uid


class PersistenceError(RuntimeError):
    """Raised when the application store fails to read or write."""


__all__ = [
    "ConfigError",
    "MailboxError",
    "MailboxConnectionError",
    "MailboxDisabledError",
    "MessageParseError",
    "PersistenceError",
]
