"""IMAP client that lists and fetches unread messages."""

from __future__ import annotations

import imaplib
import logging
from collections.abc import Callable, Iterator
from datetime import datetime
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import parsedate_to_datetime

from bs4 import BeautifulSoup

from .config import MailboxConfig
from .errors import MailboxConnectionError, MailboxDisabledError, MessageParseError
from .types import EmailRecord, MessageRef

LOGGER = logging.getLogger(__name__)

ConnectionFactory = Callable[[MailboxConfig], imaplib.IMAP4]

NON_TEXT_TAGS = ["style", "script", "head"]


def open_connection(config: MailboxConfig) -> imaplib.IMAP4:
    """Open a TLS (or plain, when ``tls`` is false) IMAP connection."""

    if config.tls:
        return imaplib.IMAP4_SSL(config.host, config.port)
    return imaplib.IMAP4(config.host, config.port)


class MailboxClient:
    """Session-scoped access to one IMAP folder."""

    def __init__(
        self,
        config: MailboxConfig,
        *,
        connection_factory: ConnectionFactory = open_connection,
    ) -> None:
        self._config = config
        self._connection_factory = connection_factory
        self._conn: imaplib.IMAP4 | None = None

    @property
    def connected(self) -> bool:
        return self._conn is not None

    def connect(self) -> None:
        """Connect and authenticate; raises MailboxConnectionError on failure."""

        if not self._config.enabled:
            raise MailboxDisabledError("Mailbox scanning is disabled in configuration.")
        LOGGER.info(
            "Connecting to %s:%s as %s", self._config.host, self._config.port, self._config.user
        )
        conn: imaplib.IMAP4 | None = None
        try:
            conn = self._connection_factory(self._config)
            conn.login(self._config.user, self._config.password)
        except (OSError, imaplib.IMAP4.error) as exc:
            if conn is not None:
                _safe_logout(conn)
            raise MailboxConnectionError(
                f"Cannot connect to {self._config.host}:{self._config.port}: {exc}"
            ) from exc
        self._conn = conn
        LOGGER.debug("IMAP session established")

    def disconnect(self) -> None:
        if self._conn is not None:
            _safe_logout(self._conn)
            self._conn = None
            LOGGER.debug("IMAP session closed")

    def __enter__(self) -> MailboxClient:
        self.connect()
        return self

    def __exit__(self, *_exc: object) -> None:
        self.disconnect()

    def list_candidates(self, since: datetime) -> Iterator[MessageRef]:
        """Yield references to unread messages received on or after ``since``."""

        conn = self._require_connection()
        folder = self._config.folder
        criteria = f"(UNSEEN SINCE {since.strftime('%d-%b-%Y')})"
        try:
            status, _ = conn.select(_quote_folder(folder), readonly=False)
            if status != "OK":
                raise MailboxConnectionError(f"Cannot select folder {folder!r}")
            status, data = conn.uid("SEARCH", None, criteria)
        except (OSError, imaplib.IMAP4.error) as exc:
            raise MailboxConnectionError(f"Search in {folder!r} failed: {exc}") from exc
        if status != "OK":
            raise MailboxConnectionError(f"Search in {folder!r} returned {status}")

        uids = data[0].split() if data and data[0] else []
        LOGGER.info("Found %s unread message(s) in %s since %s", len(uids), folder, since.date())
        for uid in uids:
            yield MessageRef(uid=uid.decode("ascii"), folder=folder)

    def fetch_and_parse(self, ref: MessageRef) -> EmailRecord:
        """Fetch one message (marking it seen) and parse it."""

        raw = self._fetch_raw(ref)
        fallback_id = f"<uid-{ref.uid}.{ref.folder}@{self._config.host}>"
        try:
            return parse_message(raw, fallback_message_id=fallback_id)
        except MessageParseError as exc:
            exc.uid = ref.uid
            raise

    def _fetch_raw(self, ref: MessageRef) -> bytes:
        conn = self._require_connection()
        try:
            status, data = conn.uid("FETCH", ref.uid, "(BODY[])")
        except imaplib.IMAP4.abort as exc:
            raise MailboxConnectionError(f"Connection lost fetching uid={ref.uid}: {exc}") from exc
        except OSError as exc:
            raise MailboxConnectionError(f"Connection lost fetching uid={ref.uid}: {exc}") from exc
        except imaplib.IMAP4.error as exc:
            raise MessageParseError(f"Fetch failed for uid={ref.uid}: {exc}", uid=ref.uid) from exc
        if status != "OK":
            raise MessageParseError(f"Fetch returned {status} for uid={ref.uid}", uid=ref.uid)
        for part in data or []:
            if isinstance(part, tuple) and len(part) > 1 and isinstance(part[1], bytes):
                return part[1]
        raise MessageParseError(f"No message body returned for uid={ref.uid}", uid=ref.uid)

    def _require_connection(self) -> imaplib.IMAP4:
        if self._conn is None:
            raise MailboxConnectionError("Not connected to IMAP server")
        return self._conn


def parse_message(raw: bytes, *, fallback_message_id: str | None = None) -> EmailRecord:
    """Parse RFC 822 bytes into an EmailRecord.

    Raises MessageParseError when the bytes cannot be parsed or carry neither a
    Message-ID nor a fallback identifier.
    """

    try:
        message = BytesParser(policy=policy.default).parsebytes(raw)
        message_id = _header(message, "Message-ID") or fallback_message_id
        if not message_id:
            raise MessageParseError("Message has no Message-ID header")
        return EmailRecord(
            message_id=message_id,
            sender=_header(message, "From"),
            recipient=_header(message, "To"),
            subject=_header(message, "Subject"),
            body=extract_body_text(message),
            email_date=_parse_date(_header(message, "Date")),
        )
    except MessageParseError:
        raise
    except Exception as exc:
        raise MessageParseError(f"Cannot parse message: {exc}") from exc


def extract_body_text(message: EmailMessage) -> str:
    """Return the plain-text body, falling back to tag-stripped HTML."""

    part = message.get_body(preferencelist=("plain",))
    if part is not None:
        return _part_text(part).strip()
    part = message.get_body(preferencelist=("html",))
    if part is not None:
        return html_to_text(_part_text(part))
    return ""


def html_to_text(markup: str) -> str:
    """Return the visible text of an HTML part, one block per line."""

    soup = BeautifulSoup(markup, "lxml")
    for tag in soup.find_all(NON_TEXT_TAGS):
        tag.decompose()
    text = soup.get_text("\n", strip=True)
    lines = (" ".join(line.split()) for line in text.splitlines())
    return "\n".join(line for line in lines if line)


def _part_text(part: EmailMessage) -> str:
    try:
        return part.get_content()
    except (LookupError, UnicodeDecodeError):
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")


def _header(message: EmailMessage, name: str) -> str:
    value = message.get(name)
    if value is None:
        return ""
    return " ".join(str(value).split())


def _parse_date(value: str) -> datetime | None:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        LOGGER.debug("Unparseable Date header: %r", value)
        return None


def _quote_folder(folder: str) -> str:
    if " " in folder and not folder.startswith('"'):
        return f'"{folder}"'
    return folder


def _safe_logout(conn: imaplib.IMAP4) -> None:
    try:
        conn.logout()
    except (OSError, imaplib.IMAP4.error):
        LOGGER.debug("IMAP logout failed", exc_info=True)


__all__ = [
    "ConnectionFactory",
    "MailboxClient",
    "extract_body_text",
    "html_to_text",
    "open_connection",
    "parse_message",
]
