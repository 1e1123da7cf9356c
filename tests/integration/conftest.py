from __future__ import annotations

import imaplib
from pathlib import Path

import pytest


class FakeIMAPServer:
    """In-memory IMAP mailbox speaking the subset of imaplib used by the scanner.

    Fetching a message marks it seen, so a second search no longer returns it.
    """

    def __init__(self) -> None:
        self.messages: dict[str, bytes] = {}
        self.seen: set[str] = set()
        self.logins: list[str] = []
        self.searches: list[str] = []
        self._next_uid = 100

    def deliver(self, raw: bytes) -> str:
        self._next_uid += 1
        uid = str(self._next_uid)
        self.messages[uid] = raw
        return uid

    def connect(self, *_args, **_kwargs) -> FakeIMAPConnection:
        return FakeIMAPConnection(self)


class FakeIMAPConnection:
    def __init__(self, server: FakeIMAPServer) -> None:
        self._server = server

    def login(self, user: str, _password: str):
        self._server.logins.append(user)
        return "OK", [b"LOGIN completed"]

    def select(self, _mailbox: str, readonly: bool = False):
        return "OK", [str(len(self._server.messages)).encode()]

    def uid(self, command: str, *args):
        if command == "SEARCH":
            self._server.searches.append(args[-1])
            unseen = [uid for uid in self._server.messages if uid not in self._server.seen]
            return "OK", [" ".join(unseen).encode()]
        if command == "FETCH":
            uid = args[0]
            self._server.seen.add(uid)
            return "OK", [(f"{uid} (UID {uid} BODY[]".encode(), self._server.messages[uid]), b")"]
        raise AssertionError(f"unsupported command {command}")

    def logout(self):
        return "BYE", [b"LOGOUT completed"]


def build_message(
    *,
    message_id: str,
    sender: str,
    subject: str,
    body: str,
    date: str = "Fri, 01 Mar 2024 09:00:00 +0000",
) -> bytes:
    """Return RFC 822 bytes for a simple plain-text message."""

    return (
        f"From: {sender}\r\n"
        "To: me@example.org\r\n"
        f"Subject: {subject}\r\n"
        f"Message-ID: {message_id}\r\n"
        f"Date: {date}\r\n"
        "Content-Type: text/plain; charset=utf-8\r\n"
        "\r\n"
        f"{body}\r\n"
    ).encode("utf-8")


@pytest.fixture
def make_message():
    return build_message


@pytest.fixture
def imap_server(monkeypatch) -> FakeIMAPServer:
    server = FakeIMAPServer()
    monkeypatch.setattr(imaplib, "IMAP4_SSL", server.connect)
    return server


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(
        "\n".join(
            [
                f"root_dir: {tmp_path / 'state'}",
                "mailbox:",
                "  enabled: true",
                "  host: imap.example.org",
                "  user: me@example.org",
                "  password: secret",
                "scan:",
                "  interval_minutes: 1",
                "",
            ]
        ),
        encoding="utf-8",
    )
    return path


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Automatically mark tests in this package as integration."""

    package_root = Path(__file__).resolve().parent
    integration_mark = pytest.mark.integration
    for item in items:
        try:
            path = Path(item.fspath).resolve()
        except OSError:
            continue
        if package_root in path.parents:
            item.add_marker(integration_mark)
