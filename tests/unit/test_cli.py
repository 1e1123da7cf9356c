from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

import pytest
from typer.testing import CliRunner

from applytrack.cli import app
from applytrack.errors import PersistenceError
from applytrack.matcher import RecordMatcher
from applytrack.store import ApplicationStore
from applytrack.types import ApplicationRecord, ApplicationStatus, EmailRecord

runner = CliRunner()


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


def _write_config(tmp_path: Path, *, mailbox: str = "") -> Path:
    config = tmp_path / "config.yaml"
    config.write_text(
        "\n".join(
            [
                f"root_dir: {tmp_path / 'state'}",
                "scan:",
                "  interval_minutes: 15",
                mailbox,
                "",
            ]
        ),
        encoding="utf-8",
    )
    return config


def _sample_message(path: Path, *, body: str, sender: str = "careers@acme.com") -> None:
    contents = (
        f"From: Acme Careers <{sender}>\n"
        "To: me@example.org\n"
        "Subject: Backend Engineer application\n"
        "Message-ID: <sample-1@acme.com>\n"
        "\n"
        f"{body}\n"
    )
    path.write_text(contents, encoding="utf-8")


def test_status_reports_configuration(tmp_path):
    config_path = _write_config(tmp_path)

    result = runner.invoke(app, ["-c", str(config_path), "status"])

    assert result.exit_code == 0
    assert f"Config path: {config_path}" in result.stdout
    assert str(tmp_path / "state" / "jobs.db") in result.stdout
    assert "Mailbox: ○ Disabled" in result.stdout
    assert "Scan interval: 15 minute(s)" in result.stdout
    assert "Applications: 0" in result.stdout


def test_status_lists_applications(tmp_path):
    config_path = _write_config(tmp_path)
    with ApplicationStore(tmp_path / "state" / "jobs.db") as store:
        store.insert_application(
            ApplicationRecord(company="Acme", position="Dev", status=ApplicationStatus.OFFER)
        )

    result = runner.invoke(app, ["-c", str(config_path), "status"])

    assert result.exit_code == 0
    assert "Applications: 1" in result.stdout
    assert "Acme | Dev | offer" in result.stdout


def test_classify_outputs_category(tmp_path):
    config_path = _write_config(tmp_path)
    message_path = tmp_path / "sample.eml"
    _sample_message(message_path, body="Thank you for your application!")

    result = runner.invoke(app, ["-c", str(config_path), "classify", str(message_path)])

    assert result.exit_code == 0
    assert "Category: application_confirmation" in result.stdout
    assert "Sender domain: acme.com" in result.stdout
    assert "Application: none" in result.stdout


def test_classify_shows_pending_transition_without_writing(tmp_path):
    config_path = _write_config(tmp_path)
    db_path = tmp_path / "state" / "jobs.db"
    with ApplicationStore(db_path) as store:
        record = store.insert_application(
            ApplicationRecord(company="Acme", position="Dev", contact_email="hr@acme.com")
        )
    message_path = tmp_path / "sample.eml"
    _sample_message(message_path, body="Sadly the position has been filled.")

    result = runner.invoke(app, ["-c", str(config_path), "classify", str(message_path)])

    assert result.exit_code == 0
    assert "Category: rejection" in result.stdout
    assert f"Application: {record.id} Acme (Dev) applied -> not_chosen" in result.stdout
    with ApplicationStore(db_path) as store:
        assert store.get_application(record.id).status is ApplicationStatus.APPLIED
        assert store.counts()["emails"] == 0


def test_classify_missing_file_fails(tmp_path):
    config_path = _write_config(tmp_path)

    result = runner.invoke(
        app, ["-c", str(config_path), "classify", str(tmp_path / "missing.eml")]
    )

    assert result.exit_code == 1


def test_scan_requires_enabled_mailbox(tmp_path):
    config_path = _write_config(tmp_path)

    result = runner.invoke(app, ["-c", str(config_path), "scan"])

    assert result.exit_code == 1
    assert "disabled" in result.output


def test_daemon_requires_enabled_mailbox(tmp_path):
    config_path = _write_config(tmp_path)

    result = runner.invoke(app, ["-c", str(config_path), "daemon"])

    assert result.exit_code == 1


def test_reprocess_applies_stored_message(tmp_path):
    config_path = _write_config(tmp_path)
    db_path = tmp_path / "state" / "jobs.db"
    with ApplicationStore(db_path) as store:
        record = store.insert_application(
            ApplicationRecord(company="Acme", position="Dev", contact_email="hr@acme.com")
        )
        email_id = store.upsert_email(
            EmailRecord(
                message_id="<late@acme.com>",
                sender="Recruiting <recruiting@acme.com>",
                recipient="me@example.org",
                subject="Next steps",
                body="We would like to invite you to an onsite.",
                category="other",
            )
        )

    result = runner.invoke(app, ["-c", str(config_path), "reprocess", str(email_id)])

    assert result.exit_code == 0
    assert f"Email {email_id}: interview_invitation -> updated" in result.stdout
    assert f"Application {record.id}: interview" in result.stdout
    with ApplicationStore(db_path) as store:
        assert store.get_email(email_id).processed is True


def test_reprocess_unknown_email_fails(tmp_path):
    config_path = _write_config(tmp_path)

    result = runner.invoke(app, ["-c", str(config_path), "reprocess", "99"])

    assert result.exit_code == 1
    assert "No stored email with id 99" in result.output


def test_classify_reports_store_errors(tmp_path, monkeypatch):
    config_path = _write_config(tmp_path)
    message_path = tmp_path / "sample.eml"
    _sample_message(message_path, body="Thank you for your application!")

    def locked(_self, _email):
        raise PersistenceError("database is locked")

    monkeypatch.setattr(RecordMatcher, "find_correlated", locked)

    result = runner.invoke(app, ["-c", str(config_path), "classify", str(message_path)])

    assert result.exit_code == 1
    assert "Store error: database is locked" in result.output


def test_emails_lists_newest_first(tmp_path):
    config_path = _write_config(tmp_path)
    with ApplicationStore(tmp_path / "state" / "jobs.db") as store:
        older = store.upsert_email(
            EmailRecord(
                message_id="<old@acme.com>",
                sender="careers@acme.com",
                recipient="me@example.org",
                subject="Application received",
                body="",
                email_date=datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc),
                category="application_confirmation",
                processed=True,
            )
        )
        newer = store.upsert_email(
            EmailRecord(
                message_id="<new@digest.io>",
                sender="news@digest.io",
                recipient="me@example.org",
                subject="Weekly roundup",
                body="",
                email_date=datetime(2024, 3, 2, 9, 0, tzinfo=timezone.utc),
                category="other",
            )
        )

    result = runner.invoke(app, ["-c", str(config_path), "emails"])

    assert result.exit_code == 0
    lines = result.stdout.splitlines()
    assert lines == [
        f"○ {newer}: 2024-03-02 09:00 | other | news@digest.io | Weekly roundup",
        f"● {older}: 2024-03-01 09:00 | application_confirmation | careers@acme.com "
        "| Application received",
    ]

    limited = runner.invoke(app, ["-c", str(config_path), "emails", "--limit", "1"])

    assert limited.exit_code == 0
    assert len(limited.stdout.splitlines()) == 1


def test_emails_without_stored_messages(tmp_path):
    config_path = _write_config(tmp_path)

    result = runner.invoke(app, ["-c", str(config_path), "emails"])

    assert result.exit_code == 0
    assert "No stored emails." in result.stdout
