from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from applytrack.config import (
    DEFAULT_INTERVAL_MINUTES,
    DEFAULT_ROOT_DIR,
    LoggingConfig,
    MailboxConfig,
    ScanConfig,
    load_config,
    resolve_config_path,
)


def _write_config(tmp_path: Path, content: str) -> Path:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(textwrap.dedent(content), encoding="utf-8")
    return config_path


def test_load_config_success(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path,
        f"""
        root_dir: {tmp_path}/state
        database: data/jobs.sqlite
        rules_file: rules.yaml
        mailbox:
          enabled: true
          host: imap.example.com
          port: 1993
          tls: false
          user: me@example.com
          password: secret
          folder: Job Search
          since_days: 3
        scan:
          interval_minutes: 10
        logging:
          level: DEBUG
          debug_file: true
        """,
    )

    config = load_config(config_path)

    assert config.root_dir == tmp_path / "state"
    assert config.database == tmp_path / "data" / "jobs.sqlite"
    assert config.rules_file == tmp_path / "rules.yaml"
    assert config.mailbox == MailboxConfig(
        user="me@example.com",
        password="secret",
        host="imap.example.com",
        port=1993,
        tls=False,
        enabled=True,
        folder="Job Search",
        since_days=3,
    )
    assert config.scan == ScanConfig(interval_minutes=10)
    assert config.logging == LoggingConfig(level="debug", debug_file=True)


def test_missing_file_yields_disabled_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "absent.yaml")

    assert config.mailbox.enabled is False
    assert config.mailbox.port == 993
    assert config.mailbox.tls is True
    assert config.scan.interval_minutes == DEFAULT_INTERVAL_MINUTES
    assert config.root_dir == DEFAULT_ROOT_DIR.expanduser()
    assert config.database == config.root_dir / "jobs.db"
    assert config.rules_file is None


def test_database_defaults_under_root_dir(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path, f"root_dir: {tmp_path}/state\n")

    config = load_config(config_path)

    assert config.database == tmp_path / "state" / "jobs.db"


def test_unparseable_yaml_yields_defaults(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path, "mailbox: [unclosed\n")

    config = load_config(config_path)

    assert config.mailbox == MailboxConfig()


def test_non_mapping_root_yields_defaults(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path, "- one\n- two\n")

    assert load_config(config_path).mailbox.enabled is False


def test_enabled_mailbox_without_credentials_is_disabled(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path,
        """
        mailbox:
          enabled: true
          host: imap.example.com
        scan:
          interval_minutes: 15
        """,
    )

    config = load_config(config_path)

    assert config.mailbox.enabled is False
    assert config.scan.interval_minutes == 15


@pytest.mark.parametrize(
    "scan_block",
    [
        "scan:\n  interval_minutes: 0\n",
        "scan:\n  interval_minutes: soon\n",
        "scan: 5\n",
    ],
)
def test_invalid_scan_section_falls_back(tmp_path: Path, scan_block: str) -> None:
    config_path = _write_config(tmp_path, scan_block)

    assert load_config(config_path).scan == ScanConfig()


def test_invalid_logging_level_falls_back(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path,
        """
        logging:
          level: chatty
        """,
    )

    assert load_config(config_path).logging == LoggingConfig()


def test_mailbox_password_hidden_from_repr() -> None:
    config = MailboxConfig(user="me", password="hunter2", host="imap", enabled=True)

    assert "hunter2" not in repr(config)


def test_resolve_config_path_prefers_explicit(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("APPLYTRACK_CONFIG", str(tmp_path / "env.yaml"))

    assert resolve_config_path(tmp_path / "cli.yaml") == tmp_path / "cli.yaml"
    assert resolve_config_path(None) == tmp_path / "env.yaml"


def test_resolve_config_path_default(monkeypatch) -> None:
    monkeypatch.delenv("APPLYTRACK_CONFIG", raising=False)

    assert resolve_config_path(None).name == "config.yaml"
    assert resolve_config_path(None).parent.name == "applytrack"
