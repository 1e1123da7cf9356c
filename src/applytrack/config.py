"""Configuration loading and validation."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.config/applytrack/config.yaml")
DEFAULT_ROOT_DIR = Path("~/.local/lib/applytrack")
DEFAULT_DATABASE_NAME = "jobs.db"
DEFAULT_LOG_LEVEL = "info"
DEFAULT_IMAP_PORT = 993
DEFAULT_FOLDER = "INBOX"
DEFAULT_SINCE_DAYS = 7
DEFAULT_INTERVAL_MINUTES = 5
LOG_LEVELS = ("debug", "info", "warning", "warn", "error", "critical")


@dataclass(frozen=True)
class MailboxConfig:
    """Connection settings for the scanned mailbox. Disabled unless configured."""

    user: str = ""
    password: str = field(default="", repr=False)
    host: str = ""
    port: int = DEFAULT_IMAP_PORT
    tls: bool = True
    enabled: bool = False
    folder: str = DEFAULT_FOLDER
    since_days: int = DEFAULT_SINCE_DAYS


@dataclass(frozen=True)
class ScanConfig:
    """Scheduling of scan cycles."""

    interval_minutes: int = DEFAULT_INTERVAL_MINUTES


@dataclass(frozen=True)
class LoggingConfig:
    """Logging-related configuration."""

    level: str = DEFAULT_LOG_LEVEL
    debug_file: bool = False


@dataclass(frozen=True)
class Config:
    """Fully parsed configuration."""

    root_dir: Path
    database: Path
    rules_file: Path | None
    mailbox: MailboxConfig
    scan: ScanConfig
    logging: LoggingConfig


def load_config(path: Path | str | None = None) -> Config:
    """Load configuration from YAML (or JSON).

    Never raises: a missing or unreadable file yields defaults with the
    mailbox disabled, and each malformed section falls back on its own.
    """

    config_path = resolve_config_path(path)
    if not config_path.exists():
        LOGGER.warning("Config file not found at %s; mailbox scanning disabled.", config_path)
        return _parse_config({})

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        LOGGER.warning("Failed to read config %s (%s); using defaults.", config_path, exc)
        return _parse_config({})

    if not isinstance(raw, dict):
        LOGGER.warning("Configuration root in %s must be a mapping; using defaults.", config_path)
        return _parse_config({})

    return _parse_config(raw, base_dir=config_path.parent)


def resolve_config_path(explicit: Path | str | None) -> Path:
    if explicit:
        return Path(explicit).expanduser()
    env_path = os.environ.get("APPLYTRACK_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH.expanduser()


def _parse_config(raw: dict[str, Any], *, base_dir: Path | None = None) -> Config:
    root_dir = _section(raw, "root_dir", _parse_root_dir, DEFAULT_ROOT_DIR.expanduser())
    database = _section(
        raw,
        "database",
        lambda value: _parse_path(value, "database", base_dir),
        root_dir / DEFAULT_DATABASE_NAME,
    )
    rules_file = _section(
        raw,
        "rules_file",
        lambda value: _parse_path(value, "rules_file", base_dir),
        None,
    )
    return Config(
        root_dir=root_dir,
        database=database,
        rules_file=rules_file,
        mailbox=_section(raw, "mailbox", _parse_mailbox, MailboxConfig()),
        scan=_section(raw, "scan", _parse_scan, ScanConfig()),
        logging=_section(raw, "logging", _parse_logging, LoggingConfig()),
    )


def _section(raw: dict[str, Any], key: str, parser: Any, default: Any) -> Any:
    value = raw.get(key)
    if value is None:
        return default
    try:
        return parser(value)
    except ConfigError as exc:
        LOGGER.warning("Ignoring invalid '%s' configuration: %s", key, exc)
        return default


def _parse_root_dir(value: Any) -> Path:
    if not isinstance(value, (str, Path)) or not str(value).strip():
        raise ConfigError("root_dir must be a non-empty path.")
    return Path(value).expanduser()


def _parse_path(value: Any, field_name: str, base_dir: Path | None) -> Path:
    if not isinstance(value, (str, Path)) or not str(value).strip():
        raise ConfigError(f"{field_name} must be a non-empty path.")
    path = Path(value).expanduser()
    if not path.is_absolute() and base_dir is not None:
        path = base_dir / path
    return path


def _parse_mailbox(value: Any) -> MailboxConfig:
    if not isinstance(value, dict):
        raise ConfigError("mailbox must be a mapping.")

    enabled = _parse_bool(value.get("enabled", False), "mailbox.enabled")
    host = _parse_str(value.get("host", ""), "mailbox.host")
    user = _parse_str(value.get("user", ""), "mailbox.user")
    password = _parse_str(value.get("password", ""), "mailbox.password")
    if enabled and not (host and user):
        raise ConfigError("an enabled mailbox requires 'host' and 'user'.")
    return MailboxConfig(
        user=user,
        password=password,
        host=host,
        port=_parse_positive_int(value.get("port", DEFAULT_IMAP_PORT), "mailbox.port"),
        tls=_parse_bool(value.get("tls", True), "mailbox.tls"),
        enabled=enabled,
        folder=_parse_str(value.get("folder", DEFAULT_FOLDER), "mailbox.folder") or DEFAULT_FOLDER,
        since_days=_parse_positive_int(
            value.get("since_days", DEFAULT_SINCE_DAYS), "mailbox.since_days"
        ),
    )


def _parse_scan(value: Any) -> ScanConfig:
    if not isinstance(value, dict):
        raise ConfigError("scan must be a mapping.")
    interval = _parse_positive_int(
        value.get("interval_minutes", DEFAULT_INTERVAL_MINUTES), "scan.interval_minutes"
    )
    return ScanConfig(interval_minutes=interval)


def _parse_logging(value: Any) -> LoggingConfig:
    if not isinstance(value, dict):
        raise ConfigError("logging must be a mapping.")
    level = str(value.get("level", DEFAULT_LOG_LEVEL)).strip().lower()
    if level not in LOG_LEVELS:
        raise ConfigError(f"unknown log level: {level}")
    debug_file = _parse_bool(value.get("debug_file", False), "logging.debug_file")
    return LoggingConfig(level=level, debug_file=debug_file)


def _parse_str(value: Any, field_name: str) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if not isinstance(value, str):
        raise ConfigError(f"{field_name} must be a string.")
    return value.strip()


def _parse_bool(value: Any, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigError(f"{field_name} must be true or false.")


def _parse_positive_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"{field_name} must be a positive integer.")
    return value


__all__ = [
    "Config",
    "ConfigError",
    "LoggingConfig",
    "MailboxConfig",
    "ScanConfig",
    "load_config",
    "resolve_config_path",
]
