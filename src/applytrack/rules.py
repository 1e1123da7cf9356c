"""Phrase-based classification rules.

A rule set maps category labels to trigger phrases. Categories are checked in
declaration order and the first category with a phrase contained in the
lowercased text wins, so earlier declarations take precedence on overlap.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from typing import Any

import yaml

LOGGER = logging.getLogger(__name__)

APPLICATION_CONFIRMATION = "application_confirmation"
INTERVIEW_INVITATION = "interview_invitation"
JOB_OFFER = "job_offer"
REJECTION = "rejection"
OTHER = "other"

DEFAULT_RULES: dict[str, tuple[str, ...]] = {
    APPLICATION_CONFIRMATION: (
        "thank you for your application",
        "we have received your application",
        "application received",
    ),
    INTERVIEW_INVITATION: (
        "interview invitation",
        "we would like to invite you",
        "schedule an interview",
    ),
    JOB_OFFER: (
        "job offer",
        "offer of employment",
        "we are pleased to offer",
        "congratulations",
    ),
    REJECTION: (
        "thank you for your interest",
        "we have decided to move forward",
        "not moving forward",
        "position has been filled",
    ),
}


class RuleFormatError(ValueError):
    """Raised when a rules document has the wrong shape."""


class RuleSet(Mapping[str, tuple[str, ...]]):
    """Read-only ordered mapping of category label to lowercase phrases."""

    def __init__(self, rules: Mapping[str, Iterable[str]]) -> None:
        self._rules: dict[str, tuple[str, ...]] = {
            str(label): _normalize_phrases(phrases) for label, phrases in rules.items()
        }

    def __getitem__(self, label: str) -> tuple[str, ...]:
        return self._rules[label]

    def __iter__(self) -> Iterator[str]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"RuleSet({list(self._rules)!r})"

    @property
    def labels(self) -> tuple[str, ...]:
        return tuple(self._rules)

    @classmethod
    def default(cls) -> RuleSet:
        return cls(DEFAULT_RULES)


def classify_text(text: str, rule_set: RuleSet) -> str:
    """Return the first category whose phrase occurs in ``text``, else ``other``."""

    lowered = (text or "").lower()
    for label, phrases in rule_set.items():
        for phrase in phrases:
            if phrase in lowered:
                return label
    return OTHER


def load_rules(path: Path | str | None) -> RuleSet:
    """Load a rule set from a YAML/JSON file, falling back to the built-in set."""

    if path is None:
        LOGGER.debug("No rules file configured; using built-in classification rules.")
        return RuleSet.default()

    rules_path = Path(path).expanduser()
    if not rules_path.exists():
        LOGGER.warning("Rules file %s not found; using built-in rules.", rules_path)
        return RuleSet.default()

    try:
        with rules_path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle)
        rule_set = parse_rules(raw)
    except (OSError, yaml.YAMLError, RuleFormatError) as exc:
        LOGGER.warning("Failed to load rules from %s (%s); using built-in rules.", rules_path, exc)
        return RuleSet.default()

    LOGGER.info("Loaded %s classification categories from %s", len(rule_set), rules_path)
    return rule_set


def parse_rules(raw: Any) -> RuleSet:
    if not isinstance(raw, dict) or not raw:
        raise RuleFormatError("rules must be a non-empty mapping of category to phrases")

    rules: dict[str, list[str]] = {}
    for label, phrases in raw.items():
        name = str(label).strip()
        if not name:
            raise RuleFormatError("category labels cannot be empty")
        if name == OTHER:
            LOGGER.warning("Ignoring rules for reserved category '%s'.", OTHER)
            continue
        if not isinstance(phrases, list):
            raise RuleFormatError(f"phrases for '{name}' must be a list")
        for phrase in phrases:
            if not isinstance(phrase, str):
                raise RuleFormatError(f"phrase {phrase!r} in '{name}' is not a string")
        rules[name] = phrases

    rule_set = RuleSet(rules)
    if not any(rule_set.values()):
        raise RuleFormatError("rules contain no phrases")
    return rule_set


def _normalize_phrases(phrases: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for phrase in phrases:
        cleaned = phrase.strip().lower()
        if cleaned:
            seen.setdefault(cleaned, None)
    return tuple(seen)


__all__ = [
    "APPLICATION_CONFIRMATION",
    "DEFAULT_RULES",
    "INTERVIEW_INVITATION",
    "JOB_OFFER",
    "OTHER",
    "REJECTION",
    "RuleFormatError",
    "RuleSet",
    "classify_text",
    "load_rules",
    "parse_rules",
]
