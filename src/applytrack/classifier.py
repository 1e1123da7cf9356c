"""Assign category labels to parsed messages."""

from __future__ import annotations

from .rules import OTHER, RuleSet, classify_text
from .types import EmailRecord


class Classifier:
    """Labels messages by matching their body text against a rule set."""

    def __init__(self, rule_set: RuleSet) -> None:
        self._rule_set = rule_set

    @property
    def labels(self) -> tuple[str, ...]:
        return (*self._rule_set.labels, OTHER)

    def classify(self, email: EmailRecord) -> str:
        return classify_text(email.body or "", self._rule_set)


__all__ = ["Classifier"]
