from __future__ import annotations

from applytrack.classifier import Classifier
from applytrack.rules import DEFAULT_RULES, OTHER, RuleSet
from applytrack.types import EmailRecord


def _email(body: str, subject: str = "Update") -> EmailRecord:
    return EmailRecord(
        message_id="<m-1@example.com>",
        sender="jobs@acme.com",
        recipient="me@example.org",
        subject=subject,
        body=body,
    )


def test_classifier_uses_body_text_only() -> None:
    classifier = Classifier(RuleSet.default())

    email = _email("Nothing relevant here.", subject="Interview invitation")

    assert classifier.classify(email) == OTHER


def test_classifier_detects_offer_in_body() -> None:
    classifier = Classifier(RuleSet.default())

    assert classifier.classify(_email("Congratulations! Details attached.")) == "job_offer"


def test_labels_end_with_other() -> None:
    classifier = Classifier(RuleSet.default())

    assert classifier.labels == (*DEFAULT_RULES, OTHER)
