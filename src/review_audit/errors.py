from __future__ import annotations


class ReviewAuditError(Exception):
    """Base class for errors raised by review_audit."""


class FormatError(ReviewAuditError, ValueError):
    """Snapshot bytes are malformed or use an unsupported format version."""


class RuleEvaluationError(ReviewAuditError):
    """A tag rule failed while evaluating a metrics bundle."""

    def __init__(self, rule_id: str, cause: BaseException) -> None:
        super().__init__(f"Tag rule {rule_id} failed: {cause!r}")
        self.rule_id = rule_id
        self.cause = cause


class EmptyDataError(ReviewAuditError):
    """An operation needs at least one month of data and the snapshot has none."""
