"""
Ledger Errors

Each error can be raised on its own (fail fast) or turned into a
LedgerIssue and collected next to partial results (batch mode).

A reconciliation mismatch is not in this module. It is a finding, reported
as data on the ReconciliationReport.
"""

from typing import Any, Optional

from lifeos_ledger.models.ledger import IssueKind, LedgerIssue


class LedgerError(Exception):
    """Base exception for ledger processing."""

    kind: IssueKind

    def __init__(
        self,
        message: str,
        record_id: Optional[str] = None,
        account: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.record_id = record_id
        self.account = account
        self.details = details or {}
        super().__init__(message)

    def to_issue(self, severity: str = "error") -> LedgerIssue:
        return LedgerIssue(
            kind=self.kind,
            severity=severity,
            message=self.message,
            record_id=self.record_id,
            account=self.account,
            details=self.details,
        )


class MalformedTransaction(LedgerError):
    """A record is missing a required field or has a non-numeric amount."""

    kind = IssueKind.MALFORMED_TRANSACTION


class UnknownAccount(LedgerError):
    """A transaction references an account the hierarchy does not declare."""

    kind = IssueKind.UNKNOWN_ACCOUNT


class DuplicateAmbiguity(LedgerError):
    """A near-duplicate group needs a manual decision before anything is removed."""

    kind = IssueKind.DUPLICATE_AMBIGUITY

    def __init__(self, message: str, candidate_ids: Optional[list[str]] = None):
        self.candidate_ids = list(candidate_ids or [])
        super().__init__(message, details={"candidate_ids": self.candidate_ids})
