"""
Data Models Package

This package contains all Pydantic models used in LifeOS Ledger.
All data flowing through the system must conform to these schemas.
"""

from lifeos_ledger.models.ledger import (
    AccountBalance,
    Direction,
    DuplicateGroup,
    IssueKind,
    LedgerIssue,
    LedgerSummary,
    NearDuplicateGroup,
    ReconciliationLine,
    ReconciliationReport,
    ReconciliationSnapshot,
    ReconciliationStatus,
    RemovalOutcome,
    RemovalPlan,
    ResolutionPolicy,
    RunningBalancePoint,
    Transaction,
    quantize_minor,
)
from lifeos_ledger.models.accounts import (
    AccountConfig,
    AccountConfigurationError,
    AccountHierarchy,
)
from lifeos_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "AccountBalance",
    "Direction",
    "DuplicateGroup",
    "IssueKind",
    "LedgerIssue",
    "LedgerSummary",
    "NearDuplicateGroup",
    "ReconciliationLine",
    "ReconciliationReport",
    "ReconciliationSnapshot",
    "ReconciliationStatus",
    "RemovalOutcome",
    "RemovalPlan",
    "ResolutionPolicy",
    "RunningBalancePoint",
    "Transaction",
    "quantize_minor",
    # Account hierarchy
    "AccountConfig",
    "AccountConfigurationError",
    "AccountHierarchy",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
