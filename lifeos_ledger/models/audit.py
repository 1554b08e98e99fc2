"""
Audit Models for LifeOS Ledger

Every import, cleanup and reconciliation run leaves a trail. This provides:
1. Complete traceability of what was added and removed
2. Debugging information when balances disagree
3. The ability to reconstruct how a ledger got to its current state

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step of the reconciliation pipeline has its own event type.
    """
    # Import
    TRANSACTIONS_LOADED = "transactions_loaded"
    IMPORT_COMPLETED = "import_completed"
    MALFORMED_RECORD = "malformed_record"

    # Duplicate handling
    DUPLICATES_FOUND = "duplicates_found"
    NEAR_DUPLICATES_FOUND = "near_duplicates_found"
    DUPLICATE_REMOVED = "duplicate_removed"
    DUPLICATE_REMOVAL_SKIPPED = "duplicate_removal_skipped"

    # Aggregation
    BALANCES_COMPUTED = "balances_computed"
    UNKNOWN_ACCOUNT = "unknown_account"

    # Reconciliation
    RECONCILIATION_COMPLETED = "reconciliation_completed"
    RECONCILIATION_MISMATCH = "reconciliation_mismatch"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'account', 'run')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one run)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.import_completed(added=10, skipped=2, ...)
        event = AuditEventBuilder.duplicate_removed(transaction_id, correlation_id)
    """

    @staticmethod
    def transactions_loaded(
        count: int,
        source: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTIONS_LOADED,
            entity_type="run",
            correlation_id=correlation_id,
            description=f"Loaded {count} records from {source}",
            details={"count": count, "source": source},
        )

    @staticmethod
    def import_completed(
        added: int,
        skipped_existing: int,
        rejected: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_COMPLETED,
            entity_type="run",
            correlation_id=correlation_id,
            description=(
                f"Import added {added}, skipped {skipped_existing} existing, "
                f"rejected {rejected}"
            ),
            details={
                "added": added,
                "skipped_existing": skipped_existing,
                "rejected": rejected,
            },
        )

    @staticmethod
    def malformed_record(
        record_id: Optional[str],
        message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MALFORMED_RECORD,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            entity_id=record_id,
            correlation_id=correlation_id,
            description="Record excluded: malformed transaction",
            error_message=message,
        )

    @staticmethod
    def duplicates_found(
        group_count: int,
        transaction_count: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATES_FOUND,
            severity=AuditSeverity.WARNING if group_count else AuditSeverity.INFO,
            entity_type="run",
            correlation_id=correlation_id,
            description=(
                f"Found {group_count} duplicate groups covering "
                f"{transaction_count} transactions"
            ),
            details={
                "group_count": group_count,
                "transaction_count": transaction_count,
            },
        )

    @staticmethod
    def near_duplicates_found(
        group_count: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NEAR_DUPLICATES_FOUND,
            severity=AuditSeverity.WARNING if group_count else AuditSeverity.INFO,
            entity_type="run",
            correlation_id=correlation_id,
            description=f"Found {group_count} near-duplicate groups awaiting review",
            details={"group_count": group_count},
        )

    @staticmethod
    def duplicate_removed(
        transaction_id: str,
        policy: Optional[str],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATE_REMOVED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Duplicate transaction removed: {transaction_id}",
            details={"policy": policy},
        )

    @staticmethod
    def duplicate_removal_skipped(
        transaction_id: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATE_REMOVAL_SKIPPED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction already absent, removal skipped: {transaction_id}",
        )

    @staticmethod
    def balances_computed(
        account_count: int,
        transaction_count: int,
        issue_count: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCES_COMPUTED,
            entity_type="run",
            correlation_id=correlation_id,
            description=(
                f"Computed {account_count} balances from "
                f"{transaction_count} transactions ({issue_count} issues)"
            ),
            details={
                "account_count": account_count,
                "transaction_count": transaction_count,
                "issue_count": issue_count,
            },
        )

    @staticmethod
    def unknown_account(
        account: str,
        transaction_id: Optional[str],
        strict: bool,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.UNKNOWN_ACCOUNT,
            severity=AuditSeverity.ERROR if strict else AuditSeverity.WARNING,
            entity_type="account",
            entity_id=account,
            correlation_id=correlation_id,
            description=f"Transaction references undeclared account '{account}'",
            details={"transaction_id": transaction_id, "strict": strict},
        )

    @staticmethod
    def reconciliation_completed(
        account_count: int,
        mismatch_count: int,
        tolerance: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_COMPLETED,
            severity=AuditSeverity.WARNING if mismatch_count else AuditSeverity.INFO,
            entity_type="run",
            correlation_id=correlation_id,
            description=(
                f"Reconciled {account_count} accounts, "
                f"{mismatch_count} outside tolerance {tolerance}"
            ),
            details={
                "account_count": account_count,
                "mismatch_count": mismatch_count,
                "tolerance": tolerance,
            },
        )

    @staticmethod
    def reconciliation_mismatch(
        account: str,
        computed: str,
        expected: str,
        delta: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_MISMATCH,
            severity=AuditSeverity.WARNING,
            entity_type="account",
            entity_id=account,
            correlation_id=correlation_id,
            description=f"Balance mismatch on {account}: delta {delta}",
            details={
                "computed": computed,
                "expected": expected,
                "delta": delta,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
