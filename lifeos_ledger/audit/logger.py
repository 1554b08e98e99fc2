"""
Audit Logger

DESIGN DECISION: Every import, duplicate removal and reconciliation is logged.
This provides:
1. Complete traceability of what entered and left the ledger
2. Debugging capability when balances disagree
3. A history of past reconciliation runs

The audit logger:
- Is async, like the storage it writes to
- Gracefully handles failures (doesn't crash a run if logging fails)
- Supports correlation IDs to trace all events of one run
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from lifeos_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from lifeos_ledger.models.ledger import IssueKind, LedgerIssue, ReconciliationLine
from lifeos_ledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage, if one is configured (for persistence)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("lifeos_ledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity is AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_transactions_loaded(
        self,
        count: int,
        source: str,
        correlation_id: UUID,
    ) -> None:
        """Log how many records a run read."""
        await self.log(AuditEventBuilder.transactions_loaded(
            count=count,
            source=source,
            correlation_id=correlation_id,
        ))

    async def log_import_completed(
        self,
        added: int,
        skipped_existing: int,
        rejected: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.import_completed(
            added=added,
            skipped_existing=skipped_existing,
            rejected=rejected,
            correlation_id=correlation_id,
        ))

    async def log_issues(
        self,
        issues: list[LedgerIssue],
        correlation_id: UUID,
    ) -> None:
        """Log one event per malformed record or unknown-account issue."""
        for issue in issues:
            if issue.kind is IssueKind.MALFORMED_TRANSACTION:
                event = AuditEventBuilder.malformed_record(
                    record_id=issue.record_id,
                    message=issue.message,
                    correlation_id=correlation_id,
                )
            elif issue.kind is IssueKind.UNKNOWN_ACCOUNT:
                event = AuditEventBuilder.unknown_account(
                    account=issue.account or "",
                    transaction_id=issue.record_id,
                    strict=issue.severity == "error",
                    correlation_id=correlation_id,
                )
            else:
                continue
            await self.log(event)

    async def log_duplicates_found(
        self,
        group_count: int,
        transaction_count: int,
        near_group_count: int,
        correlation_id: UUID,
    ) -> None:
        """Log exact and near duplicate counts."""
        await self.log(AuditEventBuilder.duplicates_found(
            group_count=group_count,
            transaction_count=transaction_count,
            correlation_id=correlation_id,
        ))
        if near_group_count:
            await self.log(AuditEventBuilder.near_duplicates_found(
                group_count=near_group_count,
                correlation_id=correlation_id,
            ))

    async def log_removals(
        self,
        removed_ids: list[str],
        skipped_ids: list[str],
        policy: Optional[str],
        correlation_id: UUID,
    ) -> None:
        """One event per removed or skipped transaction."""
        for transaction_id in removed_ids:
            await self.log(AuditEventBuilder.duplicate_removed(
                transaction_id=transaction_id,
                policy=policy,
                correlation_id=correlation_id,
            ))
        for transaction_id in skipped_ids:
            await self.log(AuditEventBuilder.duplicate_removal_skipped(
                transaction_id=transaction_id,
                correlation_id=correlation_id,
            ))

    async def log_balances_computed(
        self,
        account_count: int,
        transaction_count: int,
        issue_count: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.balances_computed(
            account_count=account_count,
            transaction_count=transaction_count,
            issue_count=issue_count,
            correlation_id=correlation_id,
        ))

    async def log_reconciliation(
        self,
        lines: list[ReconciliationLine],
        tolerance: Decimal,
        correlation_id: UUID,
    ) -> None:
        """Log every mismatch, then the summary."""
        mismatches = [line for line in lines if line.is_mismatch]
        for line in mismatches:
            await self.log(AuditEventBuilder.reconciliation_mismatch(
                account=line.account,
                computed=str(line.computed),
                expected=str(line.expected),
                delta=str(line.delta),
                correlation_id=correlation_id,
            ))
        await self.log(AuditEventBuilder.reconciliation_completed(
            account_count=len(lines),
            mismatch_count=len(mismatches),
            tolerance=str(tolerance),
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log external service error."""
        event = AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a run (import, dedupe, reconcile).
    Pass it through all subsequent operations.
    """
    return uuid4()
