"""
Tests for the audit logger.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from lifeos_ledger.audit import AuditLogger, create_correlation_id
from lifeos_ledger.models.audit import AuditEventBuilder, AuditEventType, AuditSeverity
from lifeos_ledger.models.ledger import (
    IssueKind,
    LedgerIssue,
    ReconciliationLine,
    ReconciliationStatus,
)
from lifeos_ledger.services.storage import AuditStorageInterface, InMemoryAuditStorage


class ExplodingAuditStorage(AuditStorageInterface):
    """Audit storage whose writes always raise."""

    async def append_event(self, event):
        raise RuntimeError("sheet unavailable")

    async def get_events_by_correlation_id(self, correlation_id):
        return []

    async def get_recent_events(self, limit=100):
        return []


class TestAuditLogger:
    """Tests for AuditLogger."""

    @pytest.mark.asyncio
    async def test_without_storage(self):
        logger = AuditLogger()
        assert await logger.log(AuditEventBuilder.system_error("X", "y")) is True

    @pytest.mark.asyncio
    async def test_persists_events(self):
        storage = InMemoryAuditStorage()
        logger = AuditLogger(storage)
        correlation_id = create_correlation_id()
        await logger.log_transactions_loaded(3, "records", correlation_id)
        assert len(storage.events) == 1
        assert storage.events[0].correlation_id == correlation_id

    @pytest.mark.asyncio
    async def test_storage_failure_does_not_raise(self):
        """Test that a broken audit store never stops a run."""
        logger = AuditLogger(ExplodingAuditStorage())
        result = await logger.log(AuditEventBuilder.system_error("X", "y"))
        assert result is False

    @pytest.mark.asyncio
    async def test_log_issues(self):
        storage = InMemoryAuditStorage()
        correlation_id = uuid4()
        issues = [
            LedgerIssue(
                kind=IssueKind.MALFORMED_TRANSACTION,
                message="Invalid amount",
                record_id="bad",
            ),
            LedgerIssue(
                kind=IssueKind.UNKNOWN_ACCOUNT,
                message="Unknown account: Bnak",
                record_id="x1",
                account="Bnak",
            ),
            LedgerIssue(
                kind=IssueKind.ZERO_AMOUNT,
                message="Zero amount",
                record_id="z",
                severity="warning",
            ),
        ]
        await AuditLogger(storage).log_issues(issues, correlation_id)
        assert [e.event_type for e in storage.events] == [
            AuditEventType.MALFORMED_RECORD,
            AuditEventType.UNKNOWN_ACCOUNT,
        ]

    @pytest.mark.asyncio
    async def test_log_removals(self):
        storage = InMemoryAuditStorage()
        await AuditLogger(storage).log_removals(
            removed_ids=["t3"],
            skipped_ids=["t4"],
            policy="keep_earliest_id",
            correlation_id=uuid4(),
        )
        assert [(e.event_type, e.entity_id) for e in storage.events] == [
            (AuditEventType.DUPLICATE_REMOVED, "t3"),
            (AuditEventType.DUPLICATE_REMOVAL_SKIPPED, "t4"),
        ]

    @pytest.mark.asyncio
    async def test_near_duplicates_only_logged_when_found(self):
        storage = InMemoryAuditStorage()
        logger = AuditLogger(storage)
        await logger.log_duplicates_found(1, 2, 0, uuid4())
        assert len(storage.events) == 1
        await logger.log_duplicates_found(0, 0, 2, uuid4())
        assert storage.events[-1].event_type is AuditEventType.NEAR_DUPLICATES_FOUND

    @pytest.mark.asyncio
    async def test_log_reconciliation(self):
        storage = InMemoryAuditStorage()
        lines = [
            ReconciliationLine(
                account="Cash",
                computed=Decimal("173400"),
                expected=Decimal("173500"),
                delta=Decimal("-100"),
                status=ReconciliationStatus.MISMATCH,
            ),
            ReconciliationLine(
                account="Bank",
                computed=Decimal("451802.45"),
                expected=Decimal("451802.45"),
                delta=Decimal("0"),
                status=ReconciliationStatus.MATCHED,
            ),
        ]
        await AuditLogger(storage).log_reconciliation(lines, Decimal("0.01"), uuid4())

        mismatch, completed = storage.events
        assert mismatch.event_type is AuditEventType.RECONCILIATION_MISMATCH
        assert mismatch.severity is AuditSeverity.WARNING
        assert mismatch.details["delta"] == "-100"
        assert completed.event_type is AuditEventType.RECONCILIATION_COMPLETED
        assert completed.details["mismatch_count"] == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
