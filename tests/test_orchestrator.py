"""
Integration tests for the import and reconciliation flows.

All flows run against in-memory storage.
"""

from datetime import date
from decimal import Decimal

import pytest

from conftest import make_tx
from lifeos_ledger.audit import AuditLogger
from lifeos_ledger.ledger import LedgerAggregator, ReconciliationReporter
from lifeos_ledger.models.audit import AuditEventType
from lifeos_ledger.models.ledger import (
    IssueKind,
    ReconciliationSnapshot,
    ReconciliationStatus,
    ResolutionPolicy,
)
from lifeos_ledger.orchestrator import ImportFlow, ReconciliationFlow, create_app_components
from lifeos_ledger.services.storage import (
    InMemoryAuditStorage,
    InMemorySnapshotSource,
    InMemoryTransactionStore,
    JsonFileTransactionStore,
    SnapshotSourceInterface,
    StorageError,
)


RECORDS = [
    {"id": "t1", "account": "Cash", "type": "income", "amount": "100000",
     "date": "2024-01-01", "description": "Salary"},
    {"id": "t2", "account": "Cash", "type": "expense", "amount": "30000",
     "date": "2024-01-02", "description": "Rent"},
    {"id": "t3", "account": "Cash", "type": "expense", "amount": "30000",
     "date": "2024-01-02", "description": "Rent"},
]


def _ledger_row(entry_no, day, description, expenses="", income="", source="Cash"):
    return {
        "entry_no": entry_no,
        "date": f"2024-01-{day:02d}",
        "month": "Jan",
        "description": description,
        "category": "",
        "income": income,
        "expenses": expenses,
        "source": source,
    }


class UnreachableSnapshotSource(SnapshotSourceInterface):
    async def read_snapshots(self):
        raise StorageError("spreadsheet unreachable")


class ReadOnlyStore(InMemoryTransactionStore):
    async def remove_by_ids(self, ids):
        raise StorageError("store is read-only")


class TestImportFlow:
    """Tests for ImportFlow."""

    @pytest.mark.asyncio
    async def test_import_records(self):
        store = InMemoryTransactionStore()
        result = await ImportFlow(store).import_records(RECORDS)
        assert result.added_ids == ["t1", "t2", "t3"]
        assert result.rejected == 0
        assert len(store) == 3

    @pytest.mark.asyncio
    async def test_reimport_adds_nothing(self):
        store = InMemoryTransactionStore()
        flow = ImportFlow(store)
        await flow.import_records(RECORDS)
        again = await flow.import_records(RECORDS)
        assert again.added == 0
        assert again.skipped_ids == ["t1", "t2", "t3"]
        assert len(store) == 3

    @pytest.mark.asyncio
    async def test_repeated_id_in_batch_added_once(self):
        store = InMemoryTransactionStore()
        result = await ImportFlow(store).import_records([RECORDS[0], RECORDS[0]])
        assert result.added_ids == ["t1"]
        assert result.skipped_ids == ["t1"]

    @pytest.mark.asyncio
    async def test_malformed_records_reported_not_stored(self):
        store = InMemoryTransactionStore()
        result = await ImportFlow(store).import_records([
            RECORDS[0],
            {"id": "bad", "account": "Cash", "type": "income", "amount": "lots", "date": "2024-01-01"},
        ])
        assert result.added_ids == ["t1"]
        assert result.rejected == 1
        assert result.issues[0].kind is IssueKind.MALFORMED_TRANSACTION

    @pytest.mark.asyncio
    async def test_import_ledger_rows_is_idempotent(self):
        store = InMemoryTransactionStore()
        flow = ImportFlow(store)
        rows = [
            _ledger_row("1", 1, "Salary", income="100000"),
            _ledger_row("2", 2, "Rent", expenses="30000"),
            _ledger_row("3", 3, "Refund", expenses="-5000"),
        ]
        first = await flow.import_ledger_rows(rows)
        second = await flow.import_ledger_rows(rows)
        assert first.added == 3
        assert second.added == 0

        refund = [t for t in await store.list_transactions() if t.description == "Refund"][0]
        assert refund.direction.value == "income"
        assert refund.amount == Decimal("5000")

    @pytest.mark.asyncio
    async def test_import_is_audited(self):
        audit_storage = InMemoryAuditStorage()
        flow = ImportFlow(InMemoryTransactionStore(), AuditLogger(audit_storage))
        result = await flow.import_records(RECORDS)
        events = await audit_storage.get_events_by_correlation_id(result.correlation_id)
        types = [e.event_type for e in events]
        assert AuditEventType.TRANSACTIONS_LOADED in types
        assert AuditEventType.IMPORT_COMPLETED in types


class TestReconciliationFlow:
    """Tests for ReconciliationFlow.run."""

    def _flow(self, hierarchy, records=RECORDS, snapshots=None, audit_storage=None):
        store = InMemoryTransactionStore(records)
        flow = ReconciliationFlow(
            store=store,
            snapshot_source=InMemorySnapshotSource(snapshots or []),
            aggregator=LedgerAggregator(hierarchy),
            reporter=ReconciliationReporter(Decimal("0.01")),
            audit_logger=AuditLogger(audit_storage) if audit_storage else None,
        )
        return flow, store

    @pytest.mark.asyncio
    async def test_detect_only(self, hierarchy):
        """Test that without a policy nothing is planned or removed."""
        flow, store = self._flow(hierarchy)
        report = await flow.run()
        assert len(report.duplicate_groups) == 1
        assert report.plan is None
        assert report.balances.balances["Cash"].balance == Decimal("40000")
        assert len(store) == 3

    @pytest.mark.asyncio
    async def test_preview_excludes_planned_removals(self, hierarchy):
        flow, store = self._flow(hierarchy)
        report = await flow.run(policy=ResolutionPolicy.KEEP_EARLIEST_ID)
        assert report.is_preview
        assert report.plan.remove_ids == ["t3"]
        assert report.balances.balances["Cash"].balance == Decimal("70000")
        assert len(store) == 3

    @pytest.mark.asyncio
    async def test_apply_removals(self, hierarchy):
        flow, store = self._flow(hierarchy)
        report = await flow.run(policy=ResolutionPolicy.KEEP_EARLIEST_ID, apply_removals=True)
        assert report.removal.removed_ids == ["t3"]
        assert report.balances.balances["Cash"].balance == Decimal("70000")
        assert len(store) == 2

        # A second cleanup run finds nothing left to do
        again = await flow.run(policy=ResolutionPolicy.KEEP_EARLIEST_ID, apply_removals=True)
        assert again.duplicate_groups == []
        assert again.removal is None

    @pytest.mark.asyncio
    async def test_manual_review_never_deletes(self, hierarchy):
        flow, store = self._flow(hierarchy)
        report = await flow.run(policy=ResolutionPolicy.MANUAL_REVIEW, apply_removals=True)
        assert report.removal is None
        assert len(report.plan.pending_review) == 1
        assert len(store) == 3

    @pytest.mark.asyncio
    async def test_reconciles_against_snapshots(self, hierarchy):
        snapshots = [
            ReconciliationSnapshot(account="Cash", expected_balance=Decimal("70000")),
            ReconciliationSnapshot(account="Bank", expected_balance=Decimal("0")),
            ReconciliationSnapshot(account="Investment", expected_balance=Decimal("500")),
        ]
        flow, _ = self._flow(hierarchy, snapshots=snapshots)
        report = await flow.run(policy=ResolutionPolicy.KEEP_EARLIEST_ID)
        lines = {line.account: line for line in report.reconciliation.lines}
        assert lines["Cash"].status is ReconciliationStatus.MATCHED
        assert lines["Bank"].status is ReconciliationStatus.MATCHED
        assert lines["Investment"].status is ReconciliationStatus.MISSING_COMPUTED
        # Groups stand in for their members; Mobile has no snapshot
        assert lines["Mobile"].status is ReconciliationStatus.MISSING_EXPECTED
        assert "Selcom" not in lines

    @pytest.mark.asyncio
    async def test_snapshot_for_member_account(self, hierarchy):
        records = [make_tx("a", 25, "income", account="Selcom").to_record()]
        snapshots = [
            ReconciliationSnapshot(account="Selcom", expected_balance=Decimal("25")),
            ReconciliationSnapshot(account="Bank", expected_balance=Decimal("25")),
        ]
        flow, _ = self._flow(hierarchy, records=records, snapshots=snapshots)
        report = await flow.run()
        assert report.reconciliation.line_for("Selcom").status is ReconciliationStatus.MATCHED
        assert report.reconciliation.line_for("Bank").status is ReconciliationStatus.MATCHED
        assert report.reconciliation.line_for("NMB Main A/C") is None

    @pytest.mark.asyncio
    async def test_no_snapshots_skips_reconciliation(self, hierarchy):
        flow, _ = self._flow(hierarchy)
        report = await flow.run()
        assert report.reconciliation is None

    @pytest.mark.asyncio
    async def test_partial_results_with_issues(self, hierarchy):
        records = RECORDS + [
            {"id": "bad", "account": "Cash", "type": "expense", "amount": "?", "date": "2024-01-03"},
            {"id": "x1", "account": "Bnak", "type": "income", "amount": "5", "date": "2024-01-03"},
        ]
        flow, _ = self._flow(hierarchy, records=records)
        report = await flow.run()
        kinds = sorted(issue.kind.value for issue in report.issues)
        assert kinds == ["malformed_transaction", "unknown_account"]
        assert report.loaded_count == 5
        assert report.balances.balances["Cash"].balance == Decimal("40000")

    @pytest.mark.asyncio
    async def test_run_is_audited(self, hierarchy):
        audit_storage = InMemoryAuditStorage()
        snapshots = [ReconciliationSnapshot(account="Cash", expected_balance=Decimal("1"))]
        flow, _ = self._flow(hierarchy, snapshots=snapshots, audit_storage=audit_storage)
        report = await flow.run(policy=ResolutionPolicy.KEEP_EARLIEST_ID, apply_removals=True)

        events = await audit_storage.get_events_by_correlation_id(report.correlation_id)
        types = [e.event_type for e in events]
        assert AuditEventType.DUPLICATES_FOUND in types
        assert AuditEventType.DUPLICATE_REMOVED in types
        assert AuditEventType.BALANCES_COMPUTED in types
        assert AuditEventType.RECONCILIATION_MISMATCH in types
        assert AuditEventType.RECONCILIATION_COMPLETED in types

    @pytest.mark.asyncio
    async def test_compute_balances_with_filter(self, hierarchy):
        flow, _ = self._flow(hierarchy, records=[
            make_tx("a", 10, "income", account="Selcom").to_record(),
            make_tx("b", 10, "income", account="Cash", occurred_at=date(2024, 1, 2)).to_record(),
        ])
        result = await flow.compute_balances(account_filter=["Bank"])
        assert "Cash" not in result.balances
        assert result.composites["Bank"] == Decimal("10")

    @pytest.mark.asyncio
    async def test_snapshot_failure_is_audited_and_raised(self, hierarchy):
        audit_storage = InMemoryAuditStorage()
        flow = ReconciliationFlow(
            store=InMemoryTransactionStore(RECORDS),
            snapshot_source=UnreachableSnapshotSource(),
            aggregator=LedgerAggregator(hierarchy),
            audit_logger=AuditLogger(audit_storage),
        )
        with pytest.raises(StorageError):
            await flow.run()
        assert audit_storage.events[-1].event_type is AuditEventType.EXTERNAL_SERVICE_ERROR

    @pytest.mark.asyncio
    async def test_removal_failure_is_audited_and_raised(self, hierarchy):
        audit_storage = InMemoryAuditStorage()
        store = ReadOnlyStore(RECORDS)
        flow = ReconciliationFlow(
            store=store,
            aggregator=LedgerAggregator(hierarchy),
            audit_logger=AuditLogger(audit_storage),
        )
        with pytest.raises(StorageError):
            await flow.run(policy=ResolutionPolicy.KEEP_EARLIEST_ID, apply_removals=True)
        error = audit_storage.events[-1]
        assert error.event_type is AuditEventType.SYSTEM_ERROR
        assert error.details["planned_removals"] == ["t3"]
        assert len(store) == 3


class TestCreateAppComponents:
    """Tests for the component factory."""

    def test_memory_backend(self):
        import_flow, reconciliation_flow, store = create_app_components("memory")
        assert isinstance(store, InMemoryTransactionStore)
        assert isinstance(import_flow, ImportFlow)
        assert isinstance(reconciliation_flow, ReconciliationFlow)

    def test_json_backend_uses_local_settings(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LEDGER_LOCAL_DATA_DIR", str(tmp_path))
        _, _, store = create_app_components("json")
        assert isinstance(store, JsonFileTransactionStore)
        assert store.path == tmp_path / "transactions.json"

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_app_components("postgres")

    def test_without_hierarchy_accounts_are_opened(self, monkeypatch):
        """Test that a missing accounts file doesn't reject every transaction."""
        monkeypatch.delenv("LEDGER_ACCOUNTS_FILE", raising=False)
        _, flow, _ = create_app_components("memory")
        result = flow.aggregator.compute_balances([make_tx("a", 1, "income")])
        assert "Cash" in result.balances


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
