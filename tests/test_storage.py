"""
Tests for storage backends.

Google Sheets is exercised through a fake worksheet; no API calls are made.
"""

import json
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import make_tx
from lifeos_ledger.ledger.errors import MalformedTransaction
from lifeos_ledger.models.audit import AuditEventBuilder
from lifeos_ledger.models.ledger import ReconciliationSnapshot
from lifeos_ledger.services.storage import (
    ConnectionError,
    GoogleSheetsAuditStorage,
    GoogleSheetsSnapshotSource,
    GoogleSheetsTransactionStore,
    InMemoryAuditStorage,
    InMemoryTransactionStore,
    JsonFileSnapshotSource,
    JsonFileTransactionStore,
    StorageError,
)
from lifeos_ledger.services.storage.google_sheets import AUDIT_COLUMNS, TRANSACTION_COLUMNS


class FakeWorksheet:
    """Just enough of gspread.Worksheet for the storage classes."""

    def __init__(self, title, rows=None, fail=False):
        self.title = title
        self.rows = [list(r) for r in rows or []]
        self.fail = fail

    def get_all_values(self, value_render_option=None):
        if self.fail:
            raise RuntimeError("quota exceeded")
        return [list(r) for r in self.rows]

    def append_row(self, row, value_input_option=None):
        if self.fail:
            raise RuntimeError("quota exceeded")
        self.rows.append(list(row))

    def append_rows(self, rows, value_input_option=None):
        for row in rows:
            self.append_row(row, value_input_option)

    def delete_rows(self, index):
        del self.rows[index - 1]


class FakeSheetsClient:
    def __init__(self, transactions=None, ledger=None, audit=None):
        self.transactions = transactions or FakeWorksheet("Transactions", [TRANSACTION_COLUMNS])
        self.ledger = ledger or FakeWorksheet("Input", [["header"]])
        self.audit = audit or FakeWorksheet("AuditLog", [AUDIT_COLUMNS])

    def get_transactions_sheet(self):
        return self.transactions

    def get_ledger_sheet(self):
        return self.ledger

    def get_audit_sheet(self):
        return self.audit


class TestInMemoryStore:
    """Tests for the in-memory transaction store."""

    @pytest.mark.asyncio
    async def test_add_list_remove(self):
        store = InMemoryTransactionStore()
        added = await store.add_many([make_tx("a", 10), make_tx("b", 20)])
        assert added == 2
        assert {t.id for t in await store.list_transactions()} == {"a", "b"}

        removed = await store.remove_by_ids(["a", "missing"])
        assert removed == 1
        assert [t.id for t in await store.list_transactions()] == ["b"]

    @pytest.mark.asyncio
    async def test_get_by_id(self):
        store = InMemoryTransactionStore()
        await store.add_many([make_tx("a", 10)])
        assert (await store.get_by_id("a")).amount == Decimal("10")
        assert await store.get_by_id("zzz") is None

    @pytest.mark.asyncio
    async def test_list_transactions_fails_on_malformed_record(self):
        store = InMemoryTransactionStore([{"id": "x", "amount": "oops"}])
        with pytest.raises(MalformedTransaction):
            await store.list_transactions()

    @pytest.mark.asyncio
    async def test_list_records_returns_copies(self):
        store = InMemoryTransactionStore([{"id": "x"}])
        records = await store.list_records()
        records[0]["id"] = "changed"
        assert (await store.list_records())[0]["id"] == "x"

    @pytest.mark.asyncio
    async def test_removing_unknown_ids_is_not_an_error(self):
        store = InMemoryTransactionStore()
        await store.add_many([make_tx("a", 10)])
        assert await store.remove_by_ids(["zzz"]) == 0
        assert len(store) == 1


class TestStorageErrors:
    """Tests for the storage exception hierarchy."""

    def test_connection_error_is_a_storage_error(self):
        """Test that callers catching StorageError also see unreachable backends."""
        assert issubclass(ConnectionError, StorageError)
        assert StorageError.__subclasses__() == [ConnectionError]


class TestJsonFileStore:
    """Tests for the local JSON file backend."""

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path):
        store = JsonFileTransactionStore(tmp_path / "none.json")
        assert await store.list_records() == []

    @pytest.mark.asyncio
    async def test_round_trip_keeps_exact_amounts(self, tmp_path):
        path = tmp_path / "data" / "transactions.json"
        store = JsonFileTransactionStore(path)
        await store.add_many([make_tx("a", "4295.75", "income", occurred_at=date(2024, 3, 9))])

        on_disk = json.loads(path.read_text())
        assert on_disk[0]["amount"] == "4295.75"
        assert on_disk[0]["date"] == "2024-03-09"

        reopened = JsonFileTransactionStore(path)
        [tx] = await reopened.list_transactions()
        assert tx.amount == Decimal("4295.75")

    @pytest.mark.asyncio
    async def test_remove_by_ids(self, tmp_path):
        store = JsonFileTransactionStore(tmp_path / "t.json")
        await store.add_many([make_tx("a", 1), make_tx("b", 2), make_tx("c", 3)])
        assert await store.remove_by_ids(["b", "nope"]) == 1
        assert [r["id"] for r in await store.list_records()] == ["a", "c"]

    @pytest.mark.asyncio
    async def test_corrupt_file(self, tmp_path):
        path = tmp_path / "t.json"
        path.write_text("{not json")
        with pytest.raises(StorageError):
            await JsonFileTransactionStore(path).list_records()

    @pytest.mark.asyncio
    async def test_object_instead_of_array(self, tmp_path):
        path = tmp_path / "t.json"
        path.write_text('{"id": "a"}')
        with pytest.raises(StorageError):
            await JsonFileTransactionStore(path).list_records()

    @pytest.mark.asyncio
    async def test_snapshot_source(self, tmp_path):
        path = tmp_path / "snapshots.json"
        path.write_text(json.dumps([
            {"account": "Cash", "expected_balance": "173500", "as_of": "2024-06-30"},
            {"account": "Bank", "expected_balance": "451802.45"},
        ]))
        snapshots = await JsonFileSnapshotSource(path).read_snapshots()
        assert snapshots[0] == ReconciliationSnapshot(
            account="Cash",
            expected_balance=Decimal("173500"),
            as_of=date(2024, 6, 30),
        )
        assert snapshots[1].expected_balance == Decimal("451802.45")

    @pytest.mark.asyncio
    async def test_invalid_snapshot(self, tmp_path):
        path = tmp_path / "snapshots.json"
        path.write_text(json.dumps([{"account": "Cash"}]))
        with pytest.raises(StorageError):
            await JsonFileSnapshotSource(path).read_snapshots()


class TestGoogleSheetsStore:
    """Tests for the Google Sheets backend against a fake worksheet."""

    @pytest.mark.asyncio
    async def test_add_and_list(self):
        client = FakeSheetsClient()
        store = GoogleSheetsTransactionStore(client)
        assert await store.add_many([make_tx("a", "30000", description="Rent")]) == 1

        assert client.transactions.rows[1][:5] == ["a", "Cash", "expense", "30000", "2024-01-01"]
        [tx] = await store.list_transactions()
        assert tx.description == "Rent"
        assert tx.subcategory is None

    @pytest.mark.asyncio
    async def test_blank_rows_ignored(self):
        sheet = FakeWorksheet("Transactions", [
            TRANSACTION_COLUMNS,
            ["a", "Cash", "income", "10", "2024-01-01", "", "", ""],
            ["", "", "", "", "", "", "", ""],
        ])
        store = GoogleSheetsTransactionStore(FakeSheetsClient(transactions=sheet))
        assert len(await store.list_records()) == 1

    @pytest.mark.asyncio
    async def test_remove_by_ids_bottom_up(self):
        sheet = FakeWorksheet("Transactions", [
            TRANSACTION_COLUMNS,
            ["a", "Cash", "income", "10", "2024-01-01"],
            ["b", "Cash", "income", "20", "2024-01-01"],
            ["c", "Cash", "income", "30", "2024-01-01"],
        ])
        store = GoogleSheetsTransactionStore(FakeSheetsClient(transactions=sheet))
        assert await store.remove_by_ids(["a", "c"]) == 2
        assert [row[0] for row in sheet.rows] == ["id", "b"]

    @pytest.mark.asyncio
    async def test_remove_failure_wrapped(self):
        sheet = FakeWorksheet("Transactions", fail=True)
        store = GoogleSheetsTransactionStore(FakeSheetsClient(transactions=sheet))
        with pytest.raises(StorageError):
            await store.remove_by_ids(["a"])

    @pytest.mark.asyncio
    async def test_snapshots_from_ledger_sheet(self):
        ledger = FakeWorksheet("Input", [
            ["No", "Year", "Month", "Date", "Description", "Category", "Income",
             "Expenses", "Source", "Cash", "Bank", "Mobile", "Inv"],
            [1, 2024, "Jun", 45473, "Salary", "Work", 100000, "", "Cash",
             173500, 451802.45, 305653, 0],
            ["", "", "", "", "", "", "", "", "", "", "", "", ""],
        ])
        source = GoogleSheetsSnapshotSource(FakeSheetsClient(ledger=ledger))
        snapshots = {s.account: s for s in await source.read_snapshots()}
        assert snapshots["Cash"].expected_balance == Decimal("173500")
        assert snapshots["Bank"].expected_balance == Decimal("451802.45")
        assert snapshots["Mobile"].expected_balance == Decimal("305653")
        assert snapshots["Cash"].as_of == date(2024, 6, 30)


class TestAuditStorage:
    """Tests for audit storage backends."""

    @pytest.mark.asyncio
    async def test_in_memory_by_correlation_id(self):
        storage = InMemoryAuditStorage()
        correlation_id = uuid4()
        await storage.append_event(AuditEventBuilder.duplicate_removed("t3", "keep_earliest_id", correlation_id))
        await storage.append_event(AuditEventBuilder.duplicate_removed("t9", "keep_earliest_id", uuid4()))
        events = await storage.get_events_by_correlation_id(correlation_id)
        assert [e.entity_id for e in events] == ["t3"]
        assert len(await storage.get_recent_events(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_sheets_round_trip(self):
        client = FakeSheetsClient()
        storage = GoogleSheetsAuditStorage(client)
        correlation_id = uuid4()
        event = AuditEventBuilder.reconciliation_mismatch(
            account="Cash",
            computed="173400",
            expected="173500",
            delta="-100",
            correlation_id=correlation_id,
        )
        assert await storage.append_event(event) is True

        [loaded] = await storage.get_events_by_correlation_id(correlation_id)
        assert loaded.event_id == event.event_id
        assert loaded.entity_id == "Cash"
        assert loaded.details["delta"] == "-100"

    @pytest.mark.asyncio
    async def test_sheets_write_failure_does_not_raise(self):
        client = FakeSheetsClient(audit=FakeWorksheet("AuditLog", fail=True))
        storage = GoogleSheetsAuditStorage(client)
        event = AuditEventBuilder.system_error("Boom", "it broke")
        assert await storage.append_event(event) is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
