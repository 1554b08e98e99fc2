"""
In-Memory Storage Implementation

Backs the "memory" backend and the test suite. Records are held as the
same dicts a persistent backend would write, so normalization runs on
read exactly as it does against a file or a sheet.
"""

from collections.abc import Iterable
from typing import Any, Optional
from uuid import UUID

from lifeos_ledger.models.audit import AuditEvent
from lifeos_ledger.models.ledger import ReconciliationSnapshot, Transaction
from lifeos_ledger.services.storage.interface import (
    AuditStorageInterface,
    SnapshotSourceInterface,
    TransactionStoreInterface,
)


class InMemoryTransactionStore(TransactionStoreInterface):
    """Transaction store kept in a Python list, in insertion order."""

    def __init__(self, records: Optional[Iterable[dict[str, Any]]] = None):
        """
        Args:
            records: Raw records to start with. Not validated, so tests can
                    seed malformed data.
        """
        self._records: list[dict[str, Any]] = [dict(r) for r in records or []]

    async def list_records(self) -> list[dict[str, Any]]:
        return [dict(r) for r in self._records]

    async def add_many(self, transactions: Iterable[Transaction]) -> int:
        added = 0
        for transaction in transactions:
            self._records.append(transaction.to_record())
            added += 1
        return added

    async def remove_by_ids(self, ids: Iterable[str]) -> int:
        targets = set(ids)
        before = len(self._records)
        self._records = [
            r for r in self._records if str(r.get("id", "")).strip() not in targets
        ]
        return before - len(self._records)

    def __len__(self) -> int:
        return len(self._records)


class InMemorySnapshotSource(SnapshotSourceInterface):
    """Fixed list of snapshots."""

    def __init__(self, snapshots: Optional[Iterable[ReconciliationSnapshot]] = None):
        self._snapshots = list(snapshots or [])

    async def read_snapshots(self) -> list[ReconciliationSnapshot]:
        return list(self._snapshots)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in memory."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]
