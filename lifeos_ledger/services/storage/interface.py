"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a local file or a real database
2. Use in-memory storage for testing
3. Pass the store into every workflow instead of reaching for a global

The interface is intentionally small. The store keeps records; it does not
validate them, order them or enforce id uniqueness. The import workflow
checks ids before calling add_many.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any, Optional
from uuid import UUID

from lifeos_ledger.models.audit import AuditEvent
from lifeos_ledger.models.ledger import ReconciliationSnapshot, Transaction
from lifeos_ledger.validation.normalizer import normalize_record


class TransactionStoreInterface(ABC):
    """
    Abstract interface for transaction storage.

    Any storage implementation (local JSON, Google Sheets, ...) must
    implement the abstract methods.
    """

    @abstractmethod
    async def list_records(self) -> list[dict[str, Any]]:
        """
        Return every persisted record as it is stored.

        Returns:
            Raw records, in no guaranteed order

        Raises:
            StorageError: If the backend can't be read
        """
        pass

    async def list_transactions(self) -> list[Transaction]:
        """
        Return every stored record as a canonical Transaction.

        Raises:
            MalformedTransaction: On the first record that can't be normalized
            StorageError: If the backend can't be read
        """
        return [normalize_record(record) for record in await self.list_records()]

    @abstractmethod
    async def add_many(self, transactions: Iterable[Transaction]) -> int:
        """
        Persist transactions.

        Args:
            transactions: Canonical transactions. Ids are not checked here.

        Returns:
            Number of transactions written
        """
        pass

    @abstractmethod
    async def remove_by_ids(self, ids: Iterable[str]) -> int:
        """
        Delete transactions by id.

        Ids that are not stored are ignored.

        Returns:
            Number of records actually removed
        """
        pass

    async def get_by_id(self, transaction_id: str) -> Optional[Transaction]:
        """
        Read one transaction by id.

        Backends with an index should override this.

        Returns:
            The transaction if stored, None otherwise
        """
        for record in await self.list_records():
            if str(record.get("id", "")).strip() == transaction_id:
                return normalize_record(record)
        return None


class SnapshotSourceInterface(ABC):
    """
    Where trusted balances come from.

    Read-only. Snapshots are never written back by this system.
    """

    @abstractmethod
    async def read_snapshots(self) -> list[ReconciliationSnapshot]:
        """
        Read the latest externally trusted balances.

        Returns:
            One or more snapshots per account
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one reconciliation run).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
