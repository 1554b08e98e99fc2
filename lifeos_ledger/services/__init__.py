"""Services package."""

from lifeos_ledger.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsSnapshotSource,
    GoogleSheetsTransactionStore,
    InMemoryAuditStorage,
    InMemorySnapshotSource,
    InMemoryTransactionStore,
    JsonFileSnapshotSource,
    JsonFileTransactionStore,
    SnapshotSourceInterface,
    StorageError,
    TransactionStoreInterface,
)

__all__ = [
    "AuditStorageInterface",
    "ConnectionError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsSnapshotSource",
    "GoogleSheetsTransactionStore",
    "InMemoryAuditStorage",
    "InMemorySnapshotSource",
    "InMemoryTransactionStore",
    "JsonFileSnapshotSource",
    "JsonFileTransactionStore",
    "SnapshotSourceInterface",
    "StorageError",
    "TransactionStoreInterface",
]
