"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Backends: in-memory (tests), local JSON files (default) and Google Sheets.
"""

from lifeos_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    SnapshotSourceInterface,
    StorageError,
    TransactionStoreInterface,
)
from lifeos_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemorySnapshotSource,
    InMemoryTransactionStore,
)
from lifeos_ledger.services.storage.json_file import (
    JsonFileSnapshotSource,
    JsonFileTransactionStore,
)
from lifeos_ledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsSnapshotSource,
    GoogleSheetsTransactionStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "SnapshotSourceInterface",
    "TransactionStoreInterface",
    # Exceptions
    "ConnectionError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemorySnapshotSource",
    "InMemoryTransactionStore",
    # Local JSON implementation
    "JsonFileSnapshotSource",
    "JsonFileTransactionStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsSnapshotSource",
    "GoogleSheetsTransactionStore",
]
