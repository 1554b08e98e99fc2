"""
Local JSON File Storage

DESIGN DECISION: The default backend is a plain JSON file so the ledger can
be inspected and versioned without any service account.

FORMAT:
- transactions file: a JSON array of records (ISO dates, decimal strings)
- snapshots file: a JSON array of {"account", "expected_balance", "as_of"}

Writes go to a temporary file that replaces the original, so an
interrupted write never leaves half a ledger behind.
"""

import json
import os
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from lifeos_ledger.models.ledger import ReconciliationSnapshot, Transaction
from lifeos_ledger.services.storage.interface import (
    SnapshotSourceInterface,
    StorageError,
    TransactionStoreInterface,
)


logger = structlog.get_logger(__name__)


def _read_array(path: Path) -> list[Any]:
    """Read a JSON array; a missing file is an empty collection."""
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8") or "[]")
    except (OSError, json.JSONDecodeError) as e:
        raise StorageError(f"Failed to read {path}: {e}")
    if not isinstance(data, list):
        raise StorageError(f"{path} must contain a JSON array")
    return data


class JsonFileTransactionStore(TransactionStoreInterface):
    """Transactions persisted as a JSON array in one local file."""

    def __init__(self, path: Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _write(self, records: list[dict[str, Any]]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(json.dumps(records, indent=2), encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as e:
            raise StorageError(f"Failed to write {self._path}: {e}")

    async def list_records(self) -> list[dict[str, Any]]:
        records = _read_array(self._path)
        for record in records:
            if not isinstance(record, dict):
                raise StorageError(f"{self._path} holds a non-object record: {record!r}")
        return records

    async def add_many(self, transactions: Iterable[Transaction]) -> int:
        new_records = [t.to_record() for t in transactions]
        if not new_records:
            return 0
        records = await self.list_records()
        records.extend(new_records)
        self._write(records)
        logger.info("transactions_written", path=str(self._path), count=len(new_records))
        return len(new_records)

    async def remove_by_ids(self, ids: Iterable[str]) -> int:
        targets = set(ids)
        if not targets:
            return 0
        records = await self.list_records()
        kept = [r for r in records if str(r.get("id", "")).strip() not in targets]
        removed = len(records) - len(kept)
        if removed:
            self._write(kept)
        return removed


class JsonFileSnapshotSource(SnapshotSourceInterface):
    """Trusted balances read from a local JSON file."""

    def __init__(self, path: Path):
        self._path = Path(path)

    async def read_snapshots(self) -> list[ReconciliationSnapshot]:
        snapshots = []
        for entry in _read_array(self._path):
            try:
                snapshots.append(ReconciliationSnapshot.model_validate(entry))
            except ValidationError as e:
                raise StorageError(f"Invalid snapshot in {self._path}: {e}")
        return snapshots
