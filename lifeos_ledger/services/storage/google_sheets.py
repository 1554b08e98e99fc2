"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is a supported backend because:
1. The finance spreadsheet already lives there (it is the ground truth)
2. Non-technical users can view imported transactions directly in Sheets
3. No database setup required

TRADEOFFS:
- Not suitable for high-volume data (we're fine for a personal ledger)
- No transactions (deletes go bottom-up so row numbers stay valid)
- Limited query capabilities (we filter in Python)

Three worksheets are used:
- Transactions: imported transactions, one per row, header in row 1
- Input: the original finance sheet, read-only, source of snapshots
- AuditLog: append-only audit events
"""

import json
from collections.abc import Iterable
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from lifeos_ledger.config import GoogleSheetsSettings, get_settings
from lifeos_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from lifeos_ledger.models.ledger import ReconciliationSnapshot, Transaction
from lifeos_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    SnapshotSourceInterface,
    StorageError,
    TransactionStoreInterface,
)
from lifeos_ledger.validation.normalizer import (
    DEFAULT_BALANCE_COLUMNS,
    LEDGER_COLUMNS,
    latest_sheet_balances,
    rows_from_values,
)


logger = structlog.get_logger(__name__)


# Column mappings for Transactions sheet
TRANSACTION_COLUMNS = [
    "id",
    "account",
    "type",
    "amount",
    "date",
    "description",
    "category",
    "subcategory",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
        return sheet

    def get_transactions_sheet(self) -> gspread.Worksheet:
        """Get or create the Transactions worksheet."""
        return self._get_or_create(
            self._settings.transactions_sheet_name,
            TRANSACTION_COLUMNS,
            rows=2000,
        )

    def get_ledger_sheet(self) -> gspread.Worksheet:
        """Get the finance sheet. Never created: it must already exist."""
        spreadsheet = self.get_spreadsheet()
        try:
            return spreadsheet.worksheet(self._settings.ledger_sheet_name)
        except gspread.WorksheetNotFound:
            raise ConnectionError(
                f"Ledger worksheet not found: {self._settings.ledger_sheet_name}"
            )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )


class GoogleSheetsTransactionStore(TransactionStoreInterface):
    """
    Google Sheets implementation of the transaction store.

    Transactions are stored one per row. Everything is written as RAW text
    so amounts keep their exact decimal representation.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @staticmethod
    def _transaction_to_row(transaction: Transaction) -> list[str]:
        record = transaction.to_record()
        return [str(record.get(column, "") or "") for column in TRANSACTION_COLUMNS]

    @staticmethod
    def _row_to_record(row: list[Any]) -> dict[str, Any]:
        record = {}
        for idx, column in enumerate(TRANSACTION_COLUMNS):
            value = row[idx] if idx < len(row) else ""
            if value != "":
                record[column] = value
        return record

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def list_records(self) -> list[dict[str, Any]]:
        """Read every data row (header excluded)."""
        try:
            sheet = self._client.get_transactions_sheet()
            all_rows = sheet.get_all_values()[1:]
        except ConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")
        return [self._row_to_record(row) for row in all_rows if any(row)]

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def add_many(self, transactions: Iterable[Transaction]) -> int:
        """Append transactions in one API call."""
        rows = [self._transaction_to_row(t) for t in transactions]
        if not rows:
            return 0
        try:
            sheet = self._client.get_transactions_sheet()
            sheet.append_rows(rows, value_input_option="RAW")
        except ConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save transactions: {e}")
        logger.info("transactions_written", sheet=sheet.title, count=len(rows))
        return len(rows)

    async def remove_by_ids(self, ids: Iterable[str]) -> int:
        """Delete matching rows, bottom-up so earlier row numbers stay valid."""
        targets = set(ids)
        if not targets:
            return 0
        try:
            sheet = self._client.get_transactions_sheet()
            all_rows = sheet.get_all_values()

            matches = [
                idx
                for idx, row in enumerate(all_rows[1:], start=2)  # Row 1 is header
                if row and row[0].strip() in targets
            ]
            for idx in reversed(matches):
                sheet.delete_rows(idx)
            return len(matches)
        except ConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete transactions: {e}")


class GoogleSheetsSnapshotSource(SnapshotSourceInterface):
    """
    Reads trusted balances from the finance sheet.

    The sheet keeps running Cash/Bank/Mobile balances in dedicated columns;
    the bottom-most value of each column is the latest trusted balance.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        balance_columns: Optional[dict[str, str]] = None,
    ):
        self._client = client or GoogleSheetsClient()
        self._balance_columns = balance_columns or DEFAULT_BALANCE_COLUMNS

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def read_rows(self) -> list[dict[str, Any]]:
        """Finance sheet rows (header excluded) keyed by ledger column name."""
        try:
            sheet = self._client.get_ledger_sheet()
            values = sheet.get_all_values(value_render_option="UNFORMATTED_VALUE")[1:]
        except ConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read ledger sheet: {e}")
        return rows_from_values(values, LEDGER_COLUMNS)

    async def read_snapshots(self) -> list[ReconciliationSnapshot]:
        rows = await self.read_rows()
        return latest_sheet_balances(rows, self._balance_columns)


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
        )

    def _rows_to_events(self, rows: list[list]) -> list[AuditEvent]:
        events = []
        for row in rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, json.JSONDecodeError) as e:
                logger.warning("audit_row_unreadable", event_id=row[0], error=str(e))
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Audit logging must not break the main flow
            logger.warning("audit_write_failed", event_id=str(event.event_id), error=str(e))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        matching = [row for row in all_rows if len(row) > 6 and row[6] == str(correlation_id)]
        events = self._rows_to_events(matching)
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = self._rows_to_events(all_rows)
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
