"""
Record Normalization

DESIGN DECISION: Raw records become Transactions in exactly one place.

Everything downstream (duplicate detection, aggregation, reconciliation)
only ever sees canonical Transactions:
- amount is a Decimal and never negative
- the direction carries the sign
- the date is a calendar date

A negative expense of X ("expense correction" in the spreadsheet) becomes
an income of |X|, and a negative income becomes an expense. Because a
Transaction cannot hold a negative amount, a second normalization pass is
impossible and nothing is counted twice.

IMPORTANT: Normalization NEVER silently drops a record. Records it cannot
use are reported as LedgerIssues next to the transactions it could.
"""

import re
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from lifeos_ledger.ledger.errors import MalformedTransaction
from lifeos_ledger.models.ledger import (
    Direction,
    IssueKind,
    LedgerIssue,
    ReconciliationSnapshot,
    Transaction,
    as_decimal,
)


# Spreadsheet serial day 0
SHEET_EPOCH = date(1899, 12, 30)

# Column order of the personal finance sheet's "Input" tab
LEDGER_COLUMNS = [
    "entry_no",
    "year",
    "month",
    "date",
    "description",
    "category",
    "income",
    "expenses",
    "source",
    "cash_balance",
    "bank_balance",
    "mobile_balance",
    "inv_balance",
]

# Running balance columns tracked by the sheet -> reporting account
DEFAULT_BALANCE_COLUMNS = {
    "cash_balance": "Cash",
    "bank_balance": "Bank",
    "mobile_balance": "Mobile",
}

_ID_UNSAFE = re.compile(r"[^a-zA-Z0-9\-_]")


class NormalizationResult(BaseModel):
    """Transactions that made it through, plus everything that didn't."""

    transactions: list[Transaction] = Field(default_factory=list)
    issues: list[LedgerIssue] = Field(default_factory=list)

    @property
    def rejected_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == "error")


# =============================================================================
# FIELD PARSERS
# =============================================================================

def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_amount(value: Any) -> Decimal:
    """
    Parse an amount into a Decimal.

    Floats go through str() so 0.1 stays 0.1. Thousands separators in
    strings are removed.

    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValueError(f"Not an amount: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = as_decimal(value)
    elif isinstance(value, str):
        cleaned = value.strip().replace(",", "").replace(" ", "")
        try:
            result = Decimal(cleaned)
        except InvalidOperation:
            raise ValueError(f"Not an amount: {value!r}")
    else:
        raise ValueError(f"Not an amount: {value!r}")

    if not result.is_finite():
        raise ValueError(f"Not an amount: {value!r}")
    return result


def sheet_serial_to_date(serial: float) -> date:
    """Convert a spreadsheet serial day number to a date."""
    try:
        return SHEET_EPOCH + timedelta(days=int(serial))
    except (OverflowError, ValueError):
        raise ValueError(f"Not a date serial: {serial!r}")


def parse_date(value: Any) -> date:
    """
    Parse a transaction date.

    Accepts date/datetime objects, ISO-8601 strings (date-only or full
    timestamps, with or without a trailing Z) and spreadsheet serial
    numbers. Time of day is discarded.

    Raises:
        ValueError: If the value can't be read as a date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Not a date: {value!r}")
    if isinstance(value, (int, float)):
        return sheet_serial_to_date(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            pass
        try:
            return sheet_serial_to_date(float(text))
        except ValueError:
            pass
    raise ValueError(f"Not a date: {value!r}")


def parse_direction(value: Any) -> Direction:
    try:
        return Direction(str(value).strip().lower())
    except ValueError:
        raise ValueError(f"Direction must be 'income' or 'expense', got {value!r}")


def derive_transaction_id(
    entry_no: Any,
    occurred_at: date,
    direction: Direction,
    amount: Decimal,
    description: str,
) -> str:
    """
    Build a stable id for a spreadsheet row.

    The same row always gets the same id, so importing a sheet twice
    produces nothing new the second time.
    """
    raw = (
        f"{entry_no}-{occurred_at.isoformat()}-{direction.value}-"
        f"{format(amount, 'f')}-{description[:20]}"
    )
    return _ID_UNSAFE.sub("_", raw)


def _canonical(direction: Direction, amount: Decimal) -> tuple[Direction, Decimal]:
    if amount < 0:
        return direction.opposite, -amount
    return direction, amount


def _first_present(record: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = record.get(key)
        if not _is_blank(value):
            return value
    return None


# =============================================================================
# STORED RECORDS
# =============================================================================

def normalize_record(record: Mapping[str, Any]) -> Transaction:
    """
    Turn one persisted record into a canonical Transaction.

    Recognised keys: id, account, direction (or type), amount,
    occurred_at (or date), description, category, subcategory.

    Raises:
        MalformedTransaction: If a required field is missing or unreadable
    """
    record_id = _first_present(record, "id")
    record_id = str(record_id).strip() if record_id is not None else None

    missing = []
    if record_id is None:
        missing.append("id")
    account = _first_present(record, "account")
    if account is None:
        missing.append("account")
    raw_amount = _first_present(record, "amount")
    if raw_amount is None:
        missing.append("amount")
    raw_date = _first_present(record, "occurred_at", "date")
    if raw_date is None:
        missing.append("occurred_at")
    raw_direction = _first_present(record, "direction", "type")
    if raw_direction is None:
        missing.append("direction")

    if missing:
        raise MalformedTransaction(
            f"Missing required field(s): {', '.join(missing)}",
            record_id=record_id,
            account=str(account) if account is not None else None,
            details={"missing": missing},
        )

    try:
        amount = parse_amount(raw_amount)
        occurred_at = parse_date(raw_date)
        direction = parse_direction(raw_direction)
    except ValueError as e:
        raise MalformedTransaction(str(e), record_id=record_id, account=str(account))

    direction, amount = _canonical(direction, amount)

    try:
        return Transaction(
            id=record_id,
            account=str(account),
            direction=direction,
            amount=amount,
            occurred_at=occurred_at,
            description=str(record.get("description") or ""),
            category=str(record.get("category") or ""),
            subcategory=record.get("subcategory") or None,
        )
    except ValidationError as e:
        raise MalformedTransaction(
            f"Invalid transaction: {e.errors()[0]['msg']}",
            record_id=record_id,
            account=str(account),
        )


def _zero_amount_issue(transaction: Transaction) -> LedgerIssue:
    return LedgerIssue(
        kind=IssueKind.ZERO_AMOUNT,
        severity="warning",
        message="Zero amount carries no money and was excluded",
        record_id=transaction.id,
        account=transaction.account,
    )


def normalize_records(records: Iterable[Mapping[str, Any]]) -> NormalizationResult:
    """
    Normalize a batch of stored records.

    Malformed records and zero amounts are excluded and reported.
    """
    result = NormalizationResult()
    for record in records:
        try:
            transaction = normalize_record(record)
        except MalformedTransaction as e:
            result.issues.append(e.to_issue())
            continue
        if transaction.amount == 0:
            result.issues.append(_zero_amount_issue(transaction))
            continue
        result.transactions.append(transaction)
    return result


# =============================================================================
# SPREADSHEET LEDGER ROWS
# =============================================================================

def rows_from_values(
    values: Sequence[Sequence[Any]],
    columns: Sequence[str] = LEDGER_COLUMNS,
) -> list[dict[str, Any]]:
    """Map positional sheet rows (no header) to dicts keyed by column name."""
    rows = []
    for raw in values:
        row = {}
        for idx, name in enumerate(columns):
            row[name] = raw[idx] if idx < len(raw) else ""
        rows.append(row)
    return rows


def _row_is_blank(row: Mapping[str, Any]) -> bool:
    return all(
        _is_blank(row.get(key))
        for key in ("date", "description", "income", "expenses")
    )


def normalize_ledger_row(row: Mapping[str, Any], index: int) -> Transaction:
    """
    Turn one row of the finance sheet into a Transaction.

    Income wins when present; otherwise the expenses column is used.
    The source column names the ledger account.

    Raises:
        MalformedTransaction: If the row can't be read
    """
    entry_no = row.get("entry_no")
    if _is_blank(entry_no):
        entry_no = index
    label = f"row-{index}"
    description = str(row.get("description") or "").strip()

    raw_date = row.get("date")
    if _is_blank(raw_date):
        raise MalformedTransaction(
            "Missing required field(s): occurred_at",
            record_id=label,
            details={"row": index},
        )

    try:
        occurred_at = parse_date(raw_date)
        if not _is_blank(row.get("income")) and parse_amount(row["income"]) != 0:
            direction, amount = Direction.INCOME, parse_amount(row["income"])
        elif not _is_blank(row.get("expenses")):
            direction, amount = Direction.EXPENSE, parse_amount(row["expenses"])
        else:
            direction, amount = Direction.EXPENSE, Decimal("0")
    except ValueError as e:
        raise MalformedTransaction(str(e), record_id=label, details={"row": index})

    direction, amount = _canonical(direction, amount)

    account = row.get("source")
    if _is_blank(account):
        raise MalformedTransaction(
            "Missing required field(s): account",
            record_id=label,
            details={"row": index},
        )

    month = row.get("month")
    try:
        return Transaction(
            id=derive_transaction_id(entry_no, occurred_at, direction, amount, description),
            account=str(account).strip(),
            direction=direction,
            amount=amount,
            occurred_at=occurred_at,
            description=description,
            category=str(row.get("category") or ""),
            subcategory=str(month).strip() if not _is_blank(month) else None,
        )
    except ValidationError as e:
        raise MalformedTransaction(
            f"Invalid transaction: {e.errors()[0]['msg']}",
            record_id=label,
            account=str(account),
            details={"row": index},
        )


def normalize_ledger_rows(rows: Iterable[Mapping[str, Any]]) -> NormalizationResult:
    """
    Normalize the finance sheet's rows.

    Fully blank rows are layout, not data, and are skipped. Every other
    row either becomes a Transaction or an issue.
    """
    result = NormalizationResult()
    for index, row in enumerate(rows, start=1):
        if _row_is_blank(row):
            continue
        try:
            transaction = normalize_ledger_row(row, index)
        except MalformedTransaction as e:
            result.issues.append(e.to_issue())
            continue
        if transaction.amount == 0:
            result.issues.append(_zero_amount_issue(transaction))
            continue
        result.transactions.append(transaction)
    return result


def latest_sheet_balances(
    rows: Sequence[Mapping[str, Any]],
    columns: Optional[Mapping[str, str]] = None,
) -> list[ReconciliationSnapshot]:
    """
    Read the sheet's last recorded balance for each balance column.

    Scans from the bottom; the first readable value of a column wins and
    that row's date becomes the snapshot's as-of date. Columns that never
    hold a value produce no snapshot.
    """
    columns = columns or DEFAULT_BALANCE_COLUMNS
    found: dict[str, ReconciliationSnapshot] = {}

    for row in reversed(rows):
        for column, account in columns.items():
            if column in found or _is_blank(row.get(column)):
                continue
            try:
                balance = parse_amount(row[column])
            except ValueError:
                continue
            try:
                as_of = parse_date(row.get("date")) if not _is_blank(row.get("date")) else None
            except ValueError:
                as_of = None
            found[column] = ReconciliationSnapshot(
                account=account,
                expected_balance=balance,
                as_of=as_of,
            )
        if len(found) == len(columns):
            break

    return [found[column] for column in columns if column in found]
