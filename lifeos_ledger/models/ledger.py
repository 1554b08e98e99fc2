"""
Core Data Models for LifeOS Ledger

These models define the strict schemas for all data flowing through the
reconciliation pipeline. They are designed to:
1. Enforce type safety at runtime
2. Keep money in Decimal from the store to the report
3. Be serializable for storage and logging
4. Support the audit trail

DESIGN DECISION: A Transaction is canonical by construction. Its amount is
never negative; the direction carries the sign. Raw records are turned into
Transactions exactly once, by the normalizer.
"""

import csv
import io
import json
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
)


MINOR_UNIT = Decimal("0.01")


def as_decimal(value: Any) -> Decimal:
    """
    Convert a number to Decimal without binary float artefacts.

    Floats go through str(), so 451802.45 stays 451802.45.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def quantize_minor(amount: Decimal, exponent: Decimal = MINOR_UNIT) -> Decimal:
    """
    Round an amount to the currency's minor unit.

    Presentation only. Nothing in the aggregation path calls this.
    """
    return amount.quantize(exponent, rounding=ROUND_HALF_UP)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Direction(str, Enum):
    """Which way money moves for a transaction."""
    INCOME = "income"
    EXPENSE = "expense"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.INCOME else -1

    @property
    def opposite(self) -> "Direction":
        return Direction.EXPENSE if self is Direction.INCOME else Direction.INCOME


class IssueKind(str, Enum):
    """Kinds of problems collected during a batch run."""
    MALFORMED_TRANSACTION = "malformed_transaction"
    UNKNOWN_ACCOUNT = "unknown_account"
    DUPLICATE_AMBIGUITY = "duplicate_ambiguity"
    ZERO_AMOUNT = "zero_amount"


class ReconciliationStatus(str, Enum):
    """Outcome of comparing one account against the ground truth."""
    MATCHED = "matched"
    MISMATCH = "mismatch"              # Delta exceeds tolerance
    MISSING_COMPUTED = "missing_computed"  # Ground truth has an account we never saw
    MISSING_EXPECTED = "missing_expected"  # We computed an account the ground truth lacks


class ResolutionPolicy(str, Enum):
    """
    How an exact duplicate group is resolved.

    CRITICAL: No policy deletes anything by itself. A policy only produces
    a RemovalPlan which the caller applies explicitly.
    """
    KEEP_EARLIEST_ID = "keep_earliest_id"  # Smallest id as a string: "10" < "9"
    KEEP_FIRST_INSERTED = "keep_first_inserted"
    MANUAL_REVIEW = "manual_review"


# =============================================================================
# CORE TRANSACTION MODEL
# =============================================================================

class Transaction(BaseModel):
    """
    A single monetary event on one ledger account.

    Transactions are never mutated in place. Corrections are new entries.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: str = Field(
        ...,
        min_length=1,
        description="Unique, opaque identifier"
    )
    account: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Ledger account name (e.g. Cash, NMB Main A/C)"
    )
    direction: Direction = Field(
        ...,
        description="Income or expense"
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Non-negative amount in currency units"
    )
    occurred_at: date = Field(
        ...,
        description="Date of the transaction (date-only precision)"
    )
    description: str = Field(
        default="",
        max_length=500,
        description="Free text description"
    )
    category: str = Field(
        default="",
        max_length=100,
        description="Free text category label"
    )
    subcategory: Optional[str] = Field(
        default=None,
        max_length=100,
    )

    @property
    def signed_amount(self) -> Decimal:
        """Amount with the direction's sign applied."""
        return self.amount * self.direction.sign

    def to_record(self) -> dict[str, Any]:
        """
        Convert to the persisted record shape.

        Dates are ISO-8601 strings, amounts are decimal strings and the
        direction is stored under ``type`` as the hosted collection does.
        """
        record = {
            "id": self.id,
            "account": self.account,
            "type": self.direction.value,
            "amount": str(self.amount),
            "date": self.occurred_at.isoformat(),
            "description": self.description,
            "category": self.category,
        }
        if self.subcategory:
            record["subcategory"] = self.subcategory
        return record


# =============================================================================
# BALANCE MODELS
# =============================================================================

class AccountBalance(BaseModel):
    """
    Derived balance of one ledger account.

    Never independently mutated. Recomputed on demand from transactions.
    """

    account: str
    opening_balance: Decimal = Decimal("0")
    balance: Decimal
    total_income: Decimal = Decimal("0")
    total_expense: Decimal = Decimal("0")
    transaction_count: int = Field(default=0, ge=0)
    last_activity: Optional[date] = None


class RunningBalancePoint(BaseModel):
    """Balance of an account right after one transaction was folded in."""

    transaction_id: str
    occurred_at: date
    signed_amount: Decimal
    balance: Decimal


class LedgerSummary(BaseModel):
    """Totals over a set of transactions, regardless of account."""

    total_income: Decimal = Decimal("0")
    total_expense: Decimal = Decimal("0")
    transaction_count: int = 0
    first_date: Optional[date] = None
    last_date: Optional[date] = None

    @computed_field
    @property
    def net(self) -> Decimal:
        return self.total_income - self.total_expense


# =============================================================================
# ISSUE MODEL
# =============================================================================

class LedgerIssue(BaseModel):
    """
    A problem found while processing a batch.

    Issues travel alongside partial results. A run that aggregated 47 of 50
    transactions reports the other 3 here.
    """

    kind: IssueKind
    severity: str = Field(
        default="error",
        pattern="^(error|warning)$",
    )
    message: str
    record_id: Optional[str] = None
    account: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# DUPLICATE MODELS
# =============================================================================

class DuplicateGroup(BaseModel):
    """
    Transactions sharing the same description, calendar date and amount.

    Members keep their input (insertion) order and have distinct ids.
    """

    description: str
    occurred_at: date
    amount: Decimal
    transactions: list[Transaction] = Field(..., min_length=2)

    @property
    def ids(self) -> list[str]:
        return [t.id for t in self.transactions]

    @property
    def size(self) -> int:
        return len(self.transactions)


class NearDuplicateGroup(BaseModel):
    """
    Transactions with the same amount inside a short date window but with
    different descriptions.

    CRITICAL: This is a weak heuristic. A group can only be resolved by an
    explicit manual decision.
    """

    amount: Decimal
    window_start: date
    window_end: date
    transactions: list[Transaction] = Field(..., min_length=2)
    requires_confirmation: bool = True

    @property
    def ids(self) -> list[str]:
        return [t.id for t in self.transactions]


class RemovalPlan(BaseModel):
    """Which ids to keep and which to delete, before anything is deleted."""

    policy: Optional[ResolutionPolicy] = None
    keep_ids: list[str] = Field(default_factory=list)
    remove_ids: list[str] = Field(default_factory=list)
    pending_review: list[DuplicateGroup] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.remove_ids


class RemovalOutcome(BaseModel):
    """What actually happened when a RemovalPlan was applied."""

    removed_ids: list[str] = Field(default_factory=list)
    skipped_ids: list[str] = Field(
        default_factory=list,
        description="Ids already absent from the store when re-read"
    )


# =============================================================================
# RECONCILIATION MODELS
# =============================================================================

class ReconciliationSnapshot(BaseModel):
    """
    An externally trusted balance, e.g. the spreadsheet's last figure.

    Read-only input to the reconciliation reporter.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    account: str = Field(..., min_length=1)
    expected_balance: Decimal
    as_of: Optional[date] = None


class ReconciliationLine(BaseModel):
    """Computed against expected for one account."""

    account: str
    computed: Decimal
    expected: Decimal
    delta: Decimal
    status: ReconciliationStatus
    as_of: Optional[date] = None

    @property
    def is_mismatch(self) -> bool:
        return self.status is not ReconciliationStatus.MATCHED

    def to_record(self) -> dict[str, Any]:
        """Rounded, string-valued record for output."""
        return {
            "account": self.account,
            "computed": str(quantize_minor(self.computed)),
            "expected": str(quantize_minor(self.expected)),
            "delta": str(quantize_minor(self.delta)),
            "status": self.status.value,
            "as_of": self.as_of.isoformat() if self.as_of else None,
        }


REPORT_COLUMNS = ["account", "computed", "expected", "delta", "status", "as_of"]


class ReconciliationReport(BaseModel):
    """
    Result of one reconciliation.

    A mismatch is a finding, not a failure. It is reported here as data.
    """

    lines: list[ReconciliationLine] = Field(default_factory=list)
    tolerance: Decimal = Decimal("0")

    @property
    def mismatches(self) -> list[ReconciliationLine]:
        return [line for line in self.lines if line.is_mismatch]

    @property
    def is_reconciled(self) -> bool:
        return not self.mismatches

    @property
    def total_computed(self) -> Decimal:
        return sum((line.computed for line in self.lines), Decimal("0"))

    @property
    def total_expected(self) -> Decimal:
        return sum((line.expected for line in self.lines), Decimal("0"))

    @property
    def total_delta(self) -> Decimal:
        return self.total_computed - self.total_expected

    def line_for(self, account: str) -> Optional[ReconciliationLine]:
        for line in self.lines:
            if line.account == account:
                return line
        return None

    def to_records(self) -> list[dict[str, Any]]:
        return [line.to_record() for line in self.lines]

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(
            {
                "tolerance": str(self.tolerance),
                "is_reconciled": self.is_reconciled,
                "lines": self.to_records(),
                "totals": {
                    "computed": str(quantize_minor(self.total_computed)),
                    "expected": str(quantize_minor(self.total_expected)),
                    "delta": str(quantize_minor(self.total_delta)),
                },
            },
            indent=indent,
        )

    def to_csv(self) -> str:
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=REPORT_COLUMNS, lineterminator="\n")
        writer.writeheader()
        for record in self.to_records():
            writer.writerow({k: ("" if v is None else v) for k, v in record.items()})
        return buffer.getvalue()

    def to_table(self) -> str:
        """Plain text table for terminals."""
        rows = [REPORT_COLUMNS[:5]]
        for record in self.to_records():
            rows.append([record[col] for col in REPORT_COLUMNS[:5]])
        rows.append([
            "TOTAL",
            str(quantize_minor(self.total_computed)),
            str(quantize_minor(self.total_expected)),
            str(quantize_minor(self.total_delta)),
            "",
        ])
        widths = [max(len(str(row[i])) for row in rows) for i in range(5)]
        lines = []
        for idx, row in enumerate(rows):
            cells = [
                str(cell).ljust(widths[i]) if i in (0, 4) else str(cell).rjust(widths[i])
                for i, cell in enumerate(row)
            ]
            lines.append("  ".join(cells).rstrip())
            if idx == 0 or idx == len(rows) - 2:
                lines.append("  ".join("-" * w for w in widths))
        return "\n".join(lines)
