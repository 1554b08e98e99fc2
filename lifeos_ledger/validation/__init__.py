"""Record normalization package."""

from lifeos_ledger.validation.normalizer import (
    DEFAULT_BALANCE_COLUMNS,
    LEDGER_COLUMNS,
    NormalizationResult,
    derive_transaction_id,
    latest_sheet_balances,
    normalize_ledger_rows,
    normalize_record,
    normalize_records,
    parse_amount,
    parse_date,
    rows_from_values,
)

__all__ = [
    "DEFAULT_BALANCE_COLUMNS",
    "LEDGER_COLUMNS",
    "NormalizationResult",
    "derive_transaction_id",
    "latest_sheet_balances",
    "normalize_ledger_rows",
    "normalize_record",
    "normalize_records",
    "parse_amount",
    "parse_date",
    "rows_from_values",
]
