"""
Ledger Package

Pure computations over canonical transactions: aggregation, duplicate
detection and reconciliation. Nothing here talks to storage except
DuplicateDetector.apply_removals, which receives its store as an argument.
"""

from lifeos_ledger.ledger.errors import (
    DuplicateAmbiguity,
    LedgerError,
    MalformedTransaction,
    UnknownAccount,
)
from lifeos_ledger.ledger.aggregator import (
    AggregationResult,
    LedgerAggregator,
    summarize,
)
from lifeos_ledger.ledger.duplicates import (
    DuplicateDetector,
    exact_duplicate_key,
    remaining_after,
)
from lifeos_ledger.ledger.reconciliation import ReconciliationReporter

__all__ = [
    # Errors
    "DuplicateAmbiguity",
    "LedgerError",
    "MalformedTransaction",
    "UnknownAccount",
    # Aggregation
    "AggregationResult",
    "LedgerAggregator",
    "summarize",
    # Duplicates
    "DuplicateDetector",
    "exact_duplicate_key",
    "remaining_after",
    # Reconciliation
    "ReconciliationReporter",
]
