"""
Reconciliation Reporter

Compares computed balances against externally trusted ones.

DESIGN DECISION: A mismatch is a finding, not an error. reconcile() never
raises because balances disagree; the disagreement is the report.
"""

from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal
from typing import Optional, Union

import structlog

from lifeos_ledger.models.ledger import (
    ReconciliationLine,
    ReconciliationReport,
    ReconciliationSnapshot,
    ReconciliationStatus,
    as_decimal,
)


logger = structlog.get_logger(__name__)

ExpectedBalances = Union[Iterable[ReconciliationSnapshot], Mapping[str, Decimal]]


def _latest_snapshots(expected: ExpectedBalances) -> list[ReconciliationSnapshot]:
    """
    One snapshot per account, in first-seen order.

    When an account appears more than once the latest as_of wins; a
    snapshot without a date never beats one with a date, and ties go to
    the later entry.
    """
    if isinstance(expected, Mapping):
        return [
            ReconciliationSnapshot(account=account, expected_balance=as_decimal(balance))
            for account, balance in expected.items()
        ]

    chosen: dict[str, ReconciliationSnapshot] = {}
    for snapshot in expected:
        current = chosen.get(snapshot.account)
        if current is None:
            chosen[snapshot.account] = snapshot
            continue
        if current.as_of is not None and (
            snapshot.as_of is None or snapshot.as_of < current.as_of
        ):
            continue
        chosen[snapshot.account] = snapshot
    return list(chosen.values())


class ReconciliationReporter:
    """Builds ReconciliationReports from computed and expected balances."""

    def __init__(self, tolerance: Decimal = Decimal("0")):
        tolerance = as_decimal(tolerance)
        if tolerance < 0:
            raise ValueError("tolerance must not be negative")
        self._tolerance = tolerance

    @property
    def tolerance(self) -> Decimal:
        return self._tolerance

    def reconcile(
        self,
        computed: Mapping[str, Decimal],
        expected: ExpectedBalances,
        tolerance: Optional[Decimal] = None,
    ) -> ReconciliationReport:
        """
        Compare computed balances with the expected ones.

        Every account on either side gets a line. Accounts only the ground
        truth knows are MISSING_COMPUTED; accounts only we computed are
        MISSING_EXPECTED and are compared against an expected balance of 0.

        Args:
            computed: Account -> computed balance (ledger accounts or groups)
            expected: Snapshots, or a plain account -> balance mapping
            tolerance: Overrides the reporter's tolerance for this call

        Returns:
            Expected accounts in expected order, then computed-only accounts
            in computed order
        """
        tolerance = self._tolerance if tolerance is None else as_decimal(tolerance)
        if tolerance < 0:
            raise ValueError("tolerance must not be negative")

        report = ReconciliationReport(tolerance=tolerance)
        snapshots = _latest_snapshots(expected)
        for snapshot in snapshots:
            if snapshot.account in computed:
                value = as_decimal(computed[snapshot.account])
                delta = value - snapshot.expected_balance
                status = (
                    ReconciliationStatus.MATCHED
                    if abs(delta) <= tolerance
                    else ReconciliationStatus.MISMATCH
                )
            else:
                value = Decimal("0")
                delta = value - snapshot.expected_balance
                status = ReconciliationStatus.MISSING_COMPUTED
            report.lines.append(_line(
                snapshot.account, value, snapshot.expected_balance, delta, status, snapshot.as_of,
            ))

        seen = {snapshot.account for snapshot in snapshots}
        for account, balance in computed.items():
            if account in seen:
                continue
            value = as_decimal(balance)
            report.lines.append(_line(
                account, value, Decimal("0"), value, ReconciliationStatus.MISSING_EXPECTED,
            ))

        logger.info(
            "reconciliation_completed",
            accounts=len(report.lines),
            mismatches=len(report.mismatches),
            tolerance=str(tolerance),
        )
        return report


def _line(
    account: str,
    computed: Decimal,
    expected: Decimal,
    delta: Decimal,
    status: ReconciliationStatus,
    as_of: Optional[date] = None,
) -> ReconciliationLine:
    if status is not ReconciliationStatus.MATCHED:
        logger.warning(
            "reconciliation_mismatch",
            account=account,
            computed=str(computed),
            expected=str(expected),
            delta=str(delta),
            status=status.value,
        )
    return ReconciliationLine(
        account=account,
        computed=computed,
        expected=expected,
        delta=delta,
        status=status,
        as_of=as_of,
    )
