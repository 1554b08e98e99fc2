"""
Ledger Aggregator

Computes per-account balances by replaying transactions in date order.

DESIGN DECISION: Balances are always derived. The aggregator holds no state
between calls; every call is a pure fold over the transactions it is given.

ORDERING: Transactions carry date-only timestamps, so the order of several
transactions on the same day can't be recovered. Each account's
transactions are sorted by date with a stable sort, which keeps same-day
transactions in the order they were supplied. The final balance does not
depend on this (Decimal addition is exact); only intermediate points of a
running balance history do.

UNKNOWN ACCOUNTS: In strict mode (the default) a transaction for an account
the hierarchy doesn't declare is excluded and reported as an
unknown_account issue. Lenient mode opens the account at zero, and still
logs a warning so data-entry errors stay visible.
"""

from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from lifeos_ledger.ledger.errors import UnknownAccount
from lifeos_ledger.models.accounts import AccountHierarchy
from lifeos_ledger.models.ledger import (
    AccountBalance,
    Direction,
    IssueKind,
    LedgerIssue,
    LedgerSummary,
    RunningBalancePoint,
    Transaction,
    as_decimal,
)


logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


def _date_sorted(transactions: Iterable[Transaction]) -> list[Transaction]:
    return sorted(transactions, key=lambda t: t.occurred_at)


class AggregationResult(BaseModel):
    """
    Balances computed in one call, plus the problems found on the way.

    Partial results are normal: transactions that could not be aggregated
    are listed in ``issues`` and everything else is still computed.
    """

    balances: dict[str, AccountBalance] = Field(default_factory=dict)
    composites: dict[str, Decimal] = Field(default_factory=dict)
    group_members: dict[str, list[str]] = Field(default_factory=dict)
    issues: list[LedgerIssue] = Field(default_factory=list)
    aggregated_count: int = 0

    @property
    def total_balance(self) -> Decimal:
        """Sum of every ledger account balance."""
        return sum((b.balance for b in self.balances.values()), ZERO)

    def as_mapping(self) -> dict[str, Decimal]:
        """Ledger account -> balance."""
        return {name: b.balance for name, b in self.balances.items()}

    def reporting_balances(self) -> dict[str, Decimal]:
        """
        Balances at the level an external ledger tracks them.

        Declared groups replace their members; ungrouped ledger accounts
        are reported as they are.
        """
        grouped = {m for members in self.group_members.values() for m in members}
        result: dict[str, Decimal] = {}
        for name, balance in self.balances.items():
            if name in grouped:
                continue
            result[name] = balance.balance
        result.update(self.composites)
        return result

    @property
    def errors(self) -> list[LedgerIssue]:
        return [issue for issue in self.issues if issue.severity == "error"]

    def raise_for_errors(self) -> None:
        """
        Raise the first unknown-account error, for callers that want
        all-or-nothing behaviour.

        Raises:
            UnknownAccount: If any transaction was excluded for its account
        """
        for issue in self.errors:
            if issue.kind is IssueKind.UNKNOWN_ACCOUNT:
                raise UnknownAccount(
                    issue.message,
                    record_id=issue.record_id,
                    account=issue.account,
                )


class LedgerAggregator:
    """
    Folds transactions into account balances.

    Composite balances come only from the declared hierarchy.
    """

    def __init__(
        self,
        hierarchy: Optional[AccountHierarchy] = None,
        strict: bool = True,
    ):
        """
        Initialize aggregator.

        Args:
            hierarchy: Declared accounts, groups and opening balances.
                      An empty hierarchy knows no accounts.
            strict: Default unknown-account mode for compute_balances
        """
        self._hierarchy = hierarchy or AccountHierarchy()
        self._strict = strict

    @property
    def hierarchy(self) -> AccountHierarchy:
        return self._hierarchy

    def compute_balances(
        self,
        transactions: Iterable[Transaction],
        account_filter: Optional[Iterable[str]] = None,
        opening_balances: Optional[Mapping[str, Decimal]] = None,
        strict: Optional[bool] = None,
    ) -> AggregationResult:
        """
        Compute the balance of every account from its transactions.

        Args:
            transactions: Canonical transactions in any order
            account_filter: Ledger account and/or group names to compute.
                           Groups expand to their members. None means all.
            opening_balances: Overrides the hierarchy's opening balances
            strict: Overrides the aggregator's unknown-account mode

        Returns:
            AggregationResult with balances, composites and issues
        """
        strict = self._strict if strict is None else strict
        openings = self._hierarchy.opening_balances()
        if opening_balances:
            openings.update({k: as_decimal(v) for k, v in opening_balances.items()})

        wanted = (
            self._hierarchy.expand(list(account_filter))
            if account_filter is not None
            else None
        )

        result = AggregationResult()
        by_account: dict[str, list[Transaction]] = {}

        # Declared accounts always appear, even without activity
        for name in list(self._hierarchy.account_names) + list(openings):
            if wanted is None or name in wanted:
                by_account.setdefault(name, [])

        for transaction in transactions:
            account = transaction.account
            if wanted is not None and account not in wanted:
                continue
            known = self._hierarchy.is_known(account) or account in openings
            if not known:
                error = UnknownAccount(
                    f"Transaction references undeclared account '{account}'",
                    record_id=transaction.id,
                    account=account,
                )
                if strict:
                    logger.warning(
                        "unknown_account_rejected",
                        account=account,
                        transaction_id=transaction.id,
                    )
                    result.issues.append(error.to_issue("error"))
                    continue
                logger.warning(
                    "unknown_account_opened",
                    account=account,
                    transaction_id=transaction.id,
                )
                if account not in by_account:
                    result.issues.append(error.to_issue("warning"))
            by_account.setdefault(account, []).append(transaction)

        for account, account_transactions in by_account.items():
            result.balances[account] = self._fold(
                account,
                account_transactions,
                openings.get(account, ZERO),
            )
            result.aggregated_count += len(account_transactions)

        for group, members in self._hierarchy.groups.items():
            present = [m for m in members if m in result.balances]
            if not present:
                continue
            result.group_members[group] = present
            result.composites[group] = sum(
                (result.balances[m].balance for m in present),
                ZERO,
            )

        logger.info(
            "balances_computed",
            accounts=len(result.balances),
            transactions=result.aggregated_count,
            issues=len(result.issues),
            strict=strict,
        )
        return result

    def _fold(
        self,
        account: str,
        transactions: list[Transaction],
        opening_balance: Decimal,
    ) -> AccountBalance:
        balance = opening_balance
        income = ZERO
        expense = ZERO
        last_activity = None

        for transaction in _date_sorted(transactions):
            if transaction.direction is Direction.INCOME:
                income += transaction.amount
            else:
                expense += transaction.amount
            balance += transaction.signed_amount
            last_activity = transaction.occurred_at

        return AccountBalance(
            account=account,
            opening_balance=opening_balance,
            balance=balance,
            total_income=income,
            total_expense=expense,
            transaction_count=len(transactions),
            last_activity=last_activity,
        )

    def running_balance_history(
        self,
        transactions: Iterable[Transaction],
        account: str,
        opening_balance: Optional[Decimal] = None,
    ) -> list[RunningBalancePoint]:
        """
        Balance of one account after each of its transactions.

        The walk starts from opening_balance, or from the account's opening
        balance in the hierarchy when none is given. Same-day transactions
        appear in the order they were supplied.
        """
        balance = (
            self._hierarchy.opening_balance(account)
            if opening_balance is None
            else as_decimal(opening_balance)
        )
        points = []
        for transaction in _date_sorted(t for t in transactions if t.account == account):
            balance += transaction.signed_amount
            points.append(RunningBalancePoint(
                transaction_id=transaction.id,
                occurred_at=transaction.occurred_at,
                signed_amount=transaction.signed_amount,
                balance=balance,
            ))
        return points


def summarize(transactions: Iterable[Transaction]) -> LedgerSummary:
    """Total income and expense across all accounts."""
    summary = LedgerSummary()
    for transaction in transactions:
        if transaction.direction is Direction.INCOME:
            summary.total_income += transaction.amount
        else:
            summary.total_expense += transaction.amount
        summary.transaction_count += 1
        if summary.first_date is None or transaction.occurred_at < summary.first_date:
            summary.first_date = transaction.occurred_at
        if summary.last_date is None or transaction.occurred_at > summary.last_date:
            summary.last_date = transaction.occurred_at
    return summary
