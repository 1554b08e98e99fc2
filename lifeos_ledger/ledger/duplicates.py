"""
Duplicate Detector

Finds transactions that were imported more than once.

DESIGN DECISION: The detector never deletes on its own. It returns groups;
a caller picks a ResolutionPolicy, gets a RemovalPlan back, and only then
applies it. There is no "delete everything in this date range" operation.

Two detectors with different strength:

EXACT - same description, same calendar date, same amount, different ids.
    Safe to resolve with a policy (keep earliest id / keep first inserted).

NEAR - same amount within a few days but with different descriptions.
    A weak heuristic. A near-duplicate group is only ever resolved by an
    explicit manual decision (confirm_near_duplicate).
"""

from collections.abc import Callable, Hashable, Iterable
from datetime import date, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Optional, Union

import structlog

from lifeos_ledger.ledger.errors import DuplicateAmbiguity
from lifeos_ledger.models.ledger import (
    DuplicateGroup,
    NearDuplicateGroup,
    RemovalOutcome,
    RemovalPlan,
    ResolutionPolicy,
    Transaction,
)

if TYPE_CHECKING:
    from lifeos_ledger.services.storage.interface import TransactionStoreInterface


logger = structlog.get_logger(__name__)

DuplicateKey = tuple[str, date, Decimal]


def exact_duplicate_key(transaction: Transaction) -> DuplicateKey:
    """(description, calendar date, amount)"""
    return (transaction.description, transaction.occurred_at, transaction.amount)


class DuplicateDetector:
    """
    Groups duplicate transactions and plans their removal.

    Stateless: every method works only on its arguments.
    """

    def __init__(self, near_window_days: int = 7):
        """
        Initialize detector.

        Args:
            near_window_days: Two transactions are near-duplicate candidates
                             when their dates are less than this many days apart.
        """
        if near_window_days < 1:
            raise ValueError("near_window_days must be at least 1")
        self._near_window = timedelta(days=near_window_days)

    # -------------------------------------------------------------------------
    # Detection
    # -------------------------------------------------------------------------

    def find_duplicates(
        self,
        transactions: Iterable[Transaction],
        key: Callable[[Transaction], Hashable] = exact_duplicate_key,
    ) -> list[DuplicateGroup]:
        """
        Find groups of transactions sharing a key but not an id.

        Groups are ordered by key; members keep their input order. If the
        same id appears twice it is counted once.

        Args:
            transactions: Canonical transactions
            key: Grouping key, (description, date, amount) by default

        Returns:
            Duplicate groups of two or more distinct ids
        """
        buckets: dict[Hashable, dict[str, Transaction]] = {}
        for transaction in transactions:
            members = buckets.setdefault(key(transaction), {})
            members.setdefault(transaction.id, transaction)

        groups = []
        for group_key in sorted(buckets, key=_sort_key):
            members = list(buckets[group_key].values())
            if len(members) < 2:
                continue
            first = members[0]
            groups.append(DuplicateGroup(
                description=first.description,
                occurred_at=first.occurred_at,
                amount=first.amount,
                transactions=members,
            ))

        if groups:
            logger.info(
                "duplicates_found",
                groups=len(groups),
                transactions=sum(g.size for g in groups),
            )
        return groups

    def find_near_duplicates(
        self,
        transactions: Iterable[Transaction],
    ) -> list[NearDuplicateGroup]:
        """
        Find same-amount transactions close in time with different descriptions.

        Candidates are linked pairwise (same amount, dates closer than the
        window, descriptions differ); each connected cluster becomes one
        group. Pairs that are exact duplicates of each other are left to
        find_duplicates.
        """
        by_amount: dict[Decimal, list[Transaction]] = {}
        seen_ids: set[str] = set()
        for transaction in transactions:
            if transaction.id in seen_ids:
                continue
            seen_ids.add(transaction.id)
            by_amount.setdefault(transaction.amount, []).append(transaction)

        groups = []
        for amount in sorted(by_amount):
            candidates = sorted(by_amount[amount], key=lambda t: t.occurred_at)
            if len(candidates) < 2:
                continue

            parent = list(range(len(candidates)))

            def find(i: int) -> int:
                while parent[i] != i:
                    parent[i] = parent[parent[i]]
                    i = parent[i]
                return i

            for i, left in enumerate(candidates):
                for j in range(i + 1, len(candidates)):
                    right = candidates[j]
                    if right.occurred_at - left.occurred_at >= self._near_window:
                        break
                    if left.description != right.description:
                        parent[find(j)] = find(i)

            clusters: dict[int, list[Transaction]] = {}
            for i, transaction in enumerate(candidates):
                clusters.setdefault(find(i), []).append(transaction)

            for members in clusters.values():
                if len(members) < 2:
                    continue
                groups.append(NearDuplicateGroup(
                    amount=amount,
                    window_start=members[0].occurred_at,
                    window_end=members[-1].occurred_at,
                    transactions=members,
                ))

        groups.sort(key=lambda g: (g.window_start, g.amount))
        if groups:
            logger.info("near_duplicates_found", groups=len(groups))
        return groups

    @staticmethod
    def find_repeated_ids(transactions: Iterable[Transaction]) -> dict[str, int]:
        """
        Ids that occur more than once.

        A healthy store never has any; a non-empty result means an import
        broke the one-id-one-transaction rule.
        """
        counts: dict[str, int] = {}
        for transaction in transactions:
            counts[transaction.id] = counts.get(transaction.id, 0) + 1
        return {tid: n for tid, n in counts.items() if n > 1}

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def plan_removals(
        self,
        groups: Iterable[Union[DuplicateGroup, NearDuplicateGroup]],
        policy: ResolutionPolicy,
    ) -> RemovalPlan:
        """
        Decide which member of each exact group to keep.

        KEEP_EARLIEST_ID keeps the smallest id by plain string comparison.
        Ids are opaque, so "10" sorts before "9"; zero-pad numeric ids
        when numeric order matters. MANUAL_REVIEW keeps everything and
        returns the groups as pending.

        Raises:
            DuplicateAmbiguity: If a near-duplicate group is passed in
        """
        plan = RemovalPlan(policy=policy)
        for group in groups:
            if isinstance(group, NearDuplicateGroup):
                raise DuplicateAmbiguity(
                    f"Near-duplicate group of {len(group.transactions)} transactions "
                    f"(amount {group.amount}) needs a manual decision",
                    candidate_ids=group.ids,
                )
            if policy is ResolutionPolicy.MANUAL_REVIEW:
                plan.pending_review.append(group)
                continue

            if policy is ResolutionPolicy.KEEP_EARLIEST_ID:
                keep = min(group.ids)  # string order, not numeric
            else:
                keep = group.ids[0]
            plan.keep_ids.append(keep)
            plan.remove_ids.extend(tid for tid in group.ids if tid != keep)
        return plan

    def confirm_near_duplicate(
        self,
        group: NearDuplicateGroup,
        keep_id: str,
    ) -> RemovalPlan:
        """
        Record a manual decision for a near-duplicate group.

        Raises:
            DuplicateAmbiguity: If keep_id is not a member of the group
        """
        if keep_id not in group.ids:
            raise DuplicateAmbiguity(
                f"'{keep_id}' is not part of the near-duplicate group",
                candidate_ids=group.ids,
            )
        return RemovalPlan(
            policy=ResolutionPolicy.MANUAL_REVIEW,
            keep_ids=[keep_id],
            remove_ids=[tid for tid in group.ids if tid != keep_id],
        )

    async def apply_removals(
        self,
        store: "TransactionStoreInterface",
        plan: RemovalPlan,
    ) -> RemovalOutcome:
        """
        Delete the plan's ids from the store, one guarded delete at a time.

        Each id is re-read right before it is deleted. An id that is
        already gone (removed by an earlier or concurrent run) is skipped,
        so applying the same plan twice is harmless.
        """
        outcome = RemovalOutcome()
        for transaction_id in plan.remove_ids:
            current = await store.get_by_id(transaction_id)
            if current is None:
                logger.info("duplicate_removal_skipped", transaction_id=transaction_id)
                outcome.skipped_ids.append(transaction_id)
                continue
            removed = await store.remove_by_ids([transaction_id])
            if removed:
                outcome.removed_ids.append(transaction_id)
            else:
                outcome.skipped_ids.append(transaction_id)
        logger.info(
            "duplicate_removals_applied",
            removed=len(outcome.removed_ids),
            skipped=len(outcome.skipped_ids),
        )
        return outcome


def _sort_key(group_key: Hashable) -> tuple:
    """Order mixed keys deterministically without comparing unlike types."""
    if isinstance(group_key, tuple):
        return tuple((type(part).__name__, part) for part in group_key)
    return ((type(group_key).__name__, group_key),)


def remaining_after(
    transactions: Iterable[Transaction],
    plan: Optional[RemovalPlan],
) -> list[Transaction]:
    """Transactions a plan would keep, in their original order."""
    if plan is None or plan.is_empty:
        return list(transactions)
    removed = set(plan.remove_ids)
    return [t for t in transactions if t.id not in removed]
