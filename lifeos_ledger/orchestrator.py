"""
Main Orchestrator for LifeOS Ledger

This module ties together all the components and defines the
end-to-end flows for:
1. Import (records or sheet rows → normalize → skip known ids → store)
2. Reconciliation (store → normalize → duplicates → balances → compare)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing is deleted unless the caller asked for it with a policy AND apply
- A bad record never stops a run; it becomes an issue on the report
- Every step is audited

Everything a flow needs is passed in. There is no module-level client.
"""

from collections.abc import Iterable, Mapping
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from lifeos_ledger.audit import AuditLogger, create_correlation_id
from lifeos_ledger.config import get_settings
from lifeos_ledger.ledger import (
    AggregationResult,
    DuplicateDetector,
    LedgerAggregator,
    ReconciliationReporter,
    remaining_after,
)
from lifeos_ledger.models.accounts import AccountHierarchy
from lifeos_ledger.models.ledger import (
    DuplicateGroup,
    LedgerIssue,
    NearDuplicateGroup,
    ReconciliationReport,
    ReconciliationSnapshot,
    RemovalOutcome,
    RemovalPlan,
    ResolutionPolicy,
    Transaction,
)
from lifeos_ledger.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsSnapshotSource,
    GoogleSheetsTransactionStore,
    InMemoryAuditStorage,
    InMemorySnapshotSource,
    InMemoryTransactionStore,
    JsonFileSnapshotSource,
    JsonFileTransactionStore,
    SnapshotSourceInterface,
    StorageError,
    TransactionStoreInterface,
)
from lifeos_ledger.validation.normalizer import (
    NormalizationResult,
    normalize_ledger_rows,
    normalize_records,
)


logger = structlog.get_logger(__name__)


class ImportResult(BaseModel):
    """What one import added, skipped and rejected."""

    correlation_id: UUID
    added_ids: list[str] = Field(default_factory=list)
    skipped_ids: list[str] = Field(
        default_factory=list,
        description="Ids already stored or repeated within the batch"
    )
    issues: list[LedgerIssue] = Field(default_factory=list)

    @property
    def added(self) -> int:
        return len(self.added_ids)

    @property
    def rejected(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == "error")


class RunReport(BaseModel):
    """
    Everything one reconciliation run found.

    Partial results are normal: ``issues`` lists what was left out.
    """
    correlation_id: UUID
    loaded_count: int = 0
    transaction_count: int = 0
    duplicate_groups: list[DuplicateGroup] = Field(default_factory=list)
    near_duplicate_groups: list[NearDuplicateGroup] = Field(default_factory=list)
    repeated_ids: dict[str, int] = Field(default_factory=dict)
    plan: Optional[RemovalPlan] = None
    removal: Optional[RemovalOutcome] = None
    balances: AggregationResult = Field(default_factory=AggregationResult)
    reconciliation: Optional[ReconciliationReport] = None
    issues: list[LedgerIssue] = Field(default_factory=list)

    @property
    def is_preview(self) -> bool:
        """True when removals were planned but not applied."""
        return self.plan is not None and not self.plan.is_empty and self.removal is None


class ImportFlow:
    """
    Orchestrates imports into the transaction store.

    Flow:
    1. Normalize → Transactions plus issues
    2. Filter → drop ids already stored, and ids repeated in the batch
    3. Store → add_many

    Importing the same input twice adds nothing the second time.
    """

    def __init__(
        self,
        store: TransactionStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._audit_logger = audit_logger

    async def import_records(
        self,
        records: Iterable[Mapping[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> ImportResult:
        """Import records already shaped like stored transactions."""
        records = list(records)
        return await self._import(
            normalize_records(records),
            loaded=len(records),
            source="records",
            correlation_id=correlation_id,
        )

    async def import_ledger_rows(
        self,
        rows: Iterable[Mapping[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> ImportResult:
        """Import rows of the finance sheet (see LEDGER_COLUMNS)."""
        rows = list(rows)
        return await self._import(
            normalize_ledger_rows(rows),
            loaded=len(rows),
            source="ledger rows",
            correlation_id=correlation_id,
        )

    async def _import(
        self,
        normalized: NormalizationResult,
        loaded: int,
        source: str,
        correlation_id: Optional[UUID],
    ) -> ImportResult:
        correlation_id = correlation_id or create_correlation_id()
        result = ImportResult(correlation_id=correlation_id, issues=normalized.issues)

        if self._audit_logger:
            await self._audit_logger.log_transactions_loaded(
                count=loaded,
                source=source,
                correlation_id=correlation_id,
            )

        existing = {
            str(record.get("id", "")).strip()
            for record in await self._store.list_records()
        }
        fresh: list[Transaction] = []
        for transaction in normalized.transactions:
            if transaction.id in existing:
                result.skipped_ids.append(transaction.id)
                continue
            existing.add(transaction.id)
            fresh.append(transaction)

        if fresh:
            await self._store.add_many(fresh)
        result.added_ids = [t.id for t in fresh]

        logger.info(
            "import_completed",
            added=result.added,
            skipped=len(result.skipped_ids),
            rejected=result.rejected,
        )
        if self._audit_logger:
            await self._audit_logger.log_issues(result.issues, correlation_id)
            await self._audit_logger.log_import_completed(
                added=result.added,
                skipped_existing=len(result.skipped_ids),
                rejected=result.rejected,
                correlation_id=correlation_id,
            )
        return result


class ReconciliationFlow:
    """
    Orchestrates a reconciliation run.

    Flow:
    1. Load → raw records from the store
    2. Normalize → Transactions plus issues
    3. Detect → exact and near duplicates
    4. Plan → optional removal plan for the exact groups
    5. Apply → guarded delete, ONLY when explicitly requested
    6. Aggregate → balances without the planned removals
    7. Reconcile → against the snapshot source, if there is one

    Without apply, steps 4-6 are a preview: balances show what the ledger
    would look like after cleanup, and the store is untouched.
    """

    def __init__(
        self,
        store: TransactionStoreInterface,
        snapshot_source: Optional[SnapshotSourceInterface] = None,
        aggregator: Optional[LedgerAggregator] = None,
        detector: Optional[DuplicateDetector] = None,
        reporter: Optional[ReconciliationReporter] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._snapshot_source = snapshot_source
        self._aggregator = aggregator or LedgerAggregator()
        self._detector = detector or DuplicateDetector()
        self._reporter = reporter or ReconciliationReporter()
        self._audit_logger = audit_logger

    @property
    def aggregator(self) -> LedgerAggregator:
        return self._aggregator

    @property
    def detector(self) -> DuplicateDetector:
        return self._detector

    async def load(self) -> NormalizationResult:
        """Read and normalize every stored record."""
        return normalize_records(await self._store.list_records())

    async def compute_balances(
        self,
        account_filter: Optional[Iterable[str]] = None,
    ) -> AggregationResult:
        """Balances of the stored ledger as it is, duplicates included."""
        normalized = await self.load()
        result = self._aggregator.compute_balances(
            normalized.transactions,
            account_filter=account_filter,
        )
        result.issues = normalized.issues + result.issues
        return result

    async def run(
        self,
        policy: Optional[ResolutionPolicy] = None,
        apply_removals: bool = False,
        tolerance: Optional[Decimal] = None,
        correlation_id: Optional[UUID] = None,
    ) -> RunReport:
        """
        Run a full reconciliation.

        Args:
            policy: How to resolve exact duplicates. None plans nothing.
            apply_removals: Delete the planned removals from the store
            tolerance: Overrides the reporter's tolerance

        Returns:
            RunReport with balances, findings and issues. reconciliation
            stays None when there are no snapshots to compare against.
        """
        correlation_id = correlation_id or create_correlation_id()
        report = RunReport(correlation_id=correlation_id)

        try:
            records = await self._store.list_records()
        except StorageError as e:
            await self._log_storage_failure("transaction store", e, correlation_id)
            raise
        report.loaded_count = len(records)
        normalized = normalize_records(records)
        report.issues.extend(normalized.issues)
        transactions = normalized.transactions

        if self._audit_logger:
            await self._audit_logger.log_transactions_loaded(
                count=len(records),
                source="transaction store",
                correlation_id=correlation_id,
            )
            await self._audit_logger.log_issues(normalized.issues, correlation_id)

        # Duplicates
        report.repeated_ids = self._detector.find_repeated_ids(transactions)
        if report.repeated_ids:
            logger.warning("repeated_ids_found", ids=sorted(report.repeated_ids))
        report.duplicate_groups = self._detector.find_duplicates(transactions)
        report.near_duplicate_groups = self._detector.find_near_duplicates(transactions)

        if self._audit_logger:
            await self._audit_logger.log_duplicates_found(
                group_count=len(report.duplicate_groups),
                transaction_count=sum(g.size for g in report.duplicate_groups),
                near_group_count=len(report.near_duplicate_groups),
                correlation_id=correlation_id,
            )

        if policy is not None:
            report.plan = self._detector.plan_removals(report.duplicate_groups, policy)
            if apply_removals and not report.plan.is_empty:
                try:
                    report.removal = await self._detector.apply_removals(self._store, report.plan)
                except StorageError as e:
                    if self._audit_logger:
                        await self._audit_logger.log_error(
                            error_type=type(e).__name__,
                            error_message=str(e),
                            details={"planned_removals": report.plan.remove_ids},
                            correlation_id=correlation_id,
                        )
                    raise
                if self._audit_logger:
                    await self._audit_logger.log_removals(
                        removed_ids=report.removal.removed_ids,
                        skipped_ids=report.removal.skipped_ids,
                        policy=policy.value,
                        correlation_id=correlation_id,
                    )
            transactions = remaining_after(transactions, report.plan)

        # Balances
        report.transaction_count = len(transactions)
        report.balances = self._aggregator.compute_balances(transactions)
        report.issues.extend(report.balances.issues)

        if self._audit_logger:
            await self._audit_logger.log_issues(report.balances.issues, correlation_id)
            await self._audit_logger.log_balances_computed(
                account_count=len(report.balances.balances),
                transaction_count=report.balances.aggregated_count,
                issue_count=len(report.issues),
                correlation_id=correlation_id,
            )

        # Reconciliation
        if self._snapshot_source is not None:
            try:
                snapshots = await self._snapshot_source.read_snapshots()
            except StorageError as e:
                await self._log_storage_failure("snapshot source", e, correlation_id)
                raise
            if not snapshots:
                logger.info("reconciliation_skipped", reason="no_snapshots")
                return report
            report.reconciliation = self._reporter.reconcile(
                _comparable_balances(report.balances, snapshots),
                snapshots,
                tolerance=tolerance,
            )
            if self._audit_logger:
                await self._audit_logger.log_reconciliation(
                    lines=report.reconciliation.lines,
                    tolerance=report.reconciliation.tolerance,
                    correlation_id=correlation_id,
                )

        return report

    async def _log_storage_failure(
        self,
        service: str,
        error: StorageError,
        correlation_id: UUID,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_external_service_error(
                service=service,
                error_message=str(error),
                correlation_id=correlation_id,
            )


def _comparable_balances(
    balances: AggregationResult,
    snapshots: list[ReconciliationSnapshot],
) -> dict[str, Decimal]:
    """
    Computed balances at the level the snapshots are kept.

    Groups stand in for their members unless a snapshot names a member
    account directly.
    """
    result = balances.reporting_balances()
    for snapshot in snapshots:
        if snapshot.account in balances.balances:
            result.setdefault(snapshot.account, balances.balances[snapshot.account].balance)
    return result


def load_hierarchy(path: Optional[Path]) -> Optional[AccountHierarchy]:
    """Load the account hierarchy file, or None if none is configured."""
    if path is None:
        return None
    return AccountHierarchy.load(path)


def create_app_components(
    backend: Optional[str] = None,
) -> tuple[ImportFlow, ReconciliationFlow, TransactionStoreInterface]:
    """
    Factory function to create all application components.

    Args:
        backend: "memory", "json" or "sheets". Defaults to LEDGER_BACKEND.

    Returns:
        (import_flow, reconciliation_flow, store)

    Raises:
        ValueError: If the backend name is unknown
    """
    settings = get_settings()
    ledger_settings = settings.ledger
    backend = backend or ledger_settings.backend

    audit_storage: Optional[AuditStorageInterface] = None
    if backend == "memory":
        store = InMemoryTransactionStore()
        snapshot_source: SnapshotSourceInterface = InMemorySnapshotSource()
        audit_storage = InMemoryAuditStorage()
    elif backend == "json":
        local = settings.local
        store = JsonFileTransactionStore(local.transactions_path)
        snapshot_source = JsonFileSnapshotSource(local.snapshots_path)
    elif backend == "sheets":
        sheets_client = GoogleSheetsClient(settings.google_sheets)
        store = GoogleSheetsTransactionStore(sheets_client)
        snapshot_source = GoogleSheetsSnapshotSource(sheets_client)
        audit_storage = GoogleSheetsAuditStorage(sheets_client)
    else:
        raise ValueError(f"Unknown storage backend: {backend!r}")

    hierarchy = load_hierarchy(ledger_settings.accounts_file)
    strict = ledger_settings.strict_accounts
    if hierarchy is None and strict:
        # Nothing is declared, so strict mode would reject every transaction
        logger.warning("no_account_hierarchy", detail="unknown accounts are opened at zero")
        strict = False

    audit_logger = AuditLogger(audit_storage)

    import_flow = ImportFlow(store=store, audit_logger=audit_logger)
    reconciliation_flow = ReconciliationFlow(
        store=store,
        snapshot_source=snapshot_source,
        aggregator=LedgerAggregator(hierarchy, strict=strict),
        detector=DuplicateDetector(ledger_settings.near_duplicate_window_days),
        reporter=ReconciliationReporter(ledger_settings.reconciliation_tolerance),
        audit_logger=audit_logger,
    )

    return import_flow, reconciliation_flow, store
