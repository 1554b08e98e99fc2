"""
Command line interface for LifeOS Ledger.

Environment variables are loaded from a local ``.env`` before any command
runs, so ``LEDGER_*`` and ``GOOGLE_SHEETS_*`` settings can live there.
Every command builds its components with ``create_app_components``; the
business logic lives in the orchestrator and the ledger package.
"""

import asyncio
import csv
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

from lifeos_ledger.config import get_settings, validate_all_settings
from lifeos_ledger.models.ledger import ResolutionPolicy, quantize_minor
from lifeos_ledger.orchestrator import ImportResult, create_app_components
from lifeos_ledger.validation.normalizer import LEDGER_COLUMNS, rows_from_values


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Import, deduplicate and reconcile a personal ledger.",
)


def _components(ctx: typer.Context):
    return create_app_components(backend=ctx.obj.get("backend") if ctx.obj else None)


def _money(amount: Decimal) -> str:
    return f"{quantize_minor(amount):,}"


def _echo_import(result: ImportResult) -> None:
    typer.echo(
        f"Added {result.added}, skipped {len(result.skipped_ids)} existing, "
        f"rejected {result.rejected}"
    )
    for issue in result.issues:
        typer.echo(f"  [{issue.severity}] {issue.record_id or '-'}: {issue.message}")


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    backend: Optional[str] = typer.Option(
        None,
        help="Storage backend: memory, json or sheets (falls back to LEDGER_BACKEND).",
    ),
) -> None:
    """Load ``.env`` and remember the backend choice for subcommands."""
    # Load environment from .env in CWD (override=False to keep existing env)
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    get_settings.cache_clear()
    ctx.obj = {"backend": backend}


@app.command("check-config")
def check_config() -> None:
    """Report which parts of the configuration load."""
    status = validate_all_settings()
    failed = False
    for key, value in status.items():
        if key.endswith("_error"):
            continue
        typer.echo(f"{key:<16} {'ok' if value else 'FAILED'}")
        if not value:
            failed = True
            if f"{key}_error" in status:
                typer.echo(f"  {status[f'{key}_error']}", err=True)
    if failed:
        raise typer.Exit(1)


@app.command("import-ledger")
def import_ledger(
    ctx: typer.Context,
    csv_path: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        help="CSV export of the finance sheet (first row is the header)",
    ),
) -> None:
    """Import rows of the finance sheet into the transaction store."""
    with open(csv_path, newline="", encoding="utf-8-sig") as fh:
        values = list(csv.reader(fh))[1:]
    rows = rows_from_values(values, LEDGER_COLUMNS)

    import_flow, _, _ = _components(ctx)
    _echo_import(asyncio.run(import_flow.import_ledger_rows(rows)))


@app.command("import-records")
def import_records(
    ctx: typer.Context,
    json_path: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        help="JSON array of transaction records",
    ),
) -> None:
    """Import transaction records from a JSON file."""
    try:
        records = json.loads(json_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        typer.echo(f"Invalid JSON in {json_path}: {e}", err=True)
        raise typer.Exit(1)
    if not isinstance(records, list):
        typer.echo(f"{json_path} must contain a JSON array", err=True)
        raise typer.Exit(1)

    import_flow, _, _ = _components(ctx)
    _echo_import(asyncio.run(import_flow.import_records(records)))


@app.command("duplicates")
def duplicates(ctx: typer.Context) -> None:
    """List exact and near duplicate groups. Changes nothing."""
    _, flow, _ = _components(ctx)
    normalized = asyncio.run(flow.load())
    groups = flow.detector.find_duplicates(normalized.transactions)
    near = flow.detector.find_near_duplicates(normalized.transactions)

    if not groups and not near:
        typer.echo("No duplicates found.")
        return

    for group in groups:
        typer.echo(
            f"{group.occurred_at}  {_money(group.amount)}  {group.description!r}  "
            f"x{group.size}: {', '.join(group.ids)}"
        )
    for group in near:
        typer.echo(
            f"[near, needs review] {group.window_start}..{group.window_end}  "
            f"{_money(group.amount)}: {', '.join(group.ids)}"
        )


@app.command("dedupe")
def dedupe(
    ctx: typer.Context,
    policy: ResolutionPolicy = typer.Option(
        ...,
        help="Which member of each exact duplicate group to keep.",
    ),
    apply: bool = typer.Option(
        False,
        "--apply",
        help="Delete the planned removals. Without it this is a preview.",
    ),
) -> None:
    """Plan (and optionally apply) removal of exact duplicates."""
    _, flow, _ = _components(ctx)
    report = asyncio.run(flow.run(policy=policy, apply_removals=apply))
    plan = report.plan

    if plan is None or (plan.is_empty and not plan.pending_review):
        typer.echo("No duplicates found.")
        return

    for group in plan.pending_review:
        typer.echo(f"[review] {group.occurred_at} {group.description!r}: {', '.join(group.ids)}")
    if report.removal is not None:
        typer.echo(
            f"Removed {len(report.removal.removed_ids)}, "
            f"skipped {len(report.removal.skipped_ids)} already absent"
        )
    else:
        for transaction_id in plan.remove_ids:
            typer.echo(f"would remove {transaction_id}")
        if plan.remove_ids:
            typer.echo("Preview only. Re-run with --apply to delete.")


@app.command("balances")
def balances(
    ctx: typer.Context,
    account: Optional[list[str]] = typer.Option(
        None,
        "--account",
        "-a",
        help="Ledger account or group to show (repeatable).",
    ),
) -> None:
    """Show computed balances per ledger account and group."""
    _, flow, _ = _components(ctx)
    result = asyncio.run(flow.compute_balances(account_filter=account or None))
    currency = get_settings().ledger.currency

    for name, balance in sorted(result.balances.items()):
        typer.echo(f"{name:<24} {_money(balance.balance):>18} {currency}")
    for group, total in sorted(result.composites.items()):
        typer.echo(f"{group + ' (group)':<24} {_money(total):>18} {currency}")
    for issue in result.issues:
        typer.echo(f"  [{issue.severity}] {issue.record_id or '-'}: {issue.message}", err=True)


@app.command("reconcile")
def reconcile(
    ctx: typer.Context,
    tolerance: Optional[str] = typer.Option(
        None,
        help="Largest delta still reported as matched (defaults to LEDGER_RECONCILIATION_TOLERANCE).",
    ),
    output_format: str = typer.Option(
        "table",
        "--format",
        help="Output format: table, json or csv.",
    ),
    fail_on_mismatch: bool = typer.Option(
        False,
        "--fail-on-mismatch",
        help="Exit with status 2 when any account is out of tolerance or missing on one side.",
    ),
) -> None:
    """Compare computed balances against the trusted snapshot."""
    if output_format not in ("table", "json", "csv"):
        typer.echo(f"Unknown format: {output_format}", err=True)
        raise typer.Exit(1)
    try:
        tolerance_value = Decimal(tolerance) if tolerance is not None else None
    except InvalidOperation:
        typer.echo(f"Invalid tolerance: {tolerance}", err=True)
        raise typer.Exit(1)

    _, flow, _ = _components(ctx)
    report = asyncio.run(flow.run(tolerance=tolerance_value))
    reconciliation = report.reconciliation

    if reconciliation is None or not reconciliation.lines:
        typer.echo("No snapshot balances to reconcile against.")
        return

    if output_format == "json":
        typer.echo(reconciliation.to_json())
    elif output_format == "csv":
        typer.echo(reconciliation.to_csv(), nl=False)
    else:
        typer.echo(reconciliation.to_table())

    if fail_on_mismatch and not reconciliation.is_reconciled:
        raise typer.Exit(2)


if __name__ == "__main__":
    app()
