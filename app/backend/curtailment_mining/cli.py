"""
Command line interface for the reconciliation engine.
"""

import asyncio
import signal
from datetime import date, datetime
from typing import Awaitable, Callable, Optional

import typer
from rich.console import Console
from rich.table import Table

from curtailment_mining.core.database import close_database, init_database
from curtailment_mining.core.exceptions import CurtailmentMiningException
from curtailment_mining.core.logging import get_logger, setup_logging
from curtailment_mining.services.reconciliation import ReconciliationOrchestrator, ReconciliationResult
from curtailment_mining.services.reconciliation_service import reconciliation_orchestrator

console = Console()
logger = get_logger(__name__)
app = typer.Typer(help="Curtailment-to-mining reconciliation commands")

STATUS_STYLES = {
    "verified": "green",
    "partially_fixed": "yellow",
    "in_progress": "cyan",
    "pending": "white",
    "failed": "red",
}


def _parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise typer.BadParameter(f"Expected YYYY-MM-DD, got {value!r}")


def _install_signal_handlers(cancel_event: asyncio.Event):
    loop = asyncio.get_running_loop()

    def _cancel():
        if not cancel_event.is_set():
            console.print("⏹️  Stopping after the current unit...")
            cancel_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _cancel)
        except (NotImplementedError, RuntimeError):
            # Windows event loops do not support signal handlers
            pass


def _run(operation: Callable[[ReconciliationOrchestrator], Awaitable]):
    """Run ``operation`` against a freshly wired orchestrator."""
    async def _main():
        setup_logging()
        await init_database()
        cancel_event = asyncio.Event()
        _install_signal_handlers(cancel_event)
        try:
            async with reconciliation_orchestrator(cancel_event=cancel_event) as orchestrator:
                return await operation(orchestrator)
        finally:
            await close_database()

    try:
        return asyncio.run(_main())
    except CurtailmentMiningException as e:
        console.print(f"❌ [red]{e.code}[/red]: {e.message}")
        raise typer.Exit(code=2)


def _print_result(result: ReconciliationResult):
    table = Table(title="Reconciliation Result")
    table.add_column("Unit", style="cyan")
    table.add_column("Range")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Expected", justify="right")
    table.add_column("Missing", justify="right")
    table.add_column("Repaired", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Still missing", justify="right")

    for unit in result.units:
        style = STATUS_STYLES.get(unit.status.value, "white")
        table.add_row(
            unit.unit_key,
            f"{unit.start_date} → {unit.end_date}",
            f"[{style}]{unit.status.value}{' (skipped)' if unit.skipped else ''}[/{style}]",
            str(unit.attempts),
            str(unit.expected),
            str(unit.missing),
            str(unit.repaired),
            str(unit.failed),
            str(unit.still_missing),
        )

    console.print(table)
    console.print(
        f"Units processed: {result.units_processed}  "
        f"Repaired: {result.repaired}  Failed: {result.failed}  "
        f"Still missing: {result.still_missing}  "
        f"Duration: {result.duration_seconds:.1f}s"
    )
    if result.cancelled:
        console.print("⚠️  Run was cancelled; use [bold]resume[/bold] to continue")


@app.command()
def reconcile(
    settlement_date: str = typer.Argument(..., help="Settlement date, YYYY-MM-DD"),
    check_difficulty: bool = typer.Option(False, help="Also flag records with outdated difficulty"),
):
    """Reconcile a single settlement date."""
    target = _parse_date(settlement_date)
    result = _run(lambda o: o.reconcile_date(target, check_difficulty=check_difficulty))
    _print_result(result)


@app.command("reconcile-range")
def reconcile_range(
    start: str = typer.Argument(..., help="First date, YYYY-MM-DD"),
    end: str = typer.Argument(..., help="Last date, YYYY-MM-DD"),
    retry_failed: bool = typer.Option(False, help="Reopen units that previously failed"),
    check_difficulty: bool = typer.Option(False, help="Also flag records with outdated difficulty"),
):
    """Reconcile every month overlapping a date range."""
    start_date, end_date = _parse_date(start), _parse_date(end)
    result = _run(lambda o: o.run(start_date, end_date, retry_failed=retry_failed, check_difficulty=check_difficulty))
    _print_result(result)


@app.command()
def resume(
    check_difficulty: bool = typer.Option(False, help="Also flag records with outdated difficulty"),
):
    """Continue units left pending, in progress or partially fixed."""
    result = _run(lambda o: o.resume(check_difficulty=check_difficulty))
    _print_result(result)


@app.command()
def audit(
    start: str = typer.Argument(..., help="First date, YYYY-MM-DD"),
    end: str = typer.Argument(..., help="Last date, YYYY-MM-DD"),
    check_difficulty: bool = typer.Option(False, help="Also flag records with outdated difficulty"),
):
    """Show the backlog for a range without repairing anything."""
    start_date, end_date = _parse_date(start), _parse_date(end)
    backlog = _run(lambda o: o.audit(start_date, end_date, check_difficulty=check_difficulty))

    if not backlog:
        console.print("✅ No backlog: every date is complete")
        return

    table = Table(title=f"Backlog {start_date} → {end_date}")
    table.add_column("Date", style="cyan")
    table.add_column("Model")
    table.add_column("Status")
    table.add_column("Expected", justify="right")
    table.add_column("Actual", justify="right")
    table.add_column("Missing periods")
    for entry in backlog:
        periods = ", ".join(str(p) for p in entry.missing_periods[:12])
        if len(entry.missing_periods) > 12:
            periods += ", ..."
        table.add_row(
            entry.settlement_date.isoformat(),
            entry.miner_model.value,
            entry.status.value,
            str(entry.expected_count),
            str(entry.actual_count),
            periods,
        )
    console.print(table)


@app.command()
def status(
    start: str = typer.Argument(..., help="First date, YYYY-MM-DD"),
    end: str = typer.Argument(..., help="Last date, YYYY-MM-DD"),
):
    """Per-date completion percentage."""
    start_date, end_date = _parse_date(start), _parse_date(end)
    report = _run(lambda o: o.status_report(start_date, end_date))

    table = Table(title="Reconciliation Status")
    table.add_column("Date", style="cyan")
    table.add_column("Expected / model", justify="right")
    table.add_column("Records by model")
    table.add_column("Invalid events", justify="right")
    table.add_column("Complete", justify="right")
    for entry in report:
        percent = entry.completion_percent
        style = "green" if percent == 100 else "yellow" if percent > 0 else "red"
        table.add_row(
            entry.settlement_date.isoformat(),
            str(entry.expected_per_model),
            ", ".join(f"{model}={count}" for model, count in entry.records_by_model.items()),
            str(entry.invalid_events),
            f"[{style}]{percent:.1f}%[/{style}]",
        )
    console.print(table)


@app.command()
def checkpoints():
    """List stored checkpoints."""
    rows = _run(lambda o: o.checkpoint_store.list())

    table = Table(title="Checkpoints")
    table.add_column("Unit", style="cyan")
    table.add_column("Range")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Repaired", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Still missing", justify="right")
    table.add_column("Last error")
    for checkpoint in rows:
        style = STATUS_STYLES.get(checkpoint.status, "white")
        table.add_row(
            checkpoint.unit_key,
            f"{checkpoint.start_date} → {checkpoint.end_date}",
            f"[{style}]{checkpoint.status}[/{style}]",
            str(checkpoint.attempts),
            str(checkpoint.repaired_records),
            str(checkpoint.failed_records),
            str(checkpoint.still_missing),
            (checkpoint.last_error or "")[:60],
        )
    console.print(table)


@app.command("reset-checkpoints")
def reset_checkpoints(
    unit: Optional[str] = typer.Argument(None, help="Unit key (YYYY-MM); all units when omitted"),
):
    """Delete checkpoints so units are audited again from scratch."""
    target = unit or "ALL units"
    if not typer.confirm(f"Reset checkpoints for {target}?"):
        console.print("❌ Operation cancelled")
        return

    removed = _run(lambda o: o.checkpoint_store.reset(unit))
    console.print(f"🗑️ Removed {removed} checkpoint(s)")


@app.command("rebuild-summaries")
def rebuild_summaries(
    start: str = typer.Argument(..., help="First date, YYYY-MM-DD"),
    end: str = typer.Argument(..., help="Last date, YYYY-MM-DD"),
):
    """Recompute daily, monthly and yearly summaries from derived records."""
    start_date, end_date = _parse_date(start), _parse_date(end)
    counts = _run(lambda o: o.rebuild_summaries(start_date, end_date))
    console.print(
        f"✅ Rebuilt {counts['days']} daily, {counts['months']} monthly and {counts['years']} yearly summaries"
    )


def main():
    app()


if __name__ == "__main__":
    main()
