from __future__ import annotations

from datetime import date
from typing import List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from aml_monitor.domain.models import AlertSummaryRow, Checkpoint, PassResult

_PRIORITY_STYLES = {"HIGH": "bold red", "MEDIUM": "yellow", "LOW": "green"}


def _fmt_ts(value) -> str:
    return value.isoformat(sep=" ", timespec="seconds") if value else "-"


def print_pass_result(result: PassResult, console: Optional[Console] = None) -> None:
    """
    Render one pass outcome as a two-column table.
    """
    console = console or Console()
    table = Table(title=f"Detection pass: {result.process_name}", box=box.ROUNDED, show_header=False)
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right", style="magenta")

    table.add_row("Reason", result.reason.value)
    table.add_row("Status", result.status.value)
    table.add_row("Records processed", f"{result.records_processed:,}")
    table.add_row("Alerts generated", f"{result.alerts_generated:,}")
    table.add_row("Previous watermark", _fmt_ts(result.previous_watermark))
    table.add_row("New watermark", _fmt_ts(result.new_watermark))
    table.add_row("Duration (s)", f"{result.duration_seconds:.2f}")
    if result.peak_rss_bytes:
        table.add_row("Peak memory (MB)", f"{result.peak_rss_bytes / (1024 * 1024):.2f}")

    console.print(table)


def print_alert_summary(
    rows: List[AlertSummaryRow], day: date, console: Optional[Console] = None
) -> None:
    """
    Render alert counts grouped by type and priority.
    """
    console = console or Console()

    if not rows:
        console.print(f"[yellow]No alerts generated on {day.isoformat()}.[/yellow]")
        return

    table = Table(
        title=f"Alert Summary {day.isoformat()}",
        box=box.ROUNDED,
        caption=f"{sum(r.count for r in rows):,} alerts",
    )
    table.add_column("Alert type", style="cyan", no_wrap=True)
    table.add_column("Priority")
    table.add_column("Alerts", justify="right", style="magenta")

    for row in rows:
        style = _PRIORITY_STYLES.get(row.priority.value, "")
        table.add_row(row.alert_type, f"[{style}]{row.priority.value}[/{style}]", f"{row.count:,}")

    console.print(table)


def print_checkpoint(checkpoint: Optional[Checkpoint], console: Optional[Console] = None) -> None:
    console = console or Console()
    if checkpoint is None:
        console.print("[yellow]No checkpoint recorded yet.[/yellow]")
        return

    table = Table(title=f"Checkpoint: {checkpoint.process_name}", box=box.ROUNDED, show_header=False)
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right")

    table.add_row("Status", checkpoint.status.value)
    table.add_row("Watermark", _fmt_ts(checkpoint.last_processed_timestamp))
    table.add_row("Total records processed", f"{checkpoint.total_records_processed:,}")
    table.add_row("Alerts (last pass)", f"{checkpoint.alerts_generated:,}")
    if checkpoint.processing_duration_seconds is not None:
        table.add_row("Duration (last pass, s)", f"{checkpoint.processing_duration_seconds:.2f}")
    table.add_row("Updated at", _fmt_ts(checkpoint.updated_at))
    if checkpoint.last_error:
        table.add_row("Last error", f"[red]{checkpoint.last_error}[/red]")

    console.print(table)
