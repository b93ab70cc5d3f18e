from __future__ import annotations

import signal
import sys
import threading
from datetime import date
from pathlib import Path
from typing import Optional

import typer

from aml_monitor.config import get_settings
from aml_monitor.domain.models import PassReason
from aml_monitor.errors import AlreadyRunning, PipelineError
from aml_monitor.infrastructure.db_factory import apply_schema
from aml_monitor.monitor import ChangeMonitor
from aml_monitor.orchestrator import ProcessingOrchestrator, utcnow
from aml_monitor.reporter import print_alert_summary, print_checkpoint, print_pass_result
from aml_monitor.trigger import handle_insert_event
from aml_monitor.utils.logging import configure_logging

app = typer.Typer(help="AML velocity monitor CLI.")


def _setup() -> ProcessingOrchestrator:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.json_logs)
    return ProcessingOrchestrator.from_settings(settings)


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"table={settings.db_schema}.{settings.transactions_table} "
        f"process={settings.process_name} interval={settings.monitor_interval_seconds}s | "
        f"rapid<={settings.rapid_window_minutes}min min_count={settings.min_rapid_count} "
        f"lookback={settings.lookback_hours}h"
    )


@app.command("init-db")
def init_db() -> None:
    """
    Create the transactions, checkpoint, and alert tables if missing.
    """
    configure_logging(level=get_settings().log_level)
    apply_schema()
    typer.echo("Schema applied.")


@app.command("run-pass")
def run_pass(
    reason: PassReason = typer.Option(
        PassReason.MANUAL,
        "--reason",
        "-r",
        case_sensitive=False,
        help="Reason recorded for this pass.",
    ),
) -> None:
    """
    Run one detection pass now.
    """
    orchestrator = _setup()
    try:
        result = orchestrator.run_pass(reason)
    except AlreadyRunning as exc:
        typer.echo(f"{exc}; not starting another pass.")
        return
    except PipelineError as exc:
        typer.echo(f"Pass failed: {exc}", err=True)
        raise typer.Exit(code=1)
    print_pass_result(result)


@app.command()
def monitor() -> None:
    """
    Poll the transactions table and run passes when it changes. Stop with Ctrl+C.
    """
    orchestrator = _setup()
    stop = threading.Event()

    def _request_stop(signum, frame) -> None:
        typer.echo(f"Received signal: {signal.Signals(signum).name}. Shutting down...", err=True)
        stop.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    ChangeMonitor.from_orchestrator(orchestrator).run(stop)


@app.command()
def summary(
    day: Optional[str] = typer.Option(None, "--day", "-d", help="ISO date (default today, UTC)."),
) -> None:
    """
    Show alert counts for a day grouped by type and priority.
    """
    orchestrator = _setup()
    watcher = ChangeMonitor.from_orchestrator(orchestrator)
    target = date.fromisoformat(day) if day else utcnow().date()
    print_alert_summary(watcher.alerts_summary(target), target)


@app.command()
def status() -> None:
    """
    Show the checkpoint of the configured process.
    """
    orchestrator = _setup()
    print_checkpoint(orchestrator.checkpoints.read(orchestrator.process_name))


@app.command()
def reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """
    Clear the watermark so the next pass reprocesses the whole table.
    """
    orchestrator = _setup()
    if not yes:
        typer.confirm(f"Reset checkpoint '{orchestrator.process_name}'?", abort=True)
    try:
        print_checkpoint(orchestrator.reset_checkpoint())
    except AlreadyRunning as exc:
        typer.echo(f"{exc}; refusing to reset.", err=True)
        raise typer.Exit(code=1)


@app.command("handle-event")
def handle_event(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON insert event file."),
) -> None:
    """
    Process one insert notification (as delivered by a storage event trigger).
    """
    orchestrator = _setup()
    try:
        result = handle_insert_event(path.read_bytes(), orchestrator)
    except AlreadyRunning as exc:
        typer.echo(f"{exc}; the next pass will pick these rows up.")
        return
    except PipelineError as exc:
        typer.echo(f"Event processing failed: {exc}", err=True)
        raise typer.Exit(code=1)
    if result is None:
        typer.echo("Event skipped.")
        return
    print_pass_result(result)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
