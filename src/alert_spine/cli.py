"""
CLI: ``alert-spine`` — run the scheduler, backfill history, inspect status.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from alert_spine.clock import ensure_utc
from alert_spine.errors import AlertSpineError
from alert_spine.loader import discover_definitions
from alert_spine.logging_config import configure_logging
from alert_spine.manager import AlertManager, make_repository
from alert_spine.settings import AlertSpineSettings, get_settings
from alert_spine.store import ResultStore

app = typer.Typer(
    name="alert-spine",
    help="alert-spine — threshold alerts over time-series queries.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()
err_console = Console(stderr=True)

_TIME_FORMATS = ["%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d"]


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import version as pkg_version

        typer.echo(f"alert-spine {pkg_version('alert-spine')}")
        raise typer.Exit()


@app.callback()
def callback(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """alert-spine CLI: run, backfill and inspect threshold alerts."""


# ── Helpers ──────────────────────────────────────────────────────────────


def _settings(root: Path | None, database: Path | None) -> AlertSpineSettings:
    settings = get_settings()
    updates: dict[str, Any] = {}
    if root is not None:
        updates["definitions_root"] = root
    if database is not None:
        updates["database_path"] = database
    return settings.model_copy(update=updates) if updates else settings


def make_manager(settings: AlertSpineSettings) -> AlertManager:
    return AlertManager.from_settings(settings)


def open_store(settings: AlertSpineSettings) -> ResultStore:
    repository = make_repository(settings)
    repository.create_schema()
    return ResultStore(repository)


def _fail(error: AlertSpineError) -> None:
    err_console.print(f"[bold red]Error[/bold red] ({error.category.value}): {error.message}")
    raise typer.Exit(code=1)


def _print_table(rows: list[dict[str, Any]], *, title: str = "") -> None:
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in rows[0]:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if v is None else str(v) for v in row.values()))
    console.print(table)


def _emit(rows: list[dict[str, Any]], *, as_json: bool, title: str) -> None:
    if as_json:
        console.print_json(json.dumps(rows, default=str))
    else:
        _print_table(rows, title=title)


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("run")
def run(
    root: Path | None = typer.Option(None, "--root", "-r", help="Definitions root"),
    database: Path | None = typer.Option(None, "--database", "-d", help="SQLite event log"),
) -> None:
    """Evaluate all alerts once, then keep evaluating them on their cron schedules."""
    settings = _settings(root, database)
    configure_logging(level=settings.log_level, format=settings.log_format)
    try:
        manager = make_manager(settings)
        definitions = manager.discover_definitions()
        console.print(f"Loaded [bold]{len(definitions)}[/bold] alert definitions")
        scheduler = manager.run_scheduler()
    except AlertSpineError as e:
        _fail(e)
        return
    scheduler.run_forever()


@app.command("backfill")
def backfill(
    start: datetime = typer.Option(..., "--start", formats=_TIME_FORMATS, help="Range start (UTC, exclusive)"),
    end: datetime = typer.Option(..., "--end", formats=_TIME_FORMATS, help="Range end (UTC, inclusive)"),
    clear: bool = typer.Option(False, "--clear", help="Truncate the event log first"),
    root: Path | None = typer.Option(None, "--root", "-r"),
    database: Path | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Re-evaluate every alert for each cron tick in (start, end]."""
    settings = _settings(root, database)
    configure_logging(level=settings.log_level, format=settings.log_format)
    try:
        reports = make_manager(settings).backfill(ensure_utc(start), ensure_utc(end), clear=clear)
    except AlertSpineError as e:
        _fail(e)
        return
    _emit([r.to_dict() for r in reports], as_json=json_out, title="Backfill")


@app.command("status")
def status(
    database: Path | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the latest recorded state of every alert."""
    settings = _settings(None, database)
    try:
        store = open_store(settings)
        store.load_status_into_memory()
    except AlertSpineError as e:
        _fail(e)
        return
    _emit([s.to_dict() for s in store.statuses()], as_json=json_out, title="Alert Status")


@app.command("clear")
def clear(
    database: Path | None = typer.Option(None, "--database", "-d"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete all recorded alert events."""
    if not yes:
        typer.confirm("Delete all recorded alert events?", abort=True)
    settings = _settings(None, database)
    try:
        open_store(settings).clear_all()
    except AlertSpineError as e:
        _fail(e)
        return
    console.print("[green]Alert event log cleared.[/green]")


@app.command("definitions")
def definitions(
    root: Path | None = typer.Option(None, "--root", "-r"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List discovered alert definitions."""
    settings = _settings(root, None)
    try:
        loaded = discover_definitions(settings.definitions_root, settings.definitions_pattern)
    except AlertSpineError as e:
        _fail(e)
        return
    rows = [
        {
            "id": str(d.id),
            "check_every": d.check_every,
            "bucket": d.bucket_expression,
            "value_gt": d.condition.greater_than,
            "value_lt": d.condition.less_than,
        }
        for d in loaded
    ]
    _emit(rows, as_json=json_out, title="Alert Definitions")


__all__ = ["app"]
