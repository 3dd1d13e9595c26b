"""
CLI interface for tokentrim.

`tokentrim run -- <command>` wraps a tool; the other commands report on the
accounting ledger.
"""

import logging
import sqlite3
import sys
from enum import Enum
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler

from tokentrim.adapters.registry import build_default_registry
from tokentrim.cli import render
from tokentrim.config.loader import AppConfig, config_path, load_config, write_default_config
from tokentrim.core.aggregation import aggregate, stats_by_key, stats_by_tool, summarize
from tokentrim.core.dispatch import Dispatcher, RawOutputTee
from tokentrim.core.economics import compute_totals, merge
from tokentrim.core.feed import CcusageJsonFeed, load_feed
from tokentrim.core.periods import DAY, MONTH, WEEK, Granularity
from tokentrim.storage.db import resolve_db_path
from tokentrim.storage.repository import InMemoryUsageStore, initialize_schema, open_store

logger = logging.getLogger(__name__)

app = typer.Typer(help="Compact developer tool output and account for the tokens it saves.")
console = Console()
err_console = Console(stderr=True)

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

NO_DATA_MESSAGE = "No tracking data yet. Run a command through `tokentrim run -- <command>` first."


class OutputFormat(str, Enum):
    TEXT = "text"
    JSON = "json"
    CSV = "csv"


def _configure_logging(verbose: int) -> None:
    """Send log records to stderr through Rich; stdout carries only tool output."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    handler = RichHandler(console=err_console, show_time=False, show_path=False, rich_tracebacks=True)
    logging.basicConfig(level=level, format="%(message)s", handlers=[handler], force=True)


def _load_config(ctx: typer.Context) -> AppConfig:
    try:
        return load_config(ctx.obj)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        err_console.print(f"[red]Configuration error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)


def _selected_granularities(daily: bool, weekly: bool, monthly: bool, all_: bool) -> List[Granularity]:
    if all_:
        return [DAY, WEEK, MONTH]
    return [g for g, flag in ((DAY, daily), (WEEK, weekly), (MONTH, monthly)) if flag]


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="More diagnostics on stderr"),
    config: Optional[Path] = typer.Option(None, "--config", help="Settings file to use"),
):
    """tokentrim CLI."""
    _configure_logging(verbose)
    ctx.obj = config
    if ctx.invoked_subcommand is None:
        console.print("tokentrim - Use --help to see available commands")


@app.command(
    context_settings={
        "allow_extra_args": True,
        "ignore_unknown_options": True,
        "allow_interspersed_args": False,
    }
)
def run(
    ctx: typer.Context,
    raw: bool = typer.Option(False, "--raw", help="Show the tool's output unchanged"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Kill the tool after this many seconds"),
):
    """
    Run a command and print a compact summary of its output.

    The exit code is the command's own. Use `--` before the command when it
    takes options of its own: `tokentrim run -- git log -n 5`.
    """
    argv = list(ctx.args)
    if argv and argv[0] == "--":
        argv = argv[1:]
    if not argv:
        err_console.print("[red]Error:[/] no command given")
        sys.exit(2)

    config = _load_config(ctx)
    registry = build_default_registry(
        disabled=config.adapters.disabled,
        max_lines=config.adapters.max_lines,
    )
    tee = None
    if config.tee.active:
        tee = RawOutputTee(config.tee.directory, config.tee.mode.value)

    try:
        store = open_store(config.database_path)
    except (sqlite3.Error, OSError) as e:
        logger.warning("Could not open usage store: %s", e)
        err_console.print("[yellow]tokentrim: accounting unavailable[/]")
        store = InMemoryUsageStore()

    with store:
        dispatcher = Dispatcher(
            registry,
            store,
            timeout=timeout if timeout is not None else config.runner.timeout_seconds,
            tee=tee,
            out=sys.stdout,
            err=sys.stderr,
        )
        result = dispatcher.dispatch(argv, raw=raw)
    sys.exit(result.exit_code)


@app.command()
def gain(
    ctx: typer.Context,
    daily: bool = typer.Option(False, "--daily", "-d", help="Per-day breakdown"),
    weekly: bool = typer.Option(False, "--weekly", "-w", help="Per-week breakdown (weeks start Monday)"),
    monthly: bool = typer.Option(False, "--monthly", "-m", help="Per-month breakdown"),
    all_: bool = typer.Option(False, "--all", "-a", help="Daily, weekly and monthly breakdowns"),
    output_format: OutputFormat = typer.Option(OutputFormat.TEXT, "--format", "-f", help="text, json or csv"),
):
    """Show how many tokens compaction has saved."""
    config = _load_config(ctx)
    try:
        with open_store(config.database_path) as store:
            records = list(store.iter_records())
    except sqlite3.Error as e:
        err_console.print(f"[red]Error reading usage store:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    overall = summarize(records)
    if overall is None:
        console.print(NO_DATA_MESSAGE)
        sys.exit(EXIT_CODE_PASS)

    granularities = _selected_granularities(daily, weekly, monthly, all_)
    tables = {g.name: aggregate(records, g) for g in granularities}

    if output_format is OutputFormat.JSON:
        document = {"summary": render.period_record(overall)}
        document.update({name: [render.period_record(r) for r in rows] for name, rows in tables.items()})
        typer.echo(render.to_json(document))
        sys.exit(EXIT_CODE_PASS)

    if output_format is OutputFormat.CSV:
        if not tables:
            tables = {DAY.name: aggregate(records, DAY)}
        for name, rows in tables.items():
            if len(tables) > 1:
                typer.echo(f"# {name}")
            typer.echo(render.to_csv([render.period_record(r) for r in rows], render.PERIOD_FIELDS), nl=False)
        sys.exit(EXIT_CODE_PASS)

    if not tables:
        console.print("\n[bold]Token savings[/bold]")
        console.print("-" * 40)
        console.print(f"Commands:      {overall.command_count}")
        console.print(f"Input units:   {render.format_units(overall.input_units)}")
        console.print(f"Output units:  {render.format_units(overall.output_units)}")
        console.print(
            f"Saved:         {render.format_units(overall.saved_units)} ({overall.savings_pct:.1f}%)"
        )
        console.print(render.tool_table(stats_by_tool(records)))
    for name, rows in tables.items():
        console.print(render.period_table(rows, f"{name.capitalize()} savings"))


@app.command()
def economics(
    ctx: typer.Context,
    daily: bool = typer.Option(False, "--daily", "-d", help="Per-day breakdown"),
    weekly: bool = typer.Option(False, "--weekly", "-w", help="Per-week breakdown"),
    monthly: bool = typer.Option(False, "--monthly", "-m", help="Per-month breakdown (default)"),
    all_: bool = typer.Option(False, "--all", "-a", help="Daily, weekly and monthly breakdowns"),
    feed: Optional[Path] = typer.Option(None, "--feed", help="Cost feed JSON export"),
    output_format: OutputFormat = typer.Option(OutputFormat.TEXT, "--format", "-f", help="text, json or csv"),
):
    """
    Compare spend from a cost feed with the tokens tokentrim saved.

    Periods with data on only one side still appear; the missing side is
    shown as a dash.
    """
    config = _load_config(ctx)
    feed_path = feed or config.economics.feed_path
    cost_feed = CcusageJsonFeed(feed_path) if feed_path else None
    if cost_feed is None:
        logger.info("No cost feed configured; showing local data only")

    try:
        with open_store(config.database_path) as store:
            records = list(store.iter_records())
    except sqlite3.Error as e:
        err_console.print(f"[red]Error reading usage store:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    granularities = _selected_granularities(daily, weekly, monthly, all_) or [MONTH]
    reports = {}
    for granularity in granularities:
        rows = merge(stats_by_key(records, granularity), load_feed(cost_feed, granularity))
        reports[granularity.name] = (rows, compute_totals(rows))

    if not any(rows for rows, _ in reports.values()):
        console.print(NO_DATA_MESSAGE)
        sys.exit(EXIT_CODE_PASS)

    if output_format is OutputFormat.JSON:
        document = {
            name: {
                "periods": [render.economics_record(r) for r in rows],
                "totals": render.totals_record(totals),
            }
            for name, (rows, totals) in reports.items()
        }
        typer.echo(render.to_json(document))
        sys.exit(EXIT_CODE_PASS)

    if output_format is OutputFormat.CSV:
        for name, (rows, _) in reports.items():
            if len(reports) > 1:
                typer.echo(f"# {name}")
            typer.echo(
                render.to_csv([render.economics_record(r) for r in rows], render.ECONOMICS_FIELDS),
                nl=False,
            )
        sys.exit(EXIT_CODE_PASS)

    for name, (rows, totals) in reports.items():
        console.print(render.economics_table(rows, totals, f"{name.capitalize()} economics"))


@app.command()
def init(ctx: typer.Context):
    """Create the usage database and a commented settings file."""
    try:
        written = write_default_config(ctx.obj)
        if written:
            console.print(f"[green]✓[/] Settings template written to {written}")
        else:
            console.print(f"[dim]Settings file already exists at {config_path(ctx.obj)}[/]")
        config = load_config(ctx.obj)
        db_path = resolve_db_path(config.database_path)
        initialize_schema(db_path)
        console.print(f"[green]✓[/] Database initialized at {db_path}")
        sys.exit(EXIT_CODE_PASS)
    except (OSError, sqlite3.Error, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error initializing tokentrim:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def adapters(ctx: typer.Context):
    """List the commands tokentrim knows how to compact."""
    config = _load_config(ctx)
    registry = build_default_registry(disabled=config.adapters.disabled)
    table = render.adapter_table(registry)
    console.print(table)


if __name__ == "__main__":
    app()
