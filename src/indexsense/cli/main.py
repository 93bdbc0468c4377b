"""
IndexSense CLI - index utilization scoring and drop simulation.

Works on table snapshots (JSON documents captured from the database, see
indexsense.providers) so that no live connection is needed.

Usage:
    indexsense analyze orders.json
    indexsense analyze orders.json --candidates-only --search email
    indexsense plan orders.json idx_email idx_legacy
    indexsense simulate orders.json idx_email --format json
    indexsense calibrate set risk usage 0.8
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Annotated, List, Optional

import typer
from rich.console import Console

from indexsense import __version__
from indexsense.advisor import IndexAdvisor
from indexsense.calibration import CalibrationStore, JsonFileStore
from indexsense.cli.commands import calibrate
from indexsense.config import Config, get_config
from indexsense.dialect import Dialect
from indexsense.exceptions import IndexSenseError
from indexsense.output import (
    OutputFormat,
    drop_plan_panel,
    render_simulation_json,
    render_views_json,
    simulation_table,
    summary_panel,
    views_table,
)
from indexsense.providers import (
    ReplaySimulationProvider,
    SnapshotMetadataProvider,
    TableSnapshotFile,
)

app = typer.Typer(
    name="indexsense",
    help="Index utilization scoring and drop simulation advisor",
    no_args_is_help=True,
)

calibrate_app = typer.Typer(help="Show or adjust scoring weights")
calibrate.register(calibrate_app)
app.add_typer(calibrate_app, name="calibrate")

console = Console()
error_console = Console(stderr=True)


SnapshotArg = Annotated[
    Path,
    typer.Argument(
        help="Path to a table snapshot (JSON)",
        exists=True,
        readable=True,
        resolve_path=True,
    ),
]
DialectOpt = Annotated[
    Optional[str],
    typer.Option("--dialect", "-d", help="mysql or postgresql/postgres (defaults to the snapshot's)"),
]
FormatOpt = Annotated[
    OutputFormat,
    typer.Option("--format", "-f", help="Output format"),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"IndexSense version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    log_level: Annotated[
        Optional[str],
        typer.Option("--log-level", help="Logging level (default from INDEXSENSE_LOG_LEVEL)"),
    ] = None,
) -> None:
    """IndexSense - index utilization scoring and drop simulation."""
    try:
        level = (log_level or get_config().log_level).upper()
    except IndexSenseError as e:
        error_console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1)
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def calibration_store(config: Config) -> CalibrationStore:
    return CalibrationStore(JsonFileStore(config.calibration_file), key=config.calibration_key)


def open_advisor(snapshot_path: Path, dialect: str | None) -> IndexAdvisor:
    """Build and load an advisor over a snapshot file."""
    config = get_config()
    snapshot = TableSnapshotFile.load(snapshot_path)
    if dialect:
        selected = Dialect.from_string(dialect)
    elif "dialect" in snapshot.data:
        selected = snapshot.dialect
    else:
        selected = config.dialect
    advisor = IndexAdvisor(
        metadata=SnapshotMetadataProvider(snapshot),
        simulator=ReplaySimulationProvider.from_snapshot(snapshot),
        dialect=selected,
        database=snapshot.database,
        table=snapshot.table,
        calibration=calibration_store(config),
        max_concurrency=config.max_concurrency,
    )
    asyncio.run(advisor.load())
    return advisor


def _select_or_fail(advisor: IndexAdvisor, index_names: list[str]) -> None:
    known = {v.name: v for v in advisor.views()}
    for name in index_names:
        view = known.get(name)
        if view is None:
            error_console.print(f"[red]Unknown index:[/red] {name}")
            raise typer.Exit(code=1)
        if view.is_protected:
            error_console.print(f"[yellow]Skipping protected index {name}[/yellow]")
    advisor.select(*index_names)


@app.command()
def analyze(
    snapshot: SnapshotArg,
    dialect: DialectOpt = None,
    search: Annotated[
        str,
        typer.Option("--search", "-s", help="Filter by index or column name"),
    ] = "",
    candidates_only: Annotated[
        bool,
        typer.Option("--candidates-only", help="Only show unused / low-utility indexes"),
    ] = False,
    output_format: FormatOpt = OutputFormat.TEXT,
) -> None:
    """
    Classify and score every index of a table.

    Examples:

        $ indexsense analyze orders.json

        $ indexsense analyze orders.json --candidates-only -f json
    """
    try:
        advisor = open_advisor(snapshot, dialect)
        views = advisor.filtered_views(search=search, candidates_only=candidates_only)
    except IndexSenseError as e:
        error_console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1)

    if output_format == OutputFormat.JSON:
        console.print_json(render_views_json(views))
        return

    title = f"{advisor.database}.{advisor.table} ({advisor.dialect.value})"
    console.print(views_table(views, title=title))
    candidates = advisor.unused_candidates()
    console.print(f"\n[bold]{len(candidates)}[/bold] drop candidate(s)")


@app.command()
def plan(
    snapshot: SnapshotArg,
    index_names: Annotated[
        List[str],
        typer.Argument(help="Indexes to drop"),
    ],
    dialect: DialectOpt = None,
) -> None:
    """
    Print a DROP INDEX script for the given indexes.

    Nothing is executed. Protected (primary) indexes are left out.
    """
    try:
        advisor = open_advisor(snapshot, dialect)
    except IndexSenseError as e:
        error_console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1)

    _select_or_fail(advisor, index_names)
    script = advisor.drop_plan()
    console.print(drop_plan_panel(script))
    console.print(summary_panel(advisor.summary()))


@app.command()
def simulate(
    snapshot: SnapshotArg,
    index_names: Annotated[
        List[str],
        typer.Argument(help="Indexes to simulate dropping"),
    ],
    dialect: DialectOpt = None,
    output_format: FormatOpt = OutputFormat.TEXT,
) -> None:
    """
    Run a what-if drop simulation for the given indexes.

    Results are replayed from the snapshot's recorded simulations; indexes
    without a recording show up as failed.
    """
    try:
        advisor = open_advisor(snapshot, dialect)
    except IndexSenseError as e:
        error_console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1)

    _select_or_fail(advisor, index_names)
    batch = asyncio.run(advisor.simulate())
    results = batch.results if batch else ()
    summary = advisor.summary()

    if output_format == OutputFormat.JSON:
        console.print_json(render_simulation_json(results, summary))
        return

    if not results:
        console.print("[yellow]Nothing to simulate[/yellow]")
    else:
        console.print(simulation_table(results))
    console.print(summary_panel(summary))


if __name__ == "__main__":
    app()
