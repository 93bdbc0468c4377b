"""Calibration commands: show, set, reset."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console

from indexsense.calibration import CalibrationStore, JsonFileStore
from indexsense.config import get_config
from indexsense.output import scoring_table

console = Console()
error_console = Console(stderr=True)


def _store() -> CalibrationStore:
    config = get_config()
    return CalibrationStore(JsonFileStore(config.calibration_file), key=config.calibration_key)


def register(calibrate_app: typer.Typer) -> None:
    """Register calibration commands on the given Typer sub-app."""

    @calibrate_app.command("show")
    def calibrate_show() -> None:
        """Show the current scoring weights."""
        console.print(scoring_table(_store().load()))

    @calibrate_app.command("set")
    def calibrate_set(
        scope: Annotated[str, typer.Argument(help="impact or risk")],
        key: Annotated[str, typer.Argument(help="Factor name (size, usage, width, unique, primary)")],
        value: Annotated[float, typer.Argument(help="Weight, clamped to [0, 1]")],
    ) -> None:
        """
        Set one scoring weight.

        Examples:

            $ indexsense calibrate set risk usage 0.8
        """
        try:
            config, error = _store().set_weight(scope, key, value)
        except ValueError as e:
            error_console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(code=1)

        if error is not None:
            error_console.print(f"[yellow]Warning:[/yellow] {error.message}")
        console.print(scoring_table(config))

    @calibrate_app.command("reset")
    def calibrate_reset() -> None:
        """Restore the default scoring weights."""
        store = _store()
        config = store.reset()
        console.print("[green]Scoring weights reset to defaults[/green]")
        console.print(scoring_table(config))
