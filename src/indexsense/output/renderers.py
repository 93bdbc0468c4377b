"""
Output renderers for different formats.

Separates presentation logic from analysis logic. Text output is built
from rich renderables; JSON output from plain dicts.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Iterable, Sequence

from rich.console import Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from indexsense.models import (
    IndexView,
    ScoreBand,
    ScoringConfig,
    SignalLabel,
    SimulationResult,
)
from indexsense.simulation import SelectionSummary


class OutputFormat(str, Enum):
    """Supported output formats."""

    TEXT = "text"
    JSON = "json"


_SIGNAL_STYLES: dict[SignalLabel, str] = {
    SignalLabel.UNUSED: "green",
    SignalLabel.LOW_UTILITY: "yellow",
    SignalLabel.PROTECTED: "red",
    SignalLabel.ACTIVE: "blue",
    SignalLabel.UNKNOWN: "dim",
}

# Risk is bad when high, impact is good when high
_RISK_STYLES = {ScoreBand.HIGH: "red", ScoreBand.MEDIUM: "yellow", ScoreBand.LOW: "green"}
_IMPACT_STYLES = {ScoreBand.HIGH: "green", ScoreBand.MEDIUM: "yellow", ScoreBand.LOW: "dim"}
_CONFIDENCE_STYLES = {ScoreBand.HIGH: "green", ScoreBand.MEDIUM: "yellow", ScoreBand.LOW: "red"}


def format_bytes(num_bytes: float | None) -> str:
    """Human-readable byte count (1.5 MB)."""
    if num_bytes is None:
        return "-"
    value = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if abs(value) < 1024 or unit == "TB":
            if unit == "B":
                return f"{int(value)} B"
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TB"


# =============================================================================
# Text (rich)
# =============================================================================


def views_table(views: Sequence[IndexView], title: str = "Indexes") -> Table:
    table = Table(title=title, show_lines=False)
    table.add_column("Index", style="bold")
    table.add_column("Columns")
    table.add_column("Type", style="dim")
    table.add_column("Unique", justify="center")
    table.add_column("Signal")
    table.add_column("Impact", justify="right")
    table.add_column("Risk", justify="right")
    table.add_column("Reason", style="dim")

    for view in views:
        impact_style = _IMPACT_STYLES[ScoreBand.for_score(view.scores.impact)]
        risk_style = _RISK_STYLES[ScoreBand.for_score(view.scores.risk)]
        table.add_row(
            view.name,
            ", ".join(view.columns),
            view.group.type,
            "yes" if view.group.unique else "",
            Text(view.signal.label.value, style=_SIGNAL_STYLES[view.signal.label]),
            Text(str(view.scores.impact), style=impact_style),
            Text(str(view.scores.risk), style=risk_style),
            view.signal.reason,
        )
    return table


def simulation_table(results: Iterable[SimulationResult]) -> Table:
    table = Table(title="Drop Simulation")
    table.add_column("Index", style="bold")
    table.add_column("Mode")
    table.add_column("Confidence", justify="right")
    table.add_column("Analyzed", justify="right")
    table.add_column("Regressions", justify="right")
    table.add_column("Worst", justify="right")
    table.add_column("Coverage", justify="right")
    table.add_column("Notes", style="dim")

    for result in results:
        confidence_style = _CONFIDENCE_STYLES[ScoreBand.for_confidence(result.confidence_score)]
        table.add_row(
            result.index_name,
            Text(result.mode, style="red" if result.failed else ""),
            Text(str(result.confidence_score), style=confidence_style),
            f"{result.analyzed_queries}/{result.matched_queries}",
            str(result.regressions),
            f"{result.worst_regression_pct:.1f}%",
            f"{result.coverage_ratio:.0%}",
            "; ".join(result.notes),
        )
    return table


def summary_panel(summary: SelectionSummary) -> Panel:
    if not summary.selected_count:
        return Panel("No indexes selected.", title="Selection")

    lines = [
        f"Selected:          {summary.selected_count} of {summary.total_indexes}",
        f"Avg impact / risk: {summary.avg_impact} / {summary.avg_risk}",
        f"Storage reclaimed: ~{format_bytes(summary.estimated_storage_bytes)}",
        f"Write overhead:    ~{summary.write_overhead_reduction_pct}% (rough estimate)",
    ]
    if summary.has_simulation:
        lines.append(
            f"Confidence:        {summary.avg_confidence} "
            f"(worst regression {summary.worst_regression_pct:.1f}%)"
        )
        if summary.failed_count:
            lines.append(f"Failed simulations: {summary.failed_count}")
    else:
        lines.append("Confidence:        - (run a simulation)")
    return Panel("\n".join(lines), title="Selection")


def drop_plan_panel(script: str) -> Panel:
    body = Group(
        Text(script or "-- nothing selected"),
        Text("Simulation only. No changes are applied.", style="dim"),
    )
    return Panel(body, title="Drop Plan")


def scoring_table(config: ScoringConfig) -> Table:
    table = Table(title="Scoring Weights")
    table.add_column("Scope", style="bold")
    table.add_column("Factor")
    table.add_column("Weight", justify="right")
    for scope in ("impact", "risk"):
        for key, value in getattr(config, scope).model_dump().items():
            table.add_row(scope, key, f"{value:.2f}")
    return table


# =============================================================================
# JSON
# =============================================================================


def view_to_dict(view: IndexView) -> dict[str, Any]:
    return {
        "name": view.name,
        "type": view.group.type,
        "unique": view.group.unique,
        "columns": list(view.columns),
        "signal": {"label": view.signal.label.value, "reason": view.signal.reason},
        "scores": {"impact": view.scores.impact, "risk": view.scores.risk},
    }


def render_views_json(views: Sequence[IndexView], summary: SelectionSummary | None = None) -> str:
    data: dict[str, Any] = {"indexes": [view_to_dict(v) for v in views]}
    if summary is not None:
        data["summary"] = summary.to_dict()
    return json.dumps(data, indent=2)


def render_simulation_json(
    results: Sequence[SimulationResult],
    summary: SelectionSummary,
) -> str:
    return json.dumps(
        {
            "results": [r.model_dump() for r in results],
            "summary": summary.to_dict(),
        },
        indent=2,
    )
