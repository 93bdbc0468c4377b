"""Output formatting (rich text and JSON)."""

from indexsense.output.renderers import (
    OutputFormat,
    drop_plan_panel,
    format_bytes,
    render_simulation_json,
    render_views_json,
    scoring_table,
    simulation_table,
    summary_panel,
    views_table,
)

__all__ = [
    "OutputFormat",
    "drop_plan_panel",
    "format_bytes",
    "render_simulation_json",
    "render_views_json",
    "scoring_table",
    "simulation_table",
    "summary_panel",
    "views_table",
]
