"""Run summaries for batch results.

Renders UnitResults as a rich table with OK/failed totals, or as JSON.
"""

import json
from typing import Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .types import UnitResult


def unit_status(unit: UnitResult) -> str:
    """Short status text: OK, FAILED (rc) or ERROR (type)."""
    if unit.error is not None:
        return f"ERROR ({unit.error.context.error_type})"
    if unit.ok:
        return "OK"
    return f"FAILED ({unit.result.exit_code})"


def _status_style(unit: UnitResult) -> str:
    if unit.error is not None:
        return "red bold"
    return "green" if unit.ok else "red"


def count_results(units: Sequence[UnitResult]) -> tuple[int, int]:
    """Return (ok, failed) counts."""
    ok = sum(1 for unit in units if unit.ok)
    return ok, len(units) - ok


def build_table(units: Sequence[UnitResult], title: str | None = "Results") -> Table:
    """Build a table with one row per unit."""
    table = Table(title=title)
    table.add_column("Host", style="cyan")
    table.add_column("Task")
    table.add_column("Status")
    table.add_column("Detail", overflow="fold")

    for unit in units:
        detail = ""
        if unit.error is not None:
            detail = unit.error.message
        elif not unit.ok and unit.result is not None:
            detail = unit.result.stderr.strip().splitlines()[-1] if unit.result.stderr.strip() else ""
        table.add_row(
            escape(unit.host),
            escape(unit.task),
            f"[{_status_style(unit)}]{escape(unit_status(unit))}[/]",
            escape(detail),
        )
    return table


def print_report(units: Sequence[UnitResult], console: Console | None = None) -> None:
    """Print the results table followed by the totals."""
    console = console or Console()
    ok, failed = count_results(units)
    console.print(build_table(units))
    style = "green" if failed == 0 else "red"
    console.print(f"[{style}]{ok} ok, {failed} failed[/]")


def format_results_json(units: Sequence[UnitResult]) -> str:
    """Format results as a JSON document.

    Returns:
        JSON with a summary and one entry per unit
    """
    ok, failed = count_results(units)
    output = {
        "summary": {"total": len(units), "ok": ok, "failed": failed},
        "results": [unit.to_dict() for unit in units],
    }
    return json.dumps(output, indent=2)
