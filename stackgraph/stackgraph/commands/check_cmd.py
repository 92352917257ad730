"""Check command - validate stack files and report non-fatal findings."""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path

from rich.console import Console
from rich.table import Table

from ..checks import RULE_EXPLANATIONS, Finding, StackChecks
from ..config import StackGraphConfig
from ..errors import StackGraphError
from .common import load_builder, report_error


def run_check(
    paths: Sequence[Path],
    *,
    fail_on: str = "error",
    output_json: bool = False,
    config: StackGraphConfig | None = None,
) -> int:
    """Run a full build plus the stack checks.

    A build failure always exits 1. Findings exit 1 when at or above ``fail_on``.
    """
    console = Console(stderr=True)

    try:
        builder = load_builder(paths, config)
        builder.build()
    except StackGraphError as exc:
        report_error(console, exc)
        return 1

    results = StackChecks(builder.graph).run_all()

    level_order = {"error": 0, "warning": 1, "info": 2}
    results.sort(key=lambda r: (level_order.get(r.level, 99), r.resource))

    counts = {"error": 0, "warning": 0, "info": 0}
    for r in results:
        counts[r.level] = counts.get(r.level, 0) + 1

    if output_json:
        print(json.dumps({"findings": [r.to_dict() for r in results], "counts": counts}, indent=2))
    else:
        _print_human_output(console, results, counts)

    if fail_on == "warning":
        if counts["error"] > 0 or counts["warning"] > 0:
            return 1
    else:  # fail_on == "error"
        if counts["error"] > 0:
            return 1

    return 0


def run_explain(rule_id: str) -> int:
    console = Console()
    explanation = RULE_EXPLANATIONS.get(rule_id)
    if explanation is None:
        console.print(f"Unknown rule: {rule_id}", style="bold red")
        console.print(f"Available: {', '.join(sorted(RULE_EXPLANATIONS))}", style="dim")
        return 1
    console.print(f"[bold]{rule_id}[/bold]: {explanation}")
    return 0


def _print_human_output(console: Console, results: list[Finding], counts: dict[str, int]) -> None:
    if not results:
        console.print("✓ Build valid, no findings", style="bold green")
        return

    t = Table(show_header=True, header_style="bold")
    t.add_column("Level")
    t.add_column("Rule", style="cyan")
    t.add_column("Resource")
    t.add_column("Message")
    styles = {"error": "red", "warning": "yellow", "info": "dim"}
    for r in results:
        t.add_row(f"[{styles.get(r.level, '')}]{r.level}[/]", r.rule, r.resource, r.message)
    console.print(t)
    console.print(
        f"{counts['error']} error(s), {counts['warning']} warning(s), {counts['info']} info",
        style="bold",
    )
