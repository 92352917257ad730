"""Plan command - build the provisioning plan for one or more stack files."""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path

from rich.console import Console
from rich.table import Table

from ..builder import BuildResult
from ..config import StackGraphConfig
from ..errors import StackGraphError
from ..models import Pending
from .common import load_builder, report_error, write_output


def run_plan(
    paths: Sequence[Path],
    *,
    fmt: str = "json",
    out: Path | None = None,
    config: StackGraphConfig | None = None,
) -> int:
    """Build the plan and print or write it.

    Returns:
        Exit code (0 = plan built, 1 = build failed)
    """
    console = Console(stderr=True)

    try:
        builder = load_builder(paths, config)
        result = builder.build()
    except StackGraphError as exc:
        report_error(console, exc)
        return 1

    if fmt == "rich":
        if out:
            rich_console = Console(record=True)
            _print_rich(result, console=rich_console)
            out.write_text(rich_console.export_text(), encoding="utf-8")
            console.print(f"Wrote plan to {out}", style="green")
        else:
            _print_rich(result, console=Console())
        return 0

    if fmt == "md":
        text = _to_markdown(result)
    else:
        text = json.dumps(result.to_dict(), indent=2, sort_keys=True) + "\n"

    write_output(console, text, out)
    return 0


def _describe(value: object) -> str:
    if isinstance(value, Pending):
        marker = " (secret)" if value.secret else ""
        return f"pending {value.resource_id}.{value.attribute}{marker}"
    return json.dumps(value)


def _print_rich(result: BuildResult, *, console: Console) -> None:
    plan = result.plan
    console.print(f"[bold]Provisioning plan[/bold]: {len(plan.stages)} stages, {len(plan.order())} resources")
    console.print()

    for stage in plan.stages:
        t = Table(title=f"Stage {stage.index}", show_header=True, header_style="bold")
        t.add_column("Resource", style="cyan", no_wrap=True)
        t.add_column("Kind")
        t.add_column("Depends on")
        t.add_column("Pending")
        t.add_column("Ingress")
        for r in stage.resources:
            pending = ", ".join(f"{k} <- {v.resource_id}.{v.attribute}" for k, v in r.pending().items())
            ingress = ", ".join(f"{rule.port}: {'/'.join(rule.sources)}" for rule in r.ingress) or "deny all"
            t.add_row(r.id, r.kind.value, ", ".join(r.depends_on), pending, ingress)
        console.print(t)
        console.print()


def _to_markdown(result: BuildResult) -> str:
    plan = result.plan
    lines: list[str] = []
    lines.append("## Provisioning plan")
    lines.append("")
    lines.append(f"- Stages: {len(plan.stages)}")
    lines.append(f"- Resources: {len(plan.order())}")
    lines.append(f"- Pending attributes: {len(plan.availability)}")
    lines.append("")

    for stage in plan.stages:
        lines.append(f"### Stage {stage.index}")
        lines.append("")
        lines.append("| Resource | Kind | Depends on | Ingress |")
        lines.append("|---|---|---|---|")
        for r in stage.resources:
            ingress = "; ".join(f"{rule.port} from {', '.join(rule.sources)}" for rule in r.ingress) or "deny all"
            lines.append(f"| `{r.id}` | {r.kind.value} | {', '.join(r.depends_on) or '-'} | {ingress} |")
        lines.append("")

        for r in stage.resources:
            if not r.attributes:
                continue
            lines.append(f"`{r.id}` attributes:")
            lines.append("")
            for name, value in r.attributes.items():
                lines.append(f"- `{name}`: {_describe(value)}")
            lines.append("")

    return "\n".join(lines).rstrip() + "\n"
