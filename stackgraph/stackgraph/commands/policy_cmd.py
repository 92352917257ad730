"""Policy command - print the compiled network policy."""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path

from rich.console import Console
from rich.table import Table

from ..config import StackGraphConfig
from ..errors import StackGraphError
from ..policy import NetworkPolicy, compile_policy
from .common import load_builder, report_error


def run_policy(
    paths: Sequence[Path],
    *,
    destination: str | None = None,
    output_json: bool = False,
    config: StackGraphConfig | None = None,
) -> int:
    """Compile the network policy, optionally for a single destination."""
    console = Console(stderr=True)

    try:
        builder = load_builder(paths, config)
        policy = compile_policy(builder.graph)
        if destination is not None:
            policy = NetworkPolicy({destination: policy[destination]})
    except StackGraphError as exc:
        report_error(console, exc)
        return 1

    if output_json:
        print(json.dumps(policy.to_dict(), indent=2, sort_keys=True))
        return 0

    t = Table(title="Network policy (deny by default)", show_header=True, header_style="bold")
    t.add_column("Destination", style="cyan", no_wrap=True)
    t.add_column("Port", justify="right")
    t.add_column("Sources")
    t.add_column("Labels", style="dim")
    for dest, rules in policy.items():
        if not rules:
            t.add_row(dest, "-", "[red]deny all[/]", "")
            continue
        for rule in rules:
            t.add_row(dest, str(rule.port), ", ".join(rule.sources), ", ".join(rule.labels))
    Console().print(t)
    return 0
