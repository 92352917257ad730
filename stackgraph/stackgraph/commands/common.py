"""Helpers shared by the CLI commands."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from rich.console import Console

from ..builder import StackBuilder
from ..config import StackGraphConfig
from ..errors import CyclicReferenceError, StackGraphError, UnsatisfiableGraphError
from ..stackfile import load_stack


def load_builder(paths: Sequence[Path], config: StackGraphConfig | None = None) -> StackBuilder:
    """Load stack files as layers into a fresh builder."""
    ports = config.ports if config is not None else None
    return load_stack(list(paths), StackBuilder(default_ports=ports))


def report_error(console: Console, exc: StackGraphError) -> None:
    """Print the first build failure together with its causal chain."""
    console.print(f"✗ {type(exc).__name__}: {exc}", style="bold red", markup=False)

    if isinstance(exc, CyclicReferenceError):
        console.print("  Reference chain:", style="dim")
        for n, node in enumerate(exc.chain):
            prefix = "    " + ("-> " if n else "   ")
            console.print(f"{prefix}{node}", markup=False)
    elif isinstance(exc, UnsatisfiableGraphError) and exc.cycle:
        console.print("  Dependency cycle:", style="dim")
        console.print("    " + " -> ".join([*exc.cycle, exc.cycle[0]]), markup=False)


def write_output(console: Console, text: str, out: Path | None) -> None:
    if out:
        out.write_text(text, encoding="utf-8")
        console.print(f"Wrote output to {out}", style="green")
    else:
        print(text, end="" if text.endswith("\n") else "\n")
