"""Graph command - export the relationship graph."""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path

from rich.console import Console

from ..config import StackGraphConfig
from ..errors import StackGraphError
from ..graph import ResourceGraph
from ..models import EdgeKind, ResourceKind
from .common import load_builder, report_error, write_output

KIND_COLORS = {
    ResourceKind.NETWORK: "#9aa0a6",
    ResourceKind.DATASTORE: "#f4a261",
    ResourceKind.CACHE: "#e76f51",
    ResourceKind.BROKER: "#b5179e",
    ResourceKind.SECRET_BUNDLE: "#f9d65c",
    ResourceKind.SERVICE: "#8ecae6",
    ResourceKind.LOAD_BALANCER: "#90be6d",
}


def run_graph(
    paths: Sequence[Path],
    *,
    edges: str = "structural",
    fmt: str = "dot",
    out: Path | None = None,
    config: StackGraphConfig | None = None,
) -> int:
    """Output one edge kind of the graph as DOT or JSON."""
    console = Console(stderr=True)

    try:
        builder = load_builder(paths, config)
        edge_kind = EdgeKind.parse(edges)
        payload = _graph_payload(builder.graph, edge_kind)
    except StackGraphError as exc:
        report_error(console, exc)
        return 1

    if fmt == "json":
        text = json.dumps(payload, indent=2, sort_keys=True) + "\n"
    else:
        text = _to_dot(payload, title=f"{edge_kind.value} edges")

    write_output(console, text, out)
    return 0


def _graph_payload(graph: ResourceGraph, edge_kind: EdgeKind) -> dict:
    nodes = [{"id": r.id, "kind": r.kind.value} for r in graph.registry.all()]
    edges: list[dict] = []
    if edge_kind is EdgeKind.NETWORK_ALLOW:
        for allow in graph.network_edges():
            edges.append(
                {
                    "source": allow.source,
                    "target": allow.destination,
                    "port": allow.port,
                    "labels": graph.labels_for(allow),
                }
            )
    else:
        for rid in graph.registry.ids():
            for target in graph.ordered(graph.neighbors(rid, edge_kind)):
                edges.append({"source": rid, "target": target})

    return {
        "edge_kind": edge_kind.value,
        "nodes": nodes,
        "edges": edges,
        "cycles": graph.detect_cycles(edge_kind),
    }


def _to_dot(payload: dict, *, title: str) -> str:
    def esc(s: str) -> str:
        return s.replace("\\", "\\\\").replace('"', '\\"')

    lines = [
        "digraph stack {",
        f'  label="{esc(title)}";',
        "  labelloc=t;",
        "  rankdir=LR;",
        "  graph [fontname=\"Helvetica\"];",
        "  node [fontname=\"Helvetica\", fontsize=10, style=filled, shape=box];",
        "  edge [color=\"#3a4154\", penwidth=0.8];",
    ]

    for node in payload["nodes"]:
        kind = ResourceKind.parse(node["kind"])
        fill = KIND_COLORS.get(kind, "#9aa0a6")
        label = f"{esc(node['id'])}\\n({kind.value})"
        lines.append(f'  "{esc(node["id"])}" [label="{label}"; fillcolor="{fill}"];')

    for edge in payload["edges"]:
        attrs = ""
        if "port" in edge:
            label = str(edge["port"])
            if edge.get("labels"):
                label += " " + "/".join(edge["labels"])
            attrs = f' [label="{esc(label)}"]'
        lines.append(f'  "{esc(edge["source"])}" -> "{esc(edge["target"])}"{attrs};')

    lines.append("}")
    return "\n".join(lines) + "\n"
