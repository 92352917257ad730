"""Network policy compilation.

Declared network-allow edges become a deny-by-default rule set keyed by
destination. Every registered resource gets an entry; a resource nobody may
reach has an explicit empty rule list.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from .errors import UnknownPortError, UnknownResourceError
from .graph import ResourceGraph
from .observability import get_logger

log = get_logger("policy")

MIN_PORT = 1
MAX_PORT = 65535


@dataclass(frozen=True)
class AllowRule:
    """Ingress rule on one destination port, merged across sources."""

    port: int
    sources: tuple[str, ...]
    labels: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"port": self.port, "sources": list(self.sources), "labels": list(self.labels)}


@dataclass(frozen=True)
class NetworkPolicy(Mapping[str, tuple[AllowRule, ...]]):
    """destination id -> ingress rules, ordered by port."""

    rules: Mapping[str, tuple[AllowRule, ...]] = field(default_factory=dict)

    def __getitem__(self, destination: str) -> tuple[AllowRule, ...]:
        try:
            return self.rules[destination]
        except KeyError:
            raise UnknownResourceError(destination, "network policy") from None

    def __iter__(self) -> Iterator[str]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def rules_for(self, destination: str) -> list[AllowRule]:
        return list(self[destination])

    def allows(self, source: str, destination: str, port: int) -> bool:
        return any(r.port == port and source in r.sources for r in self.rules.get(destination, ()))

    def egress(self, source: str) -> list[tuple[str, int]]:
        """(destination, port) pairs ``source`` is allowed to reach."""
        pairs = []
        for destination, rules in self.rules.items():
            for rule in rules:
                if source in rule.sources:
                    pairs.append((destination, rule.port))
        return pairs

    def denied(self) -> list[str]:
        """Destinations with no ingress at all."""
        return [d for d, rules in self.rules.items() if not rules]

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        return {d: [r.to_dict() for r in rules] for d, rules in self.rules.items()}


def _valid_port(port: object) -> bool:
    return isinstance(port, int) and not isinstance(port, bool) and MIN_PORT <= port <= MAX_PORT


def compile_policy(graph: ResourceGraph) -> NetworkPolicy:
    """Merge allow edges into one rule per (destination, port).

    Raises:
        UnknownPortError: if any edge uses a port outside 1-65535.
    """
    grouped: dict[str, dict[int, tuple[set[str], list[str]]]] = {
        rid: {} for rid in graph.registry.ids()
    }

    for allow in graph.network_edges():
        if not _valid_port(allow.port):
            raise UnknownPortError(allow.port, allow.source, allow.destination)
        sources, labels = grouped[allow.destination].setdefault(allow.port, (set(), []))
        sources.add(allow.source)
        for label in graph.labels_for(allow):
            if label not in labels:
                labels.append(label)

    rules: dict[str, tuple[AllowRule, ...]] = {}
    for destination, by_port in grouped.items():
        rules[destination] = tuple(
            AllowRule(port, tuple(graph.ordered(sources)), tuple(labels))
            for port, (sources, labels) in sorted(by_port.items())
        )

    log.info(
        "policy.compiled",
        destinations=len(rules),
        rules=sum(len(r) for r in rules.values()),
        denied=sum(1 for r in rules.values() if not r),
    )
    return NetworkPolicy(rules)
