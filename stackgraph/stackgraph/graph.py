"""Relationship graph construction and analysis."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass

from .errors import UnknownPortError, UnknownResourceError, UnsatisfiableGraphError
from .models import EdgeKind, ResourceKind
from .observability import get_logger
from .registry import ResourceHandle, ResourceRegistry

log = get_logger("graph")

EndpointLike = str | ResourceHandle


def _rid(value: EndpointLike) -> str:
    return value.id if isinstance(value, ResourceHandle) else value


@dataclass(frozen=True)
class NetworkAllow:
    """Permission for ``source`` to initiate traffic to ``destination`` on ``port``."""

    source: str
    destination: str
    port: int
    label: str | None = None

    @property
    def key(self) -> tuple[str, str, int]:
        return (self.source, self.destination, self.port)


@dataclass(frozen=True)
class DanglingEdge:
    """An edge whose endpoint was removed from the registry."""

    kind: EdgeKind
    source: str
    target: str
    missing: tuple[str, ...]


def _strongly_connected(adjacency: Mapping[str, set[str]], order_key: Callable[[str], int]) -> list[list[str]]:
    """Tarjan's algorithm. Nodes and successors are visited in ``order_key`` order."""
    index_counter = [0]
    stack: list[str] = []
    lowlinks: dict[str, int] = {}
    index: dict[str, int] = {}
    on_stack: dict[str, bool] = {}
    sccs: list[list[str]] = []

    def strongconnect(node: str) -> None:
        index[node] = index_counter[0]
        lowlinks[node] = index_counter[0]
        index_counter[0] += 1
        stack.append(node)
        on_stack[node] = True

        for dep in sorted(adjacency.get(node, set()), key=order_key):
            if dep not in index:
                strongconnect(dep)
                lowlinks[node] = min(lowlinks[node], lowlinks[dep])
            elif on_stack.get(dep, False):
                lowlinks[node] = min(lowlinks[node], index[dep])

        if lowlinks[node] == index[node]:
            scc = []
            while True:
                w = stack.pop()
                on_stack[w] = False
                scc.append(w)
                if w == node:
                    break
            sccs.append(scc)

    for node in sorted(adjacency, key=order_key):
        if node not in index:
            strongconnect(node)

    return sccs


def _cycle_through(
    start: str,
    members: set[str],
    adjacency: Mapping[str, set[str]],
    order_key: Callable[[str], int],
) -> list[str]:
    """Ordered path start -> ... -> (back to start) inside one component."""
    path = [start]
    visited = {start}

    def dfs(node: str) -> bool:
        for nxt in sorted(adjacency.get(node, set()), key=order_key):
            if nxt == start:
                # a self-loop only closes a single-member component
                if len(path) > 1 or len(members) == 1:
                    return True
                continue
            if nxt in members and nxt not in visited:
                visited.add(nxt)
                path.append(nxt)
                if dfs(nxt):
                    return True
                path.pop()
        return False

    dfs(start)
    return path


def find_cycles(adjacency: Mapping[str, set[str]], order_key: Callable[[str], int]) -> list[list[str]]:
    """Find cycles using Tarjan's strongly connected components.

    Returns one ordered cycle per component, starting at the member with the
    lowest ``order_key`` and without repeating it at the end. Self-loops come
    back as single-element cycles. Every node named in ``adjacency`` values
    must also be a key.
    """
    cycles = []
    for scc in _strongly_connected(adjacency, order_key):
        if len(scc) == 1:
            (node,) = scc
            if node not in adjacency.get(node, set()):
                continue
        start = min(scc, key=order_key)
        cycles.append(_cycle_through(start, set(scc), adjacency, order_key))

    cycles.sort(key=lambda cycle: order_key(cycle[0]))
    return cycles


class ResourceGraph:
    """Directed graph over registry ids with typed edges.

    Edges reference resource ids, never Resource objects. A resource removed
    from the registry leaves its edges behind; every query skips them.
    """

    def __init__(
        self,
        registry: ResourceRegistry,
        *,
        default_ports: Mapping[ResourceKind, int] | None = None,
    ) -> None:
        self.registry = registry
        self.default_ports = dict(default_ports or {})
        self.edges: dict[str, set[str]] = defaultdict(set)  # resource -> dependencies
        self.reverse_edges: dict[str, set[str]] = defaultdict(set)  # resource -> dependents
        self._allows: dict[tuple[str, str, int], NetworkAllow] = {}
        self._extra_labels: dict[tuple[str, str, int], list[str]] = defaultdict(list)

    # -- construction -------------------------------------------------------

    def add_dependency(self, source: EndpointLike, target: EndpointLike) -> None:
        """``source`` cannot be materialized before ``target``."""
        src, dst = _rid(source), _rid(target)
        self._require(src, f"dependency {src} -> {dst}")
        self._require(dst, f"dependency {src} -> {dst}")
        if src == dst:
            raise UnsatisfiableGraphError([src], [src])
        if dst in self.edges[src]:
            return
        self.edges[src].add(dst)
        self.reverse_edges[dst].add(src)
        log.debug("edge.structural", source=src, target=dst)

    def add_network_allow(
        self,
        source: EndpointLike,
        destination: EndpointLike,
        port: int,
        label: str | None = None,
    ) -> NetworkAllow:
        """Allow traffic from ``source`` to ``destination``. Idempotent on (source, destination, port)."""
        src, dst = _rid(source), _rid(destination)
        self._require(src, f"network allow {src} -> {dst}")
        self._require(dst, f"network allow {src} -> {dst}")

        key = (src, dst, port)
        existing = self._allows.get(key)
        if existing is not None:
            if label and label != existing.label and label not in self._extra_labels[key]:
                self._extra_labels[key].append(label)
            return existing

        allow = NetworkAllow(src, dst, port, label)
        self._allows[key] = allow
        log.debug("edge.network_allow", source=src, destination=dst, port=port, label=label)
        return allow

    def connect(
        self,
        source: EndpointLike,
        destination: EndpointLike,
        port: int | None = None,
        label: str | None = None,
    ) -> NetworkAllow:
        """Declare that ``source`` connects to ``destination``.

        Without an explicit port, the destination's declared ``port`` attribute
        or its kind default is used.
        """
        src, dst = _rid(source), _rid(destination)
        self._require(src, f"connection {src} -> {dst}")
        if port is None:
            port = self.registry.get(dst).default_port(self.default_ports)
            if port is None:
                raise UnknownPortError(None, src, dst)
        return self.add_network_allow(src, dst, port, label)

    # -- queries ------------------------------------------------------------

    def neighbors(self, resource_id: EndpointLike, edge_kind: EdgeKind | str) -> set[str]:
        """Outgoing neighbours of ``resource_id`` for one edge kind."""
        rid = _rid(resource_id)
        self._require(rid)
        kind = EdgeKind.parse(edge_kind)

        if kind is EdgeKind.STRUCTURAL:
            targets: Iterable[str] = self.edges.get(rid, set())
        elif kind is EdgeKind.NETWORK_ALLOW:
            targets = [a.destination for a in self._allows.values() if a.source == rid]
        else:
            resource = self.registry.get(rid)
            targets = [ref.resource_id for ref in resource.references().values() if ref.resource_id != rid]
        return {t for t in targets if t in self.registry}

    def dependents(self, resource_id: EndpointLike, edge_kind: EdgeKind | str = EdgeKind.STRUCTURAL) -> set[str]:
        """Incoming neighbours of ``resource_id`` for one edge kind."""
        rid = _rid(resource_id)
        self._require(rid)
        return {other for other in self._live_ids() if rid in self.neighbors(other, edge_kind)}

    def transitive_dependencies(self, resource_id: EndpointLike) -> set[str]:
        """All structural dependencies reachable from ``resource_id`` (excluding itself)."""
        start = _rid(resource_id)
        self._require(start)
        visited: set[str] = set()
        stack = [start]

        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)

            for dep in self.edges.get(current, set()):
                if dep not in visited and dep in self.registry:
                    stack.append(dep)

        visited.discard(start)
        return visited

    def network_edges(self) -> list[NetworkAllow]:
        """Live network-allow edges in declaration order."""
        return [
            a for a in self._allows.values()
            if a.source in self.registry and a.destination in self.registry
        ]

    def labels_for(self, allow: NetworkAllow) -> list[str]:
        """Every label declared for an allow edge, first declaration first."""
        labels = [allow.label] if allow.label else []
        return labels + self._extra_labels.get(allow.key, [])

    def structural_edges(self) -> list[tuple[str, str]]:
        """Live (dependent, dependency) pairs ordered by definition order."""
        pairs = []
        for src in self._live_ids():
            for dst in self.ordered(self.edges.get(src, set())):
                pairs.append((src, dst))
        return pairs

    def dangling_edges(self) -> list[DanglingEdge]:
        """Edges left behind by removed resources."""
        dangling: list[DanglingEdge] = []
        for src, deps in self.edges.items():
            for dst in sorted(deps):
                missing = tuple(x for x in (src, dst) if x not in self.registry)
                if missing:
                    dangling.append(DanglingEdge(EdgeKind.STRUCTURAL, src, dst, missing))
        for allow in self._allows.values():
            missing = tuple(x for x in (allow.source, allow.destination) if x not in self.registry)
            if missing:
                dangling.append(DanglingEdge(EdgeKind.NETWORK_ALLOW, allow.source, allow.destination, missing))
        return dangling

    def ordered(self, ids: Iterable[str]) -> list[str]:
        """Sort live ids by definition order."""
        return sorted((i for i in ids if i in self.registry), key=self.registry.index_of)

    def adjacency(self, edge_kind: EdgeKind | str) -> dict[str, set[str]]:
        kind = EdgeKind.parse(edge_kind)
        return {rid: self.neighbors(rid, kind) for rid in self._live_ids()}

    # -- cycles ---------------------------------------------------------------

    def detect_cycles(self, edge_kind: EdgeKind | str = EdgeKind.STRUCTURAL) -> list[list[str]]:
        """Cycles of one edge kind, one per strongly connected component.

        Each starts at the earliest defined member. Self-loops (legal only for
        network-allow edges) come back as single-element cycles.
        """
        return find_cycles(self.adjacency(edge_kind), self.registry.index_of)

    # -- snapshots ------------------------------------------------------------

    def copy(self, registry: ResourceRegistry | None = None) -> "ResourceGraph":
        """Snapshot bound to ``registry`` (default: a copy of the current one)."""
        clone = ResourceGraph(registry or self.registry.copy(), default_ports=self.default_ports)
        for src, deps in self.edges.items():
            clone.edges[src] = set(deps)
        for dst, srcs in self.reverse_edges.items():
            clone.reverse_edges[dst] = set(srcs)
        clone._allows = dict(self._allows)
        for key, labels in self._extra_labels.items():
            clone._extra_labels[key] = list(labels)
        return clone

    def _live_ids(self) -> list[str]:
        return self.registry.ids()

    def _require(self, resource_id: str, context: str | None = None) -> None:
        if resource_id not in self.registry:
            raise UnknownResourceError(resource_id, context)
