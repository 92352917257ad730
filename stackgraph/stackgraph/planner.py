"""Provisioning planner: orders the graph into concurrently materializable stages."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import UnknownResourceError, UnsatisfiableGraphError
from .graph import ResourceGraph
from .models import EdgeKind, Pending, ResourceKind
from .observability import get_logger
from .policy import AllowRule, NetworkPolicy, compile_policy
from .resolver import AttributeKey, ResolutionPlan, resolve

log = get_logger("planner")


class ResourceState(str, Enum):
    UNVISITED = "unvisited"
    IN_STAGE = "in_stage"
    MATERIALIZED = "materialized"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Pending):
        return value.to_dict()
    return value


@dataclass(frozen=True)
class PlannedResource:
    """One resource inside a stage, with everything a backend needs to create it."""

    id: str
    kind: ResourceKind
    attributes: Mapping[str, Any] = field(default_factory=dict, hash=False)  # literal | Pending
    depends_on: tuple[str, ...] = ()
    waits_for: tuple[str, ...] = ()  # producers of pending attributes
    ingress: tuple[AllowRule, ...] = ()
    egress: tuple[tuple[str, int], ...] = ()

    def pending(self) -> dict[str, Pending]:
        return {k: v for k, v in self.attributes.items() if isinstance(v, Pending)}

    def literals(self) -> dict[str, Any]:
        return {k: v for k, v in self.attributes.items() if not isinstance(v, Pending)}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "attributes": {k: _jsonable(v) for k, v in self.attributes.items()},
            "depends_on": list(self.depends_on),
            "waits_for": list(self.waits_for),
            "ingress": [r.to_dict() for r in self.ingress],
            "egress": [{"destination": d, "port": p} for d, p in self.egress],
        }


@dataclass(frozen=True)
class Stage:
    """Resources safe to materialize concurrently."""

    index: int
    resources: tuple[PlannedResource, ...] = ()

    @property
    def ids(self) -> list[str]:
        return [r.id for r in self.resources]

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self.ids

    def __len__(self) -> int:
        return len(self.resources)


@dataclass(frozen=True)
class ProvisioningPlan:
    """Ordered stages for one graph snapshot. Immutable; rebuild when the graph changes."""

    stages: tuple[Stage, ...] = ()
    availability: Mapping[AttributeKey, int] = field(default_factory=dict, hash=False)

    def stage_of(self, resource_id: str) -> int:
        for stage in self.stages:
            if resource_id in stage:
                return stage.index
        raise UnknownResourceError(resource_id, "provisioning plan")

    def resource(self, resource_id: str) -> PlannedResource:
        for stage in self.stages:
            for planned in stage.resources:
                if planned.id == resource_id:
                    return planned
        raise UnknownResourceError(resource_id, "provisioning plan")

    def order(self) -> list[str]:
        """Flattened materialization order."""
        return [rid for stage in self.stages for rid in stage.ids]

    def stage_ids(self) -> list[list[str]]:
        return [stage.ids for stage in self.stages]

    def summary(self) -> str:
        lines = [f"Provisioning Plan ({len(self.stages)} stages, {len(self.order())} resources)"]
        for stage in self.stages:
            lines.append(f"  Stage {stage.index}: {', '.join(stage.ids)}")
        if self.availability:
            lines.append(f"  Pending attributes: {len(self.availability)}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stages": [
                {"index": s.index, "resources": [r.to_dict() for r in s.resources]}
                for s in self.stages
            ],
            "availability": {f"{rid}.{attr}": stage for (rid, attr), stage in self.availability.items()},
        }


def _find_cycle(remaining: list[str], deps: dict[str, set[str]]) -> list[str]:
    """Walk unsatisfied dependencies among ``remaining`` until a node repeats."""
    pending = set(remaining)
    path: list[str] = []
    node = remaining[0]
    while node not in path:
        path.append(node)
        candidates = [d for d in remaining if d in deps.get(node, set()) and d in pending]
        if not candidates:
            return []
        node = candidates[0]
    return path[path.index(node):]


def plan(
    graph: ResourceGraph,
    resolution: ResolutionPlan | None = None,
    policy: NetworkPolicy | None = None,
) -> ProvisioningPlan:
    """Stage the graph with Kahn's algorithm.

    Dependencies are the union of structural edges and the ordering
    constraints implied by pending attribute references. Every step takes all
    ready resources as one stage; ties keep definition order.

    Raises:
        UnsatisfiableGraphError: if some resources can never become ready.
    """
    registry = graph.registry
    resolution = resolution if resolution is not None else resolve(registry)
    policy = policy if policy is not None else compile_policy(graph)

    ids = registry.ids()
    constraints = resolution.ordering_constraints()

    deps: dict[str, set[str]] = {}
    for rid in ids:
        structural = graph.neighbors(rid, EdgeKind.STRUCTURAL)
        produced = {p for p in constraints.get(rid, set()) if p in registry}
        deps[rid] = structural | produced

    in_degree = {rid: len(deps[rid]) for rid in ids}
    dependents: dict[str, list[str]] = {rid: [] for rid in ids}
    for rid in ids:
        for dep in deps[rid]:
            dependents[dep].append(rid)

    state = {rid: ResourceState.UNVISITED for rid in ids}
    stage_lists: list[list[str]] = []
    ready = [rid for rid in ids if in_degree[rid] == 0]

    while ready:
        for rid in ready:
            state[rid] = ResourceState.IN_STAGE
        stage_lists.append(ready)

        released: set[str] = set()
        for rid in ready:
            state[rid] = ResourceState.MATERIALIZED
            for dependent in dependents[rid]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    released.add(dependent)
        ready = [rid for rid in ids if rid in released]

    remaining = [rid for rid in ids if state[rid] is ResourceState.UNVISITED]
    if remaining:
        cycle = _find_cycle(remaining, deps)
        log.warning("plan.unsatisfiable", remaining=remaining, cycle=cycle)
        raise UnsatisfiableGraphError(remaining, cycle)

    stage_index = {rid: n for n, stage in enumerate(stage_lists) for rid in stage}
    stages = []
    for n, stage in enumerate(stage_lists):
        planned = []
        for rid in stage:
            resource = registry.get(rid)
            attributes = resolution.attributes.get(rid)
            planned.append(
                PlannedResource(
                    id=rid,
                    kind=resource.kind,
                    attributes=dict(attributes) if attributes is not None else dict(resource.attributes),
                    depends_on=tuple(graph.ordered(graph.neighbors(rid, EdgeKind.STRUCTURAL))),
                    waits_for=tuple(graph.ordered(constraints.get(rid, set()))),
                    ingress=tuple(policy.get(rid, ())),
                    egress=tuple(policy.egress(rid)),
                )
            )
        stages.append(Stage(n, tuple(planned)))

    availability = {
        (b.consumer, b.attribute): stage_index[b.producer]
        for b in resolution.pending()
        if b.producer in stage_index
    }

    log.info("plan.built", stages=len(stages), resources=len(ids))
    return ProvisioningPlan(stages=tuple(stages), availability=availability)
