"""One full build cycle: define -> relate -> resolve -> compile policy -> plan."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from .errors import UnknownResourceError, UnsatisfiableGraphError
from .graph import EndpointLike, NetworkAllow, ResourceGraph
from .models import EdgeKind, ResourceKind
from .observability import get_logger
from .planner import ProvisioningPlan, plan
from .policy import AllowRule, NetworkPolicy, compile_policy
from .registry import ResourceHandle, ResourceRegistry
from .resolver import ResolutionPlan, resolve

log = get_logger("builder")


@dataclass(frozen=True)
class BuildResult:
    """Outputs handed to a provisioning backend."""

    plan: ProvisioningPlan
    resolution: ResolutionPlan
    policy: NetworkPolicy

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan": self.plan.to_dict(),
            "resolution": self.resolution.to_dict(),
            "policy": self.policy.to_dict(),
        }


class StackBuilder:
    """Registry plus relationship graph behind a single declaration surface."""

    def __init__(self, *, default_ports: Mapping[ResourceKind, int] | None = None) -> None:
        self.registry = ResourceRegistry()
        self.graph = ResourceGraph(self.registry, default_ports=default_ports)

    # -- declarations -------------------------------------------------------

    def define(
        self,
        kind: ResourceKind | str,
        resource_id: str,
        attributes: Mapping[str, Any] | None = None,
    ) -> ResourceHandle:
        return self.registry.define(kind, resource_id, attributes)

    def update(self, resource_id: str, attributes: Mapping[str, Any]) -> ResourceHandle:
        return self.registry.update(resource_id, attributes)

    def remove(self, resource_id: str) -> None:
        self.registry.remove(resource_id)

    def add_dependency(self, source: EndpointLike, target: EndpointLike) -> None:
        self.graph.add_dependency(source, target)

    def add_network_allow(
        self,
        source: EndpointLike,
        destination: EndpointLike,
        port: int,
        label: str | None = None,
    ) -> NetworkAllow:
        return self.graph.add_network_allow(source, destination, port, label)

    def connect(
        self,
        source: EndpointLike,
        destination: EndpointLike,
        port: int | None = None,
        label: str | None = None,
    ) -> NetworkAllow:
        return self.graph.connect(source, destination, port, label)

    # -- derivations ----------------------------------------------------------

    def detect_cycles(self, edge_kind: EdgeKind | str = EdgeKind.STRUCTURAL) -> list[list[str]]:
        return self.graph.detect_cycles(edge_kind)

    def resolve(self) -> ResolutionPlan:
        return resolve(self.registry)

    def compile_policy(self, destination: str | None = None) -> NetworkPolicy | list[AllowRule]:
        """Whole policy, or the rule list of ``destination`` when given."""
        policy = compile_policy(self.graph)
        if destination is None:
            return policy
        return policy.rules_for(destination)

    def plan(self) -> ProvisioningPlan:
        return self.build().plan

    def build(self) -> BuildResult:
        """Validate and plan a snapshot of the current declarations.

        Fails atomically: any error propagates and no partial result exists.
        Later declarations do not affect a returned result.
        """
        registry = self.registry.copy()
        graph = self.graph.copy(registry)

        for edge in graph.dangling_edges():
            # a live resource lost a dependency it must be ordered after
            if edge.kind is EdgeKind.STRUCTURAL and edge.source in registry:
                log.warning("build.dangling_dependency", source=edge.source, target=edge.target)
                raise UnknownResourceError(edge.target, f"dependency {edge.source} -> {edge.target}")

        cycles = graph.detect_cycles(EdgeKind.STRUCTURAL)
        if cycles:
            members = graph.ordered({rid for cycle in cycles for rid in cycle})
            log.warning("build.structural_cycle", cycles=cycles)
            raise UnsatisfiableGraphError(members, cycles[0])

        resolution = resolve(registry)
        policy = compile_policy(graph)
        provisioning = plan(graph, resolution, policy)
        resolution = replace(resolution, availability=provisioning.availability)

        log.info("build.complete", resources=len(registry), stages=len(provisioning.stages))
        return BuildResult(provisioning, resolution, policy)
