"""Non-fatal checks over a stack graph."""

from dataclasses import dataclass
from typing import Literal

from .graph import ResourceGraph
from .models import EdgeKind, ResourceKind


@dataclass
class Finding:
    """A single check finding."""

    level: Literal["error", "warning", "info"]
    rule: str
    resource: str
    message: str

    def __str__(self) -> str:
        return f"{self.level.upper()}: [{self.rule}] {self.resource} - {self.message}"

    def to_dict(self) -> dict:
        return {"level": self.level, "rule": self.rule, "resource": self.resource, "message": self.message}


RULE_EXPLANATIONS = {
    "unused-secret-key": "A SecretBundle declares a key that no resource references.",
    "dangling-edge": "An edge still points at a resource that was removed from the registry.",
    "unreachable-service": "A service has no network-allow edge pointing at it.",
    "mutual-allow": "Resources allow traffic to each other in a loop. Legal, reported for review.",
    "unused-resource": "A resource other than a service or load balancer that nothing depends on, references or connects to.",
}


class StackChecks:
    """Collection of checks for a stack graph."""

    def __init__(self, graph: ResourceGraph):
        self.graph = graph
        self.registry = graph.registry

    def run_all(self, allowed_rules: set[str] | None = None) -> list[Finding]:
        """Run all checks and return findings."""
        checks = {
            "unused-secret-key": self.check_unused_secret_keys,
            "dangling-edge": self.check_dangling_edges,
            "unreachable-service": self.check_unreachable_services,
            "mutual-allow": self.check_mutual_allows,
            "unused-resource": self.check_unused_resources,
        }
        results = []
        for rule, check in checks.items():
            if allowed_rules is not None and rule not in allowed_rules:
                continue
            results.extend(check())
        return results

    def check_unused_secret_keys(self) -> list[Finding]:
        referenced = {
            (ref.resource_id, ref.attribute)
            for resource in self.registry.all()
            for ref in resource.references().values()
        }
        results = []
        for bundle in self.registry.of_kind(ResourceKind.SECRET_BUNDLE):
            for key in bundle.attributes:
                if (bundle.id, key) not in referenced:
                    results.append(
                        Finding(
                            level="warning",
                            rule="unused-secret-key",
                            resource=bundle.id,
                            message=f"Secret key '{key}' is declared but never referenced",
                        )
                    )
        return results

    def check_dangling_edges(self) -> list[Finding]:
        results = []
        for edge in self.graph.dangling_edges():
            live = edge.source if edge.source in self.registry else edge.target
            results.append(
                Finding(
                    level="error",
                    rule="dangling-edge",
                    resource=live,
                    message=f"{edge.kind.value} edge {edge.source} -> {edge.target} points at removed "
                    f"resource(s): {', '.join(edge.missing)}",
                )
            )
        return results

    def check_unreachable_services(self) -> list[Finding]:
        results = []
        for service in self.registry.of_kind(ResourceKind.SERVICE):
            if not self.graph.dependents(service.id, EdgeKind.NETWORK_ALLOW) - {service.id}:
                results.append(
                    Finding(
                        level="info",
                        rule="unreachable-service",
                        resource=service.id,
                        message="No resource may initiate traffic to this service",
                    )
                )
        return results

    def check_mutual_allows(self) -> list[Finding]:
        results = []
        for cycle in self.graph.detect_cycles(EdgeKind.NETWORK_ALLOW):
            if len(cycle) < 2:
                continue  # intra-group self-allow
            results.append(
                Finding(
                    level="info",
                    rule="mutual-allow",
                    resource=cycle[0],
                    message="Network allow loop: " + " -> ".join([*cycle, cycle[0]]),
                )
            )
        return results

    def check_unused_resources(self) -> list[Finding]:
        results = []
        for resource in self.registry.all():
            if resource.kind in (ResourceKind.SERVICE, ResourceKind.LOAD_BALANCER):
                continue
            used = (
                self.graph.dependents(resource.id, EdgeKind.STRUCTURAL)
                or self.graph.dependents(resource.id, EdgeKind.ATTRIBUTE)
                or self.graph.dependents(resource.id, EdgeKind.NETWORK_ALLOW) - {resource.id}
            )
            if not used:
                results.append(
                    Finding(
                        level="warning",
                        rule="unused-resource",
                        resource=resource.id,
                        message=f"{resource.kind.value} is not used by any other resource",
                    )
                )
        return results
