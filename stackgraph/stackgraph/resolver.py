"""Secret and attribute reference resolution.

Turns every attribute reference into either a literal (when the chain ends in
a declared value) or a ``Pending`` marker bound to the resource whose
materialization produces the value. Nothing is computed; the pass validates
referential integrity and records which producer each consumer waits for.
"""

from __future__ import annotations

import copy
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .errors import CyclicReferenceError, UnknownAttributeError, UnknownResourceError
from .models import AttributeRef, Pending, ResourceKind, SecretRef
from .observability import get_logger
from .graph import find_cycles
from .registry import ResourceRegistry

log = get_logger("resolver")

AttributeKey = tuple[str, str]  # (resource id, attribute name)


def _fmt(key: AttributeKey) -> str:
    return f"{key[0]}.{key[1]}"


@dataclass(frozen=True)
class Binding:
    """Outcome of resolving one consumer attribute."""

    consumer: str
    attribute: str
    reference: AttributeRef
    value: Any  # literal or Pending
    chain: tuple[str, ...]  # consumer attribute first, final producer attribute last

    @property
    def is_pending(self) -> bool:
        return isinstance(self.value, Pending)

    @property
    def producer(self) -> str | None:
        """Resource whose materialization provides the value, if any."""
        return self.value.resource_id if isinstance(self.value, Pending) else None

    def to_dict(self) -> dict[str, Any]:
        value = self.value.to_dict() if isinstance(self.value, Pending) else self.value
        return {
            "consumer": self.consumer,
            "attribute": self.attribute,
            "reference": str(self.reference),
            "value": value,
            "chain": list(self.chain),
        }


@dataclass(frozen=True)
class ResolutionPlan:
    """Resolved view of every attribute in a graph snapshot."""

    bindings: Mapping[AttributeKey, Binding] = field(default_factory=dict)
    attributes: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)  # id -> name -> literal | Pending
    availability: Mapping[AttributeKey, int] = field(default_factory=dict)  # filled in by a build

    def binding(self, resource_id: str, attribute: str) -> Binding:
        return self.bindings[(resource_id, attribute)]

    def available_at(self, resource_id: str, attribute: str) -> int | None:
        """Stage index whose materialization provides a pending value, once planned."""
        return self.availability.get((resource_id, attribute))

    def pending(self) -> list[Binding]:
        """Bindings whose value is known only after a producer is materialized."""
        return [b for b in self.bindings.values() if b.is_pending]

    def bindings_for(self, resource_id: str) -> list[Binding]:
        return [b for b in self.bindings.values() if b.consumer == resource_id]

    def consumers_of(self, producer_id: str) -> list[Binding]:
        return [b for b in self.bindings.values() if b.producer == producer_id]

    def attributes_for(self, resource_id: str) -> dict[str, Any]:
        return dict(self.attributes.get(resource_id, {}))

    def ordering_constraints(self) -> dict[str, set[str]]:
        """consumer -> producers that must be materialized in an earlier stage."""
        constraints: dict[str, set[str]] = defaultdict(set)
        for b in self.pending():
            if b.producer != b.consumer:
                constraints[b.consumer].add(b.producer)  # type: ignore[arg-type]
        return dict(constraints)

    def to_dict(self) -> dict[str, Any]:
        return {
            "bindings": [b.to_dict() for b in self.bindings.values()],
            "availability": {f"{rid}.{attr}": stage for (rid, attr), stage in self.availability.items()},
        }


class AttributeResolver:
    """Depth-first resolution over (resource, attribute) nodes."""

    def __init__(self, registry: ResourceRegistry):
        self.registry = registry
        self._done: dict[AttributeKey, tuple[Any, tuple[str, ...]]] = {}

    def resolve(self) -> ResolutionPlan:
        self._done = {}
        bindings: dict[AttributeKey, Binding] = {}
        attributes: dict[str, dict[str, Any]] = {}

        for resource in self.registry.all():
            resolved: dict[str, Any] = {}
            for name, value in resource.attributes.items():
                if not isinstance(value, AttributeRef):
                    resolved[name] = copy.deepcopy(value)
                    continue

                key = (resource.id, name)
                result, chain = self._resolve(key, [])
                bindings[key] = Binding(resource.id, name, value, result, chain)
                resolved[name] = result
            attributes[resource.id] = resolved

        resolution = ResolutionPlan(bindings=bindings, attributes=attributes)
        self._reject_wait_cycles(resolution)

        pending = sum(1 for b in bindings.values() if b.is_pending)
        log.info("resolution.complete", references=len(bindings), pending=pending)
        return resolution

    def _reject_wait_cycles(self, resolution: ResolutionPlan) -> None:
        """Resources that wait on each other's generated outputs can never be ordered."""
        constraints = resolution.ordering_constraints()
        adjacency = {rid: set(constraints.get(rid, set())) for rid in self.registry.ids()}
        cycles = find_cycles(adjacency, self.registry.index_of)
        if not cycles:
            return

        cycle = cycles[0]
        chain: list[str] = []
        for n, consumer in enumerate(cycle):
            producer = cycle[(n + 1) % len(cycle)]
            binding = next(b for b in resolution.bindings_for(consumer) if b.producer == producer)
            chain.extend(binding.chain)
        log.warning("resolution.wait_cycle", chain=chain)
        raise CyclicReferenceError(chain)

    def _resolve(self, key: AttributeKey, path: list[AttributeKey]) -> tuple[Any, tuple[str, ...]]:
        if key in self._done:
            return self._done[key]
        if key in path:
            loop = path[path.index(key):] + [key]
            raise CyclicReferenceError([_fmt(k) for k in loop])

        consumer = self.registry.get(key[0])
        ref = consumer.attributes[key[1]]
        assert isinstance(ref, AttributeRef)

        path.append(key)
        try:
            result, tail = self._follow(ref, key, path)
        finally:
            path.pop()

        chain = (_fmt(key), *tail)
        if isinstance(result, Pending) and result.resource_id == consumer.id:
            # a resource cannot wait for its own output
            raise CyclicReferenceError(list(chain))

        self._done[key] = (result, chain)
        return result, chain

    def _follow(
        self,
        ref: AttributeRef,
        referenced_by: AttributeKey,
        path: list[AttributeKey],
    ) -> tuple[Any, tuple[str, ...]]:
        if ref.resource_id not in self.registry:
            raise UnknownResourceError(ref.resource_id, _fmt(referenced_by))
        producer = self.registry.get(ref.resource_id)
        target = (producer.id, ref.attribute)

        if producer.kind is ResourceKind.SECRET_BUNDLE:
            # bundle slots are filled by the external secret store, never by us
            if ref.attribute not in producer.outputs:
                raise UnknownAttributeError(producer.id, ref.attribute, _fmt(referenced_by))
            secret = producer.is_secret_output(ref.attribute) or isinstance(ref, SecretRef)
            return Pending(producer.id, ref.attribute, secret), (_fmt(target),)

        if isinstance(ref, SecretRef):
            if ref.attribute not in producer.outputs:
                raise UnknownAttributeError(producer.id, ref.attribute, _fmt(referenced_by))
            return Pending(producer.id, ref.attribute, True), (_fmt(target),)

        if ref.attribute in producer.attributes:
            declared = producer.attributes[ref.attribute]
            if isinstance(declared, AttributeRef):
                return self._resolve(target, path)
            return copy.deepcopy(declared), (_fmt(target),)

        if ref.attribute in producer.outputs:
            secret = producer.is_secret_output(ref.attribute)
            return Pending(producer.id, ref.attribute, secret), (_fmt(target),)

        raise UnknownAttributeError(producer.id, ref.attribute, _fmt(referenced_by))


def resolve(registry: ResourceRegistry) -> ResolutionPlan:
    """Resolve every attribute reference in ``registry``."""
    return AttributeResolver(registry).resolve()
