"""Resource registry: owns every typed resource definition."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any

from .errors import DuplicateIdError, InvalidAttributeError, UnknownResourceError
from .models import (
    AttributeRef,
    Resource,
    ResourceKind,
    SecretRef,
    coerce_value,
    is_valid_attribute_name,
    is_valid_id,
)
from .observability import get_logger

log = get_logger("registry")


@dataclass(frozen=True)
class ResourceHandle:
    """Lightweight handle returned by ``define``; builds references to the resource."""

    id: str
    kind: ResourceKind

    def ref(self, attribute: str) -> AttributeRef:
        return AttributeRef(self.id, attribute)

    def secret(self, key: str) -> SecretRef:
        return SecretRef(self.id, key)

    def __str__(self) -> str:
        return self.id


class ResourceRegistry:
    """Typed resource definitions in definition order."""

    def __init__(self) -> None:
        self._resources: dict[str, Resource] = {}
        self._next_index = 0

    def define(
        self,
        kind: ResourceKind | str,
        resource_id: str,
        attributes: Mapping[str, Any] | None = None,
    ) -> ResourceHandle:
        """Register a new resource.

        Raises:
            DuplicateIdError: if ``resource_id`` is already defined.
            InvalidAttributeError: if the id is malformed, or an attribute value is
                neither a literal nor a well-formed reference.
        """
        try:
            kind = ResourceKind.parse(kind)
        except ValueError as exc:
            raise InvalidAttributeError(str(resource_id), "kind", str(exc)) from None
        if not is_valid_id(resource_id):
            raise InvalidAttributeError(str(resource_id), "id", "ids use letters, digits, '-' and '_'")
        if resource_id in self._resources:
            existing = self._resources[resource_id]
            raise DuplicateIdError(resource_id, f"existing kind: {existing.kind.value}")

        resource = Resource(
            id=resource_id,
            kind=kind,
            attributes=MappingProxyType(self._coerce(resource_id, attributes or {})),
            index=self._next_index,
        )
        self._next_index += 1
        self._resources[resource_id] = resource
        log.debug("resource.defined", resource=resource_id, kind=kind.value)
        return ResourceHandle(resource_id, kind)

    def update(self, resource_id: str, attributes: Mapping[str, Any]) -> ResourceHandle:
        """Merge attributes into an existing resource; kind and position are kept."""
        current = self.get(resource_id)
        merged = dict(current.attributes)
        merged.update(self._coerce(resource_id, attributes))
        self._resources[resource_id] = replace(current, attributes=MappingProxyType(merged))
        log.debug("resource.updated", resource=resource_id, attributes=sorted(attributes))
        return ResourceHandle(resource_id, current.kind)

    def remove(self, resource_id: str) -> Resource:
        """Drop a resource. Edges pointing at it become dangling."""
        resource = self.get(resource_id)
        del self._resources[resource_id]
        log.debug("resource.removed", resource=resource_id)
        return resource

    def get(self, resource_id: str) -> Resource:
        try:
            return self._resources[resource_id]
        except KeyError:
            raise UnknownResourceError(resource_id) from None

    def handle(self, resource_id: str) -> ResourceHandle:
        resource = self.get(resource_id)
        return ResourceHandle(resource.id, resource.kind)

    def all(self) -> list[Resource]:
        """All resources in definition order."""
        return sorted(self._resources.values(), key=lambda r: r.index)

    def ids(self) -> list[str]:
        return [r.id for r in self.all()]

    def of_kind(self, kind: ResourceKind | str) -> list[Resource]:
        kind = ResourceKind.parse(kind)
        return [r for r in self.all() if r.kind is kind]

    def index_of(self, resource_id: str) -> int:
        return self.get(resource_id).index

    def copy(self) -> "ResourceRegistry":
        """Snapshot. Resources are immutable, so sharing them is safe."""
        clone = ResourceRegistry()
        clone._resources = dict(self._resources)
        clone._next_index = self._next_index
        return clone

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self._resources

    def __len__(self) -> int:
        return len(self._resources)

    def __iter__(self) -> Iterator[Resource]:
        return iter(self.all())

    @staticmethod
    def _coerce(resource_id: str, attributes: Mapping[str, Any]) -> dict[str, Any]:
        if not isinstance(attributes, Mapping):
            raise InvalidAttributeError(resource_id, "attributes", "attributes must be a mapping")
        coerced: dict[str, Any] = {}
        for name, value in attributes.items():
            if not is_valid_attribute_name(name):
                raise InvalidAttributeError(resource_id, str(name), "malformed attribute name")
            coerced[name] = coerce_value(resource_id, name, value)
        return coerced
