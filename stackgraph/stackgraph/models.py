"""Data models for resources, references and pending values."""

from __future__ import annotations

import copy
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from .errors import InvalidAttributeError


class ResourceKind(str, Enum):
    NETWORK = "network"
    DATASTORE = "datastore"
    CACHE = "cache"
    BROKER = "broker"
    SECRET_BUNDLE = "secret_bundle"
    SERVICE = "service"
    LOAD_BALANCER = "load_balancer"

    @classmethod
    def parse(cls, value: "ResourceKind | str") -> "ResourceKind":
        """Accept enum members and loose spellings (``SecretBundle``, ``secret-bundle``)."""
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        # CamelCase -> snake_case, then normalize separators
        text = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", text)
        text = text.replace("-", "_").replace(" ", "_").lower()
        try:
            return cls(text)
        except ValueError:
            valid = ", ".join(k.value for k in cls)
            raise ValueError(f"Unknown resource kind '{value}'. Must be one of: {valid}") from None


class EdgeKind(str, Enum):
    STRUCTURAL = "structural"  # from cannot be materialized before to
    NETWORK_ALLOW = "network_allow"  # source may initiate traffic to destination
    ATTRIBUTE = "attribute"  # derived: consumer reads an attribute of producer

    @classmethod
    def parse(cls, value: "EdgeKind | str") -> "EdgeKind":
        if isinstance(value, cls):
            return value
        text = str(value).strip().replace("-", "_").lower()
        aliases = {"depends_on": "structural", "dependency": "structural", "network": "network_allow"}
        return cls(aliases.get(text, text))


# Attributes the provisioning backend generates once a resource exists.
KIND_OUTPUTS: dict[ResourceKind, frozenset[str]] = {
    ResourceKind.NETWORK: frozenset({"vpc_id", "private_subnet_ids", "public_subnet_ids"}),
    ResourceKind.DATASTORE: frozenset({"host", "port", "username", "password", "uri", "secret_arn"}),
    ResourceKind.CACHE: frozenset({"host", "port"}),
    ResourceKind.BROKER: frozenset({"amqp_endpoint", "host", "port", "username", "password", "uri"}),
    ResourceKind.SECRET_BUNDLE: frozenset({"arn"}),
    ResourceKind.SERVICE: frozenset({"service_arn", "security_group_id"}),
    ResourceKind.LOAD_BALANCER: frozenset({"dns_name", "arn"}),
}

# Outputs that must be injected as secrets rather than plain values.
SECRET_OUTPUTS: dict[ResourceKind, frozenset[str]] = {
    ResourceKind.DATASTORE: frozenset({"username", "password", "uri"}),
    ResourceKind.BROKER: frozenset({"username", "password", "uri"}),
}

DEFAULT_PORTS: dict[ResourceKind, int] = {
    ResourceKind.DATASTORE: 5432,
    ResourceKind.CACHE: 6379,
    ResourceKind.BROKER: 5671,
    ResourceKind.LOAD_BALANCER: 80,
}

_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")
_ATTR_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")


def is_valid_id(value: object) -> bool:
    return isinstance(value, str) and bool(_ID_RE.match(value))


def is_valid_attribute_name(value: object) -> bool:
    return isinstance(value, str) and bool(_ATTR_RE.match(value))


@dataclass(frozen=True)
class AttributeRef:
    """Pointer from a consumer attribute to ``resource_id.attribute`` on a producer."""

    resource_id: str
    attribute: str

    @classmethod
    def parse(cls, text: str) -> "AttributeRef":
        """Parse ``"<id>.<attribute>"``. Raises ValueError when malformed."""
        resource_id, sep, attribute = str(text).strip().partition(".")
        if not sep or not is_valid_id(resource_id) or not is_valid_attribute_name(attribute):
            raise ValueError(f"Malformed reference '{text}' (expected '<id>.<attribute>')")
        return cls(resource_id, attribute)

    @property
    def is_well_formed(self) -> bool:
        return is_valid_id(self.resource_id) and is_valid_attribute_name(self.attribute)

    def __str__(self) -> str:
        return f"{self.resource_id}.{self.attribute}"


@dataclass(frozen=True)
class SecretRef(AttributeRef):
    """Reference to a named slot on a SecretBundle."""

    @property
    def bundle_id(self) -> str:
        return self.resource_id

    @property
    def key(self) -> str:
        return self.attribute


@dataclass(frozen=True)
class Pending:
    """Value known only after ``resource_id`` is materialized."""

    resource_id: str
    attribute: str
    secret: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"pending": f"{self.resource_id}.{self.attribute}", "secret": self.secret}

    def __str__(self) -> str:
        return f"<pending {self.resource_id}.{self.attribute}>"


LiteralValue = Union[str, int, float, bool, None, list, dict]
AttributeValue = Union[LiteralValue, AttributeRef]


def is_literal(value: Any) -> bool:
    """True for scalars, and lists / string-keyed dicts built only from literals."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return True
    if isinstance(value, (list, tuple)):
        return all(is_literal(v) for v in value)
    if isinstance(value, dict):
        if _reference_form(value) is not None:
            return False
        return all(isinstance(k, str) and is_literal(v) for k, v in value.items())
    return False


def _reference_form(value: dict) -> str | None:
    if len(value) == 1:
        (key,) = value.keys()
        if key in ("ref", "secret"):
            return key
    return None


def coerce_value(resource_id: str, name: str, value: Any) -> AttributeValue:
    """Validate an attribute value, turning ``{"ref": ...}`` / ``{"secret": ...}`` into references."""
    if isinstance(value, AttributeRef):
        if not value.is_well_formed:
            raise InvalidAttributeError(resource_id, name, f"malformed reference '{value}'")
        return value

    if isinstance(value, dict):
        form = _reference_form(value)
        if form is not None:
            try:
                parsed = AttributeRef.parse(value[form])
            except ValueError as exc:
                raise InvalidAttributeError(resource_id, name, str(exc)) from None
            if form == "secret":
                return SecretRef(parsed.resource_id, parsed.attribute)
            return parsed

    if not is_literal(value):
        raise InvalidAttributeError(
            resource_id,
            name,
            f"value of type {type(value).__name__} is neither a literal nor a reference",
        )
    # callers keep their own containers
    if isinstance(value, tuple):
        return copy.deepcopy(list(value))
    return copy.deepcopy(value)


@dataclass(frozen=True)
class Resource:
    """A node representing one infrastructure element."""

    id: str
    kind: ResourceKind
    attributes: Mapping[str, AttributeValue] = field(default_factory=dict, hash=False)
    index: int = 0  # definition order

    def references(self) -> dict[str, AttributeRef]:
        """Attributes whose values are references, by attribute name."""
        return {name: v for name, v in self.attributes.items() if isinstance(v, AttributeRef)}

    @property
    def outputs(self) -> frozenset[str]:
        """Attributes the backend generates for this resource."""
        outputs = KIND_OUTPUTS.get(self.kind, frozenset())
        if self.kind is ResourceKind.SECRET_BUNDLE:
            outputs = outputs | frozenset(self.attributes)
        return outputs

    def is_secret_output(self, attribute: str) -> bool:
        if self.kind is ResourceKind.SECRET_BUNDLE:
            return attribute in self.attributes
        return attribute in SECRET_OUTPUTS.get(self.kind, frozenset())

    def default_port(self, overrides: Mapping[ResourceKind, int] | None = None) -> int | None:
        """Declared ``port`` literal, else the configured or built-in kind default."""
        declared = self.attributes.get("port")
        if isinstance(declared, int) and not isinstance(declared, bool):
            return declared
        if overrides and self.kind in overrides:
            return overrides[self.kind]
        return DEFAULT_PORTS.get(self.kind)
