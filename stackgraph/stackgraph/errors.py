"""Error taxonomy for graph construction, resolution and planning.

Every error is raised synchronously and aborts the build cycle. Callers fix
the declarative input and rebuild; nothing here is recoverable mid-operation.
"""

from __future__ import annotations

from collections.abc import Sequence


class StackGraphError(Exception):
    """Base class for all stackgraph failures."""


class DuplicateIdError(StackGraphError):
    """A resource id was defined twice."""

    def __init__(self, resource_id: str, detail: str | None = None):
        self.resource_id = resource_id
        message = f"Resource '{resource_id}' is already defined"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class UnknownResourceError(StackGraphError, KeyError):
    """A resource id was referenced but never defined."""

    def __init__(self, resource_id: str, context: str | None = None):
        self.resource_id = resource_id
        self.context = context
        message = f"Unknown resource '{resource_id}'"
        if context:
            message += f" (referenced by {context})"
        super().__init__(message)

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return str(self.args[0])


class InvalidAttributeError(StackGraphError, ValueError):
    """An attribute value is neither a literal nor a well-formed reference."""

    def __init__(self, resource_id: str, attribute: str, reason: str):
        self.resource_id = resource_id
        self.attribute = attribute
        self.reason = reason
        super().__init__(f"Invalid attribute {resource_id}.{attribute}: {reason}")


class UnknownAttributeError(InvalidAttributeError):
    """A reference names an attribute (or secret key) its producer does not have."""

    def __init__(self, resource_id: str, attribute: str, referenced_by: str | None = None):
        self.referenced_by = referenced_by
        reason = "attribute is neither declared nor generated by this resource"
        if referenced_by:
            reason += f" (referenced by {referenced_by})"
        super().__init__(resource_id, attribute, reason)


class CyclicReferenceError(StackGraphError):
    """Attribute references loop back onto themselves."""

    def __init__(self, chain: Sequence[str]):
        self.chain = list(chain)
        super().__init__("Cyclic attribute reference: " + " -> ".join(self.chain))

    @property
    def resources(self) -> list[str]:
        """Resource ids along the chain, in order, without repeats."""
        seen: list[str] = []
        for node in self.chain:
            resource_id = node.split(".", 1)[0]
            if resource_id not in seen:
                seen.append(resource_id)
        return seen


class UnknownPortError(StackGraphError, ValueError):
    """A network-allow rule uses a port outside 1-65535, or no port could be derived."""

    def __init__(self, port: object, source: str | None = None, destination: str | None = None):
        self.port = port
        self.source = source
        self.destination = destination
        edge = f" on {source} -> {destination}" if source and destination else ""
        if port is None:
            super().__init__(f"No port declared or derivable{edge}")
        else:
            super().__init__(f"Port {port!r} is outside 1-65535{edge}")


class UnsatisfiableGraphError(StackGraphError):
    """Structural dependencies cannot be ordered."""

    def __init__(self, remaining: Sequence[str], cycle: Sequence[str] | None = None):
        self.remaining = list(remaining)
        self.cycle = list(cycle) if cycle else []
        message = "Cannot order resources: " + ", ".join(self.remaining)
        if self.cycle:
            message += " (cycle: " + " -> ".join([*self.cycle, self.cycle[0]]) + ")"
        super().__init__(message)


class RolloutError(StackGraphError):
    """A rollout step was taken out of stage order or with missing outputs."""


class StackFileError(StackGraphError):
    """A stack description file could not be parsed."""

    def __init__(self, path: object, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")
