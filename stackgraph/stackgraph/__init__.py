"""Resource graph builder and policy resolver for composed infrastructure stacks."""

__version__ = "0.1.0"

from .builder import BuildResult, StackBuilder
from .errors import (
    CyclicReferenceError,
    DuplicateIdError,
    InvalidAttributeError,
    StackGraphError,
    UnknownAttributeError,
    UnknownPortError,
    UnknownResourceError,
    UnsatisfiableGraphError,
)
from .models import AttributeRef, EdgeKind, Pending, ResourceKind, SecretRef

__all__ = [
    "__version__",
    "BuildResult",
    "StackBuilder",
    "AttributeRef",
    "SecretRef",
    "Pending",
    "EdgeKind",
    "ResourceKind",
    "StackGraphError",
    "DuplicateIdError",
    "UnknownResourceError",
    "InvalidAttributeError",
    "UnknownAttributeError",
    "CyclicReferenceError",
    "UnknownPortError",
    "UnsatisfiableGraphError",
]
