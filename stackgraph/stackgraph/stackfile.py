"""Stack description files (TOML or YAML) and composition layers.

A stack file declares resources and their relationships:

    stack = "config-service"

    [[resources]]
    id = "cfg-db"
    kind = "datastore"
    depends_on = ["vpc"]

    [[resources]]
    id = "cfg-web"
    kind = "service"
    depends_on = ["vpc", "cfg-db"]
    connects_to = [{ target = "cfg-db", port = 5432, label = "RDS" }]
    [resources.attributes]
    POSTGRES_HOST = { ref = "cfg-db.host" }
    SECRET_KEY = { secret = "shared.CFG_SECRET_KEY" }

    [[allow]]
    source = "cfg-web"
    destination = "cfg-web"
    port = 8001

Several files load as layers, in order. A later layer may redeclare an id of
the same kind to add or override attributes.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .builder import StackBuilder
from .errors import DuplicateIdError, StackFileError
from .models import ResourceKind
from .observability import get_logger

log = get_logger("stackfile")

SUPPORTED_SUFFIXES = (".toml", ".yml", ".yaml")


@dataclass(frozen=True)
class Connection:
    target: str
    port: int | None = None
    label: str | None = None


@dataclass(frozen=True)
class ResourceDecl:
    id: str
    kind: ResourceKind
    attributes: dict[str, Any] = field(default_factory=dict)
    depends_on: list[str] = field(default_factory=list)
    connects_to: list[Connection] = field(default_factory=list)


@dataclass(frozen=True)
class AllowDecl:
    source: str
    destination: str
    port: int
    label: str | None = None


@dataclass(frozen=True)
class StackFile:
    path: Path
    name: str | None = None
    resources: list[ResourceDecl] = field(default_factory=list)
    allows: list[AllowDecl] = field(default_factory=list)


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _coerce_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _read_document(path: Path) -> dict[str, Any]:
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise StackFileError(path, f"unsupported file type '{suffix}' (use .toml, .yml or .yaml)")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise StackFileError(path, f"cannot read file: {exc.strerror or exc}") from exc

    if suffix == ".toml":
        import tomllib

        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            raise StackFileError(path, f"invalid TOML: {exc}") from exc
    else:
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            raise StackFileError(path, f"invalid YAML: {exc}") from exc

    if not isinstance(data, dict):
        raise StackFileError(path, "top level must be a table / mapping")
    return data


def _parse_connection(path: Path, owner: str, raw: Any) -> Connection:
    if isinstance(raw, str) and raw.strip():
        return Connection(target=raw.strip())
    if isinstance(raw, dict):
        target = str(raw.get("target", "")).strip()
        if not target:
            raise StackFileError(path, f"resource '{owner}': connects_to entry without target")
        port = raw.get("port")
        label = raw.get("label")
        return Connection(
            target=target,
            port=port,
            label=str(label) if isinstance(label, str) else None,
        )
    raise StackFileError(path, f"resource '{owner}': connects_to entries must be ids or tables")


def parse_stack(path: Path) -> StackFile:
    """Parse one stack file without touching any registry."""
    data = _read_document(path)

    resources: list[ResourceDecl] = []
    seen: set[str] = set()
    for n, raw in enumerate(_coerce_list(data.get("resources")), start=1):
        if not isinstance(raw, dict):
            raise StackFileError(path, f"resources[{n}] must be a table / mapping")

        resource_id = str(raw.get("id", "")).strip()
        if not resource_id:
            raise StackFileError(path, f"resources[{n}] has no id")
        if resource_id in seen:
            raise DuplicateIdError(resource_id, f"declared twice in {path.name}")
        seen.add(resource_id)

        try:
            kind = ResourceKind.parse(str(raw.get("kind", "")))
        except ValueError as exc:
            raise StackFileError(path, f"resource '{resource_id}': {exc}") from None

        depends_on = [str(d).strip() for d in _coerce_list(raw.get("depends_on")) if str(d).strip()]
        connects_to = [_parse_connection(path, resource_id, c) for c in _coerce_list(raw.get("connects_to"))]

        resources.append(
            ResourceDecl(
                id=resource_id,
                kind=kind,
                attributes=_coerce_dict(raw.get("attributes")),
                depends_on=depends_on,
                connects_to=connects_to,
            )
        )

    allows: list[AllowDecl] = []
    for n, raw in enumerate(_coerce_list(data.get("allow")), start=1):
        raw = _coerce_dict(raw)
        source = str(raw.get("source", "")).strip()
        destination = str(raw.get("destination", "")).strip()
        if not source or not destination or "port" not in raw:
            raise StackFileError(path, f"allow[{n}] needs source, destination and port")
        label = raw.get("label")
        allows.append(AllowDecl(source, destination, raw["port"], str(label) if isinstance(label, str) else None))

    name = data.get("stack")
    return StackFile(
        path=path,
        name=str(name) if isinstance(name, str) else None,
        resources=resources,
        allows=allows,
    )


def apply_stack(stack: StackFile, builder: StackBuilder) -> StackBuilder:
    """Apply one parsed layer to ``builder``.

    Resources are defined first, relationships second, so relationships may
    point forward within the layer.
    """
    for decl in stack.resources:
        if decl.id in builder.registry:
            existing = builder.registry.get(decl.id)
            if existing.kind is not decl.kind:
                raise DuplicateIdError(
                    decl.id,
                    f"{stack.path.name} redeclares it as {decl.kind.value}, was {existing.kind.value}",
                )
            builder.update(decl.id, decl.attributes)
        else:
            builder.define(decl.kind, decl.id, decl.attributes)

    for decl in stack.resources:
        for dep in decl.depends_on:
            builder.add_dependency(decl.id, dep)
        for conn in decl.connects_to:
            builder.connect(decl.id, conn.target, conn.port, conn.label)

    for allow in stack.allows:
        builder.add_network_allow(allow.source, allow.destination, allow.port, allow.label)

    log.info("stack.applied", path=str(stack.path), stack=stack.name, resources=len(stack.resources))
    return builder


def load_stack(paths: str | Path | Iterable[str | Path], builder: StackBuilder | None = None) -> StackBuilder:
    """Load one or more stack files as composition layers, in order."""
    if isinstance(paths, (str, Path)):
        paths = [paths]
    builder = builder or StackBuilder()
    for path in paths:
        apply_stack(parse_stack(Path(path)), builder)
    return builder
