"""Configuration loading from stackgraph.toml and STACKGRAPH_* environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .models import ResourceKind

CONFIG_FILENAME = "stackgraph.toml"


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "warning"
    format: str = "console"


@dataclass
class CheckConfig:
    """Stack check configuration."""

    fail_on: str = "error"


@dataclass
class StackGraphConfig:
    """Top-level configuration."""

    log: LogConfig = field(default_factory=LogConfig)
    checks: CheckConfig = field(default_factory=CheckConfig)
    ports: dict[ResourceKind, int] = field(default_factory=dict)  # kind -> default port override
    source: Path | None = None


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _env(key: str, default: str | None = None) -> str | None:
    return os.environ.get(f"STACKGRAPH_{key}", default)


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {sorted(valid)}")
    return value.lower()


def _validate_choice(name: str, value: str, valid: set[str]) -> str:
    if value.lower() not in valid:
        raise ValueError(f"Invalid {name}: {value}. Must be one of {sorted(valid)}")
    return value.lower()


def _validate_ports(raw: dict[str, Any]) -> dict[ResourceKind, int]:
    ports: dict[ResourceKind, int] = {}
    for kind_name, port in raw.items():
        kind = ResourceKind.parse(kind_name)
        if not isinstance(port, int) or isinstance(port, bool) or not 1 <= port <= 65535:
            raise ValueError(f"Invalid default port for {kind.value}: {port!r} (must be 1-65535)")
        ports[kind] = port
    return ports


def find_config(start: Path) -> Path | None:
    """Find stackgraph.toml by walking up from ``start``."""
    cur = start.resolve()
    for p in (cur, *cur.parents):
        candidate = p / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def load_config(path: Path | None = None) -> StackGraphConfig:
    """Load configuration.

    Values come from the ``[stackgraph]`` table of ``path`` (if given), then
    ``STACKGRAPH_LOG_LEVEL``, ``STACKGRAPH_LOG_FORMAT`` and
    ``STACKGRAPH_FAIL_ON`` override them.
    """
    import tomllib

    data: dict[str, Any] = {}
    if path is not None:
        document = tomllib.loads(path.read_text(encoding="utf-8"))
        data = _coerce_dict(document.get("stackgraph"))

    log_raw = _coerce_dict(data.get("log"))
    checks_raw = _coerce_dict(data.get("checks"))

    level = _env("LOG_LEVEL") or str(log_raw.get("level", "warning"))
    fmt = _env("LOG_FORMAT") or str(log_raw.get("format", "console"))
    fail_on = _env("FAIL_ON") or str(checks_raw.get("fail_on", "error"))

    return StackGraphConfig(
        log=LogConfig(
            level=_validate_log_level(level),
            format=_validate_choice("log format", fmt, {"console", "json"}),
        ),
        checks=CheckConfig(fail_on=_validate_choice("fail_on", fail_on, {"error", "warning"})),
        ports=_validate_ports(_coerce_dict(data.get("ports"))),
        source=path,
    )
