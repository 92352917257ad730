"""Logging setup shared by the library and the CLI."""

from .logging import configure_default_logging, get_logger, setup_logging

__all__ = ["configure_default_logging", "get_logger", "setup_logging"]
