"""Logging setup using rich for readable console output."""

from __future__ import annotations

import logging

from rich.logging import RichHandler

_PACKAGE_LOGGER = "doma_studio"


def setup_logging(level: str = "INFO") -> None:
    """Configure the package logger with a rich console handler.

    Safe to call more than once; existing rich handlers are replaced.
    """
    log = logging.getLogger(_PACKAGE_LOGGER)
    for h in list(log.handlers):
        if isinstance(h, RichHandler):
            log.removeHandler(h)
    handler = RichHandler(rich_tracebacks=True, show_path=False, markup=False)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    log.addHandler(handler)
    log.setLevel(level.upper())
    log.propagate = False


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a module."""
    return logging.getLogger(name)
