"""Structured logging setup for wbstrack."""

from __future__ import annotations

import logging
import sys
from typing import Any, Optional

import structlog

from wbstrack.core.config import LoggingConfig

_LOGGER_NAME = "wbstrack"


def configure_logging(config: Optional[LoggingConfig] = None) -> None:
    """
    Install structlog processors for the whole process.

    Args:
        config: Logging configuration; environment defaults when omitted
    """
    config = config or LoggingConfig()
    level = logging.getLevelName(config.level)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="ISO"),
    ]

    if config.format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(component: Optional[str] = None) -> Any:
    """Return a lazy wbstrack logger; configure_logging may run after import."""
    if component:
        return structlog.get_logger(_LOGGER_NAME, component=component)
    return structlog.get_logger(_LOGGER_NAME)


__all__ = ["configure_logging", "get_logger"]
