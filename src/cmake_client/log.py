"""Logging configuration for cmake_client with structlog support."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog


LogLevel = int | str

ROOT_LOGGER = "cmake_client"

_handler: logging.Handler | None = None


def _as_level(level: LogLevel) -> int:
    return getattr(logging, level.upper()) if isinstance(level, str) else level


def configure_logging(level: LogLevel = "INFO") -> None:
    """Send cmake_client log events to stderr.

    Only the ``cmake_client`` logger tree gets a handler; other libraries keep
    whatever logging the application set up. Events render as colored text on
    a terminal and as JSON lines otherwise.

    Args:
        level: Level for the cmake_client loggers
    """
    global _handler

    package_logger = logging.getLogger(ROOT_LOGGER)
    if _handler is not None:
        package_logger.removeHandler(_handler)
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter("%(message)s"))
    package_logger.addHandler(_handler)
    package_logger.setLevel(_as_level(level))

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if sys.stderr.isatty():
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.extend([structlog.processors.format_exc_info, structlog.processors.JSONRenderer()])

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str, log_level: LogLevel | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger for the given name.

    Args:
        name: The name of the logger, will be prefixed with 'cmake_client.'
            unless it already lives in that namespace
        log_level: The logging level to set for the logger

    Returns:
        A structlog BoundLogger instance
    """
    full_name = name if name.startswith(ROOT_LOGGER) else f"{ROOT_LOGGER}.{name}"
    logger = structlog.get_logger(full_name)
    if log_level is not None:
        logging.getLogger(full_name).setLevel(_as_level(log_level))
    return logger
