"""Structured Logging Configuration.

This module configures structlog with JSON output and context binding for
production log aggregation. Entry points call configure_logging() once;
modules obtain loggers with get_logger(__name__).

Configuration:
- JSON output format (one event per line)
- ISO-8601 UTC timestamps
- Context binding support (project_id, stage, invocation_id, ...)
- Log levels: DEBUG, INFO, WARNING, ERROR, CRITICAL
"""

import logging
import os
import sys

import structlog


def configure_logging(level: str | None = None) -> None:
    """Configure structlog for JSON output.

    Args:
        level: Log level name. Defaults to LOG_LEVEL env var, then INFO.
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance for the given module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Bound structlog logger; accepts keyword context on every call.
    """
    return structlog.get_logger(name)
