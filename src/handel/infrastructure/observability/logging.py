"""Structured logging configuration."""

from __future__ import annotations

import logging
import sys

import structlog
from structlog.typing import Processor


LOG_FORMATS = ("json", "console")


def resolve_log_level(log_level: str) -> int:
    """Map a level name to its stdlib value; unknown names mean INFO."""
    level = logging.getLevelName(log_level.upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structlog for deploy runs.

    ``json`` emits one object per event for CI logs; ``console`` renders
    aligned key/value lines for someone watching a deploy in a terminal.
    Run-level fields bound with ``structlog.contextvars`` (app and
    environment) are merged into every event.
    """
    if log_format not in LOG_FORMATS:
        raise ValueError(f"Unknown log format '{log_format}', expected one of {LOG_FORMATS}")
    level = resolve_log_level(log_level)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.CallsiteParameterAdder(
            [
                structlog.processors.CallsiteParameter.MODULE,
                structlog.processors.CallsiteParameter.FUNC_NAME,
            ],
        ),
        structlog.dev.set_exc_info,
    ]
    if log_format == "console":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.extend([
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ])

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )

    # Deployers built on stdlib logging end up on the same stream
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
