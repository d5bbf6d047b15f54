"""structlog setup for aumai-imagepublish."""

from __future__ import annotations

import logging

import structlog

__all__ = ["configure_logging"]


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """
    Configure structlog for the process.

    Args:
        log_level: Minimum level to emit (DEBUG, INFO, WARNING, ERROR).
        json_output: Render JSON lines instead of console output.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level!r}")

    renderer: structlog.typing.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
