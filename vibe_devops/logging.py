"""Logging configuration for Vibe DevOps."""

import logging
import sys

import structlog

from vibe_devops.config import Config, get_config


def configure_logging(config: Config | None = None) -> None:
    """Configure structured logging.

    `VIBE_DEBUG=1` (``config.debug``) switches orchestration internals to DEBUG;
    otherwise only the configured level (WARNING by default) reaches stderr.
    """
    config = config or get_config()

    if config.debug:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, config.logging.level.upper(), logging.WARNING)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if config.logging.format == "console":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger instance.

    Args:
        name: Optional logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()
