"""Structured logging configuration using structlog."""
import logging
import os
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from bookshare.core.config import Settings


def app_context_processor(settings: Settings) -> Processor:
    """Build a processor that adds service context to log entries."""

    def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict["service"] = settings.otel_service_name
        event_dict["environment"] = settings.environment
        return event_dict

    return add_app_context


def configure_logging(settings: Settings) -> None:
    """Configure structlog for structured JSON logging."""
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        app_context_processor(settings),
        structlog.processors.StackInfoRenderer(),
    ]

    is_testing = (
        "pytest" in os.environ.get("_", "") or
        os.environ.get("PYTEST_CURRENT_TEST") or
        "pytest" in sys.modules
    )

    if settings.log_format == "json" or settings.is_production or is_testing:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a configured logger instance."""
    logger: structlog.BoundLogger = structlog.get_logger(name)
    return logger
