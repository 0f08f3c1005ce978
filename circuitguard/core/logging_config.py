"""
Structured logging configuration using structlog.

JSON-formatted logs in production (searchable/aggregatable) and
human-readable colored output everywhere else.

Nothing is configured on import, so a host keeps its own structlog setup.
Applications without one call configure_logging() once at startup.

Usage:
    from circuitguard.core.logging_config import configure_logging, get_logger

    configure_logging()

    logger = get_logger(__name__)
    logger.info("circuit opened", service_name="payments-api", failure_rate=0.5)

Output in production (JSON):
    {"event": "circuit opened", "service_name": "payments-api", "failure_rate": 0.5,
     "timestamp": "2024-01-01T12:00:00Z", "level": "info"}

Output in development (colored):
    2024-01-01 12:00:00 [info     ] circuit opened    service_name=payments-api failure_rate=0.5
"""

import logging
import os
import sys
from typing import Any

import structlog

# Determine environment
IS_PRODUCTION = os.getenv("ENVIRONMENT", "").lower() == "production"
IS_TEST = "pytest" in sys.modules


def configure_logging() -> None:
    """Configure structlog with appropriate processors for the environment."""

    # Shared processors for all environments
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if IS_PRODUCTION:
        # Production: JSON output for log aggregation
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        # Development: colored, human-readable output
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=not IS_TEST),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Reduce noise from chatty libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        A structlog bound logger with JSON/console output based on environment
    """
    return structlog.get_logger(name)

