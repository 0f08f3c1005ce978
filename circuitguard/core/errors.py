"""
Error taxonomy and unified error capture with optional Sentry integration.

Provides:
- Exception classes for the circuit breaker subsystem
- Structured logging of captured errors (always)
- Sentry forwarding when initialized
- Graceful degradation when Sentry is unavailable

Usage:
    # Capture an exception
    capture_exception(exc, context={"service_name": "payments-api"})

    # Capture a message (non-exception event)
    capture_message("Circuit breaker for payments-api changed to OPEN", level="warning")
"""

from typing import Optional, Any, Dict
from datetime import datetime, timezone
import structlog

logger = structlog.get_logger(__name__)

__all__ = [
    "CircuitGuardError",
    "StorageConnectionError",
    "MissingRecordError",
    "ReportingError",
    "InvalidCircuitNameError",
    "init_sentry",
    "capture_exception",
    "capture_message",
    "is_sentry_enabled",
]


class CircuitGuardError(Exception):
    """Base class for circuit breaker subsystem errors."""


class StorageConnectionError(CircuitGuardError):
    """Durable store unreachable or a query against it failed.

    Always recovered locally through the in-memory fallback.
    """


class MissingRecordError(CircuitGuardError):
    """No circuit record exists yet for a service; callers default to CLOSED."""


class ReportingError(CircuitGuardError):
    """An event reporter failed. Logged and swallowed, never retried."""


class InvalidCircuitNameError(CircuitGuardError, ValueError):
    """Empty or malformed dependency name.

    The only error raised to callers: it signals misuse, not a transient fault.
    """


# Lazy-loaded Sentry SDK (optional dependency)
_sentry_initialized: bool = False


def init_sentry(
    dsn: str,
    environment: str = "production",
    traces_sample_rate: float = 0.0,
    release: Optional[str] = None,
) -> bool:
    """
    Initialize Sentry SDK for error tracking.

    Args:
        dsn: Sentry DSN (from project settings)
        environment: Environment name (production, staging, development)
        traces_sample_rate: Percentage of transactions to trace (0.0-1.0)
        release: Release version

    Returns:
        True if initialization successful, False otherwise
    """
    global _sentry_initialized

    if not dsn:
        logger.info("Sentry disabled (no DSN provided)")
        return False

    try:
        import sentry_sdk
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            traces_sample_rate=traces_sample_rate,
            release=release,
            integrations=[SqlalchemyIntegration()],
            ignore_errors=[KeyboardInterrupt, SystemExit],
        )

        _sentry_initialized = True
        logger.info("Sentry initialized", environment=environment, release=release)
        return True

    except ImportError:
        logger.warning("Sentry SDK not installed, error tracking disabled")
        return False
    except Exception as e:
        logger.error("Failed to initialize Sentry", error=str(e))
        return False


def is_sentry_enabled() -> bool:
    """Check if Sentry is initialized and available."""
    return _sentry_initialized


def _enrich(context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        **structlog.contextvars.get_contextvars(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **(context or {}),
    }


def capture_exception(
    exc: BaseException,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error",
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Capture an exception with structured logging and Sentry (when enabled).

    Args:
        exc: Exception to capture
        context: Additional context dict (e.g., {"service_name": "payments-api"})
        level: Severity level (debug, info, warning, error, fatal)
        tags: Additional tags for filtering in Sentry

    Returns:
        Sentry event ID or None if not sent
    """
    enriched_context = _enrich(context)
    enriched_context["error_type"] = type(exc).__name__

    logger.error("Exception captured", exc_info=exc, **enriched_context)

    if _sentry_initialized:
        try:
            import sentry_sdk

            with sentry_sdk.push_scope() as scope:
                for key, value in enriched_context.items():
                    if value is not None:
                        scope.set_extra(key, value)
                if tags:
                    for key, value in tags.items():
                        scope.set_tag(key, value)
                scope.level = level
                return sentry_sdk.capture_exception(exc)
        except Exception as e:
            logger.warning("Failed to send exception to Sentry", error=str(e))

    return None


def capture_message(
    message: str,
    level: str = "info",
    context: Optional[Dict[str, Any]] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Capture a message with Sentry (for non-exception events).

    Used for circuit state changes and storage degradation notices.

    Args:
        message: Message to capture
        level: Severity level (debug, info, warning, error, fatal)
        context: Additional context dict
        tags: Additional tags for filtering

    Returns:
        Sentry event ID or None if not sent
    """
    enriched_context = _enrich(context)

    log_func = getattr(logger, level, logger.info)
    log_func(message, **enriched_context)

    if _sentry_initialized:
        try:
            import sentry_sdk

            with sentry_sdk.push_scope() as scope:
                for key, value in enriched_context.items():
                    if value is not None:
                        scope.set_extra(key, value)
                if tags:
                    for key, value in tags.items():
                        scope.set_tag(key, value)
                scope.level = level
                return sentry_sdk.capture_message(message, level=level)
        except Exception as e:
            logger.warning("Failed to send message to Sentry", error=str(e))

    return None
