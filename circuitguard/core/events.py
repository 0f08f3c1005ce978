"""
Audit/observability reporting for circuit and storage events.

Reporters are fire-and-forget collaborators. The engine never depends on a
concrete backend: the default reporter does nothing, and every call goes
through safe_report() so a failing reporter cannot change a decision.

Usage:
    reporter = LoggingEventReporter()
    service = CircuitBreakerService(engine, reporter=reporter)
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Protocol
import threading

import httpx
import structlog

from circuitguard.core.errors import ReportingError, capture_message

logger = structlog.get_logger(__name__)

__all__ = [
    "EventKind",
    "Severity",
    "EventReporter",
    "NullEventReporter",
    "LoggingEventReporter",
    "WebhookEventReporter",
    "safe_report",
]


class EventKind(str, Enum):
    CIRCUIT_STATE_CHANGED = "circuit_state_changed"
    STORAGE_CONNECTION_DEGRADED = "storage_connection_degraded"
    STORAGE_CONNECTION_RESTORED = "storage_connection_restored"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EventReporter(Protocol):
    def report(self, kind: EventKind, details: Dict[str, Any], severity: Severity) -> None: ...


class NullEventReporter:
    """Default reporter: drops every event."""

    def report(self, kind: EventKind, details: Dict[str, Any], severity: Severity) -> None:
        return None


# Severity -> log level used by LoggingEventReporter
_LOG_LEVELS = {
    Severity.LOW: "info",
    Severity.MEDIUM: "info",
    Severity.HIGH: "warning",
    Severity.CRITICAL: "error",
}


class LoggingEventReporter:
    """Reports events as structured log entries, forwarded to Sentry when enabled."""

    def report(self, kind: EventKind, details: Dict[str, Any], severity: Severity) -> None:
        message = details.get("message") or kind.value
        context = {k: v for k, v in details.items() if k != "message"}
        context["event_type"] = kind.value
        context["severity"] = severity.value
        capture_message(
            message,
            level=_LOG_LEVELS.get(severity, "info"),
            context=context,
            tags={"event_type": kind.value, "severity": severity.value},
        )


class WebhookEventReporter:
    """
    POSTs events as JSON to a security/audit endpoint.

    Each POST runs on a daemon thread with a bounded timeout so report()
    returns immediately. Delivery failures are logged, never retried.

    Payload:
        {"eventType": "circuit_state_changed", "details": {...},
         "severity": "high", "timestamp": "...", "environment": "production"}
    """

    def __init__(
        self,
        url: str,
        environment: str = "development",
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url
        self.environment = environment
        self.timeout = timeout
        self._client = client

    def build_payload(self, kind: EventKind, details: Dict[str, Any], severity: Severity) -> Dict[str, Any]:
        return {
            "eventType": kind.value,
            "details": details,
            "severity": severity.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": self.environment,
        }

    def report(self, kind: EventKind, details: Dict[str, Any], severity: Severity) -> None:
        payload = self.build_payload(kind, details, severity)
        thread = threading.Thread(
            target=self.send,
            args=(payload,),
            name=f"circuitguard-webhook-{kind.value}",
            daemon=True,
        )
        thread.start()

    def send(self, payload: Dict[str, Any]) -> bool:
        """Deliver one payload synchronously. Returns True on a 2xx response."""
        try:
            if self._client is not None:
                response = self._client.post(self.url, json=payload, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(self.url, json=payload)

            if response.is_success:
                return True
            logger.warning(
                "Security event webhook rejected event",
                status_code=response.status_code,
                event_type=payload.get("eventType"),
            )
            return False

        except httpx.HTTPError as e:
            logger.warning(
                "Security event webhook failed",
                error=str(e),
                event_type=payload.get("eventType"),
                severity=payload.get("severity"),
            )
            return False


def safe_report(
    reporter: EventReporter,
    kind: EventKind,
    details: Dict[str, Any],
    severity: Severity,
) -> None:
    """Call a reporter, logging and swallowing anything it raises."""
    try:
        reporter.report(kind, details, severity)
    except Exception as e:
        error = ReportingError(f"{type(reporter).__name__} failed to report {kind.value}: {e}")
        logger.warning("Event reporting failed", error=str(error), event_type=kind.value)
