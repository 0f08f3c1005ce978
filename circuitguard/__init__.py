from circuitguard.core.circuit_breaker import CircuitDecision
from circuitguard.core.connection_health import ConnectionStatus
from circuitguard.core.errors import InvalidCircuitNameError
from circuitguard.core.events import (
    EventKind,
    EventReporter,
    LoggingEventReporter,
    NullEventReporter,
    Severity,
    WebhookEventReporter,
)
from circuitguard.core.logging_config import configure_logging
from circuitguard.models.circuit_breaker_state import CircuitState, CircuitStatus
from circuitguard.service import CircuitBreakerService

__all__ = [
    "CircuitBreakerService",
    "CircuitDecision",
    "CircuitState",
    "CircuitStatus",
    "ConnectionStatus",
    "configure_logging",
    "EventKind",
    "EventReporter",
    "InvalidCircuitNameError",
    "LoggingEventReporter",
    "NullEventReporter",
    "Severity",
    "WebhookEventReporter",
]
