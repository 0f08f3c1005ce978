from .circuit_breaker_state import (
    CircuitBreakerRecord,
    CircuitRecord,
    CircuitState,
    CircuitStatus,
    failure_rate_of,
)

__all__ = [
    "CircuitBreakerRecord",
    "CircuitRecord",
    "CircuitState",
    "CircuitStatus",
    "failure_rate_of",
]
