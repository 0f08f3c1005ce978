"""
Health summary for circuits and their backing store.

Usage:
    from circuitguard.core.health_check import HealthCheck

    health = HealthCheck.check_overall_health(service)
    # Returns: {"status": "ok" | "warning" | "critical", "components": {...}}

HTTP status for a health endpoint should be:
- 200 for "ok" and "warning"
- 503 for "critical"
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Literal, Mapping
import structlog

from circuitguard.core.connection_health import ConnectionStatus
from circuitguard.models.circuit_breaker_state import CircuitState, CircuitStatus

if TYPE_CHECKING:
    from circuitguard.service import CircuitBreakerService

logger = structlog.get_logger(__name__)

__all__ = ["HealthCheck", "Threshold", "ThresholdStatus", "check_threshold"]

ThresholdStatus = Literal["ok", "warning", "critical"]


@dataclass(frozen=True)
class Threshold:
    warning: float
    critical: float
    name: str = ""


def check_threshold(value: float, threshold: Threshold) -> ThresholdStatus:
    if value >= threshold.critical:
        return "critical"
    elif value >= threshold.warning:
        return "warning"
    return "ok"


# Consecutive failed probes of the durable store: 1 warns, 10 is critical
STORAGE_FAILURES = Threshold(warning=1, critical=10, name="storage_consecutive_failures")


class HealthCheck:
    @staticmethod
    def check_circuit_health(statuses: Mapping[str, CircuitStatus]) -> Dict[str, Any]:
        """
        Check circuit breaker health.

        Checks:
        - Circuit states (open = critical, half open = warning)
        """
        open_circuits = [name for name, s in statuses.items() if s.state == CircuitState.OPEN]
        half_open_circuits = [name for name, s in statuses.items() if s.state == CircuitState.HALF_OPEN]
        closed_circuits = [name for name, s in statuses.items() if s.state == CircuitState.CLOSED]

        status: ThresholdStatus = "ok"
        if open_circuits:
            status = "critical"
        elif half_open_circuits:
            status = "warning"

        return {
            "status": status,
            "open_circuits": open_circuits,
            "half_open_circuits": half_open_circuits,
            "closed_circuits": closed_circuits,
            "total_circuits": len(statuses),
        }

    @staticmethod
    def check_storage_health(connection: ConnectionStatus) -> Dict[str, Any]:
        """
        Durable store reachability.

        Decisions keep working from the in-memory fallback, so a short outage
        (or a store not yet probed) is a warning. STORAGE_FAILURES.critical
        consecutive failed probes make it critical: circuit state is then no
        longer shared between instances.
        """
        status = check_threshold(connection.consecutive_failures, STORAGE_FAILURES)
        if not connection.is_connected and status == "ok":
            status = "warning"

        return {
            "status": status,
            "mode": "durable" if connection.is_connected else "fallback",
            **connection.to_dict(),
        }

    @staticmethod
    def check_overall_health(service: "CircuitBreakerService") -> Dict[str, Any]:
        """Aggregate health: worst of circuits and storage."""
        try:
            circuits = HealthCheck.check_circuit_health(service.get_all_circuit_statuses())
        except Exception as e:
            logger.error("Circuit health check failed", error=str(e))
            circuits = {"status": "warning", "reason": f"Health check error: {str(e)}"}

        storage = HealthCheck.check_storage_health(service.get_connection_status())

        all_statuses = [circuits["status"], storage["status"]]
        if "critical" in all_statuses:
            overall_status = "critical"
        elif "warning" in all_statuses:
            overall_status = "warning"
        else:
            overall_status = "ok"

        return {
            "status": overall_status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "components": {
                "circuits": circuits,
                "storage": storage,
            },
        }
