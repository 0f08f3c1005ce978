"""
Durable store connection tracking.

Gates every access to the shared circuit table. A probe (idempotent schema
creation plus SELECT 1) runs at most once per cooldown window; between probes
the cached result is reused so an outage cannot turn into a reconnect storm.

Usage:
    tracker = ConnectionHealthTracker(store, reporter=reporter)

    state = tracker.guarded(
        lambda: store.get_state("payments-api"),
        lambda: fallback.get_state("payments-api"),
    )
"""

from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Optional, TypeVar
import threading

from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError

from circuitguard.core.circuit_store import DurableCircuitStore
from circuitguard.core.errors import StorageConnectionError
from circuitguard.core.events import EventKind, EventReporter, NullEventReporter, Severity, safe_report
from circuitguard.core.logging_config import get_logger
from circuitguard.core.typing import Clock, epoch_ms

logger = get_logger(__name__)

__all__ = ["ConnectionHealthTracker", "ConnectionStatus"]

T = TypeVar("T")

# Driver-level failures that mean the durable store is unusable right now
STORAGE_ERRORS = (OperationalError, DisconnectionError, InterfaceError, StorageConnectionError)


@dataclass(frozen=True)
class ConnectionStatus:
    is_connected: bool
    last_connection_attempt: int  # epoch ms, 0 when never attempted
    consecutive_failures: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ConnectionHealthTracker:
    """
    Tracks whether the durable store is usable.

    Thread-safe: connection state is only touched under self._lock; the probe
    itself runs under the lock so concurrent callers share one attempt.
    """

    def __init__(
        self,
        store: DurableCircuitStore,
        reporter: Optional[EventReporter] = None,
        cooldown_ms: int = 5000,
        degraded_report_every: int = 10,
        clock: Clock = epoch_ms,
    ):
        self.store = store
        self.reporter = reporter or NullEventReporter()
        self.cooldown_ms = cooldown_ms
        self.degraded_report_every = max(degraded_report_every, 1)
        self._clock = clock

        self._is_connected = False
        self._last_connection_attempt = 0
        self._consecutive_failures = 0
        self._lock = threading.Lock()

    def _probe(self) -> None:
        """Create the circuit table if missing and check liveness. Raises on failure."""
        self.store.create_schema()
        if not self.store.ping():
            raise StorageConnectionError("Durable store ping failed")

    def ensure_connection(self) -> bool:
        """Return whether the durable store is usable. Never raises."""
        with self._lock:
            now = self._clock()
            if self._last_connection_attempt and now - self._last_connection_attempt < self.cooldown_ms:
                return self._is_connected

            self._last_connection_attempt = now

            try:
                self._probe()
            except Exception as e:
                self._consecutive_failures += 1
                self._is_connected = False
                failures = self._consecutive_failures

                logger.error("Durable store connection failed", error=str(e), consecutive_failures=failures)

                # Report the first failure, then every Nth
                if failures == 1 or failures % self.degraded_report_every == 0:
                    safe_report(
                        self.reporter,
                        EventKind.STORAGE_CONNECTION_DEGRADED,
                        {
                            "error": str(e),
                            "consecutive_failures": failures,
                            "message": f"Durable store connection failed (attempt {failures})",
                        },
                        Severity.HIGH,
                    )
                return False

            previous_failures = self._consecutive_failures
            if not self._is_connected:
                logger.info("Connected to durable store")
            self._is_connected = True
            self._consecutive_failures = 0

            if previous_failures > 0:
                safe_report(
                    self.reporter,
                    EventKind.STORAGE_CONNECTION_RESTORED,
                    {
                        "consecutive_failures": previous_failures,
                        "message": f"Durable store connection restored after {previous_failures} failed attempts",
                    },
                    Severity.MEDIUM,
                )
            return True

    def force_reconnect(self) -> bool:
        """Reset the cooldown and re-probe in the background. Returns immediately."""
        with self._lock:
            self._last_connection_attempt = 0
            self._is_connected = False

        thread = threading.Thread(target=self._reconnect, name="circuitguard-reconnect", daemon=True)
        thread.start()
        return True

    def _reconnect(self) -> None:
        success = self.ensure_connection()
        logger.info("Durable store reconnection finished", success=success)

    def guarded(self, operation: Callable[[], T], fallback: Callable[[], T]) -> T:
        """
        Run operation() against the durable store, or fallback() when the store
        is unavailable or the operation fails.
        """
        try:
            if self.ensure_connection():
                return operation()
        except STORAGE_ERRORS as e:
            error = e if isinstance(e, StorageConnectionError) else StorageConnectionError(str(e))
            logger.warning("Durable store unavailable, using fallback", error=str(error))
        except Exception as e:
            logger.warning("Durable store operation failed, using fallback", error=str(e), error_type=type(e).__name__)
        return fallback()

    def status(self) -> ConnectionStatus:
        with self._lock:
            return ConnectionStatus(
                is_connected=self._is_connected,
                last_connection_attempt=self._last_connection_attempt,
                consecutive_failures=self._consecutive_failures,
            )
