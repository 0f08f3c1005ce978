from dataclasses import dataclass, asdict
from math import ceil
from threading import Lock
from typing import Any, Callable, Dict, Optional, TypeVar, Union
import re

from circuitguard.core.circuit_store import DurableCircuitStore
from circuitguard.core.connection_health import ConnectionHealthTracker
from circuitguard.core.errors import InvalidCircuitNameError
from circuitguard.core.events import EventKind, EventReporter, NullEventReporter, Severity, safe_report
from circuitguard.core.fallback_store import FallbackMemoryStore
from circuitguard.core.logging_config import get_logger
from circuitguard.core.typing import Clock, epoch_ms
from circuitguard.models.circuit_breaker_state import CircuitRecord, CircuitState, CircuitStatus

logger = get_logger(__name__)

T = TypeVar("T")
Store = Union[DurableCircuitStore, FallbackMemoryStore]

FAILURE_THRESHOLD = 0.5  # 50% failure rate
RECOVERY_TIMEOUT_MS = 30000  # 30 seconds
HALF_OPEN_MAX_TRIALS = 3  # Trial calls admitted in HALF_OPEN
HALF_OPEN_TIMEOUT_MS = 60000  # Unresolved HALF_OPEN reverts to OPEN after this

MAX_NAME_LENGTH = 128
_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:/-]*$")


def validate_circuit_name(name: Any) -> str:
    """Return name unchanged if it is a usable dependency key, else raise InvalidCircuitNameError."""
    if not isinstance(name, str) or not name:
        raise InvalidCircuitNameError(f"Circuit name must be a non-empty string, got {name!r}")
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidCircuitNameError(f"Circuit name longer than {MAX_NAME_LENGTH} characters: {name[:32]!r}...")
    if not _NAME_PATTERN.match(name):
        raise InvalidCircuitNameError(f"Malformed circuit name: {name!r}")
    return name


@dataclass(frozen=True)
class CircuitDecision:
    allowed: bool
    state: CircuitState
    remaining_time_ms: int = 0

    @property
    def retry_after_seconds(self) -> int:
        return ceil(self.remaining_time_ms / 1000)

    def headers(self) -> Dict[str, str]:
        """Response headers for a request rejected by the circuit."""
        if self.allowed:
            return {}
        return {
            "Retry-After": str(self.retry_after_seconds),
            "X-Circuit-State": self.state.value,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


class CircuitBreakerEngine:
    """
    Per-dependency circuit state machine over the durable and fallback stores.

    CLOSED -> OPEN when the lifetime failure rate reaches failure_threshold.
    OPEN -> HALF_OPEN once recovery_timeout_ms has elapsed since opening.
    HALF_OPEN -> CLOSED on a reported success, -> OPEN on a reported failure
    or when it stays unresolved for half_open_timeout_ms.

    Every write lands in the fallback mirror and, when reachable, the durable
    store; the durable result wins. Mutations of one dependency are serialized
    by a per-name lock.
    """

    def __init__(
        self,
        store: DurableCircuitStore,
        fallback: FallbackMemoryStore,
        connection: ConnectionHealthTracker,
        reporter: Optional[EventReporter] = None,
        failure_threshold: float = FAILURE_THRESHOLD,
        recovery_timeout_ms: int = RECOVERY_TIMEOUT_MS,
        half_open_max_trials: int = HALF_OPEN_MAX_TRIALS,
        half_open_timeout_ms: int = HALF_OPEN_TIMEOUT_MS,
        clock: Clock = epoch_ms,
    ):
        self.store = store
        self.fallback = fallback
        self.connection = connection
        self.reporter = reporter or NullEventReporter()
        self.failure_threshold = failure_threshold
        self.recovery_timeout_ms = recovery_timeout_ms
        self.half_open_max_trials = half_open_max_trials
        self.half_open_timeout_ms = half_open_timeout_ms
        self._clock = clock

        self._locks: Dict[str, Lock] = {}
        self._locks_guard = Lock()

    def _lock_for(self, name: str) -> Lock:
        with self._locks_guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = Lock()
            return lock

    def _read(self, name: str) -> Optional[CircuitRecord]:
        return self.connection.guarded(
            lambda: self.store.get_record(name),
            lambda: self.fallback.get_record(name),
        )

    def _write(self, operation: Callable[[Store], T]) -> T:
        local = operation(self.fallback)
        return self.connection.guarded(lambda: operation(self.store), lambda: local)

    def _transition(
        self,
        name: str,
        previous: CircuitState,
        state: CircuitState,
        failure_rate: Optional[float] = None,
    ) -> int:
        """Move a circuit to a new state and report it. Returns the transition timestamp."""
        now = self._clock()
        self._write(lambda s: s.set_state(name, state, failure_rate, now))

        log = logger.warning if state == CircuitState.OPEN else logger.info
        log(
            f"Circuit {name}: {previous.value} -> {state.value}",
            service_name=name,
            failure_rate=failure_rate,
        )
        safe_report(
            self.reporter,
            EventKind.CIRCUIT_STATE_CHANGED,
            {
                "service_name": name,
                "previous_state": previous.value,
                "state": state.value,
                "failure_rate": failure_rate,
                "timestamp": now,
                "message": f"Circuit breaker for {name} changed to {state.value}",
            },
            Severity.HIGH if state == CircuitState.OPEN else Severity.MEDIUM,
        )
        return now

    def get_state(self, name: str) -> CircuitState:
        record = self._read(name)
        return record.state if record else CircuitState.CLOSED

    def record_failure(self, name: str) -> None:
        with self._lock_for(name):
            state = self.get_state(name)

            if state == CircuitState.OPEN:
                return

            if state == CircuitState.HALF_OPEN:
                # A failed trial reopens the circuit and restarts the recovery timer
                self._transition(name, state, CircuitState.OPEN)
                return

            self._write(lambda s: s.increment_failure(name))
            failure_rate = self._write(lambda s: s.recompute_failure_rate(name))

            if failure_rate >= self.failure_threshold:
                self._transition(name, state, CircuitState.OPEN, failure_rate)

    def record_success(self, name: str) -> None:
        with self._lock_for(name):
            state = self.get_state(name)

            # Lifetime accounting happens in every state
            self._write(lambda s: s.increment_success(name))
            failure_rate = self._write(lambda s: s.recompute_failure_rate(name))

            if state == CircuitState.HALF_OPEN:
                self._transition(name, state, CircuitState.CLOSED, failure_rate)

    def record_result(self, name: str, success: bool) -> None:
        if success:
            self.record_success(name)
        else:
            self.record_failure(name)

    def should_allow(self, name: str) -> CircuitDecision:
        with self._lock_for(name):
            record = self._read(name)
            if record is None or record.state == CircuitState.CLOSED:
                return CircuitDecision(allowed=True, state=CircuitState.CLOSED)

            now = self._clock()
            elapsed = now - record.timestamp

            if record.state == CircuitState.OPEN:
                if elapsed >= self.recovery_timeout_ms:
                    # The triggering call is admitted as a trial
                    self._transition(name, CircuitState.OPEN, CircuitState.HALF_OPEN)
                    return CircuitDecision(allowed=True, state=CircuitState.HALF_OPEN)
                return CircuitDecision(
                    allowed=False,
                    state=CircuitState.OPEN,
                    remaining_time_ms=self.recovery_timeout_ms - elapsed,
                )

            # HALF_OPEN
            if self.half_open_timeout_ms and elapsed >= self.half_open_timeout_ms:
                self._transition(name, CircuitState.HALF_OPEN, CircuitState.OPEN)
                return CircuitDecision(
                    allowed=False,
                    state=CircuitState.OPEN,
                    remaining_time_ms=self.recovery_timeout_ms,
                )

            trials = self._write(lambda s: s.increment_half_open_trials(name))
            return CircuitDecision(
                allowed=0 < trials <= self.half_open_max_trials,
                state=CircuitState.HALF_OPEN,
            )

    def get_all_statuses(self) -> Dict[str, CircuitStatus]:
        """Snapshot of every known circuit; refreshes the fallback mirror from the durable store."""

        def from_durable() -> Dict[str, CircuitStatus]:
            records = self.store.list_records()
            self.fallback.sync(records)
            now = self._clock()
            return {r.service_name: r.status(now, self.recovery_timeout_ms) for r in records}

        return self.connection.guarded(from_durable, self.fallback.list_all)
