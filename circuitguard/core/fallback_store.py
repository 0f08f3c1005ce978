"""
Process-local mirror of circuit records.

Same operations as DurableCircuitStore, kept in a dict behind a lock. Used
when the durable store is unreachable and refreshed from it by
get_all_statuses(). Nothing here survives a restart.
"""

from dataclasses import replace
from threading import Lock
from typing import Dict, List, Optional

from circuitguard.core.errors import MissingRecordError
from circuitguard.core.typing import Clock, epoch_ms
from circuitguard.models.circuit_breaker_state import (
    CircuitRecord,
    CircuitState,
    CircuitStatus,
    failure_rate_of,
)

__all__ = ["FallbackMemoryStore"]


class FallbackMemoryStore:
    def __init__(self, recovery_timeout_ms: int = 30000, clock: Clock = epoch_ms):
        self.recovery_timeout_ms = recovery_timeout_ms
        self._clock = clock
        self._records: Dict[str, CircuitRecord] = {}
        self._lock = Lock()

    def _get_or_create(self, name: str) -> CircuitRecord:
        # Must be called while holding self._lock
        record = self._records.get(name)
        if record is None:
            record = CircuitRecord(service_name=name, timestamp=self._clock())
            self._records[name] = record
        return record

    def get_record(self, name: str) -> Optional[CircuitRecord]:
        with self._lock:
            record = self._records.get(name)
            return replace(record) if record else None

    def require_record(self, name: str) -> CircuitRecord:
        record = self.get_record(name)
        if record is None:
            raise MissingRecordError(name)
        return record

    def get_state(self, name: str) -> CircuitState:
        try:
            return self.require_record(name).state
        except MissingRecordError:
            return CircuitState.CLOSED

    def set_state(
        self,
        name: str,
        state: CircuitState,
        failure_rate: Optional[float] = None,
        timestamp: Optional[int] = None,
    ) -> None:
        with self._lock:
            record = self._get_or_create(name)
            record.state = state
            record.timestamp = timestamp if timestamp is not None else self._clock()
            if failure_rate is not None:
                record.failure_rate = failure_rate
            if state == CircuitState.HALF_OPEN:
                record.half_open_trial_count = 0

    def increment_success(self, name: str) -> None:
        with self._lock:
            record = self._get_or_create(name)
            record.success_count += 1
            record.total_count += 1

    def increment_failure(self, name: str) -> None:
        with self._lock:
            record = self._get_or_create(name)
            record.failure_count += 1
            record.total_count += 1

    def recompute_failure_rate(self, name: str) -> float:
        with self._lock:
            record = self._records.get(name)
            if record is None:
                return 0.0
            record.failure_rate = failure_rate_of(record.failure_count, record.total_count)
            return record.failure_rate

    def increment_half_open_trials(self, name: str) -> int:
        """Count one admitted trial. A circuit the mirror has not seen yet starts counting at 1."""
        with self._lock:
            record = self._get_or_create(name)
            record.half_open_trial_count += 1
            return record.half_open_trial_count

    def list_all(self) -> Dict[str, CircuitStatus]:
        now = self._clock()
        with self._lock:
            return {
                name: record.status(now, self.recovery_timeout_ms)
                for name, record in self._records.items()
            }

    def sync(self, records: List[CircuitRecord]) -> None:
        """Replace mirrored records with those read from the durable store."""
        with self._lock:
            for record in records:
                self._records[record.service_name] = replace(record)
