"""
Durable circuit store backed by the shared `circuit_breaker` table.

Writes follow an idempotent merge contract so instances sharing the table
converge without transactions across calls:
- counters always add
- state and timestamp always replace
- failure_rate replaces only when a new value is supplied

PostgreSQL and SQLite use INSERT ... ON CONFLICT DO UPDATE. Other dialects
fall back to a read-modify-write inside one session.
"""

from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select as sa_select, text, update
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, select

from circuitguard.core.errors import MissingRecordError
from circuitguard.core.typing import Clock, epoch_ms
from circuitguard.models.circuit_breaker_state import (
    CircuitBreakerRecord,
    CircuitRecord,
    CircuitState,
    CircuitStatus,
    failure_rate_of,
)

logger = structlog.get_logger(__name__)

__all__ = ["DurableCircuitStore"]

_table = CircuitBreakerRecord.__table__


def _dialect_insert(dialect_name: str):
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert

        return insert
    if dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert

        return insert
    return None


class DurableCircuitStore:
    """CRUD for circuit records in the durable store."""

    def __init__(self, engine: Engine, recovery_timeout_ms: int = 30000, clock: Clock = epoch_ms):
        self.engine = engine
        self.recovery_timeout_ms = recovery_timeout_ms
        self._clock = clock
        self._insert = _dialect_insert(engine.dialect.name)

    def create_schema(self) -> None:
        """Create the circuit table if it does not exist. Idempotent."""
        SQLModel.metadata.create_all(self.engine, tables=[_table])

    def ping(self) -> bool:
        """Liveness check. Driver errors propagate to the caller."""
        with self.engine.connect() as connection:
            return connection.execute(text("SELECT 1 AS ping")).scalar() == 1

    def get_record(self, name: str) -> Optional[CircuitRecord]:
        with Session(self.engine) as session:
            row = session.get(CircuitBreakerRecord, name)
            return CircuitRecord.from_row(row) if row else None

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

    def _upsert(self, values: Dict[str, Any], on_conflict: Dict[str, Any]) -> None:
        stmt = self._insert(_table).values(**values)
        stmt = stmt.on_conflict_do_update(index_elements=[_table.c.service_name], set_=on_conflict)
        with self.engine.begin() as connection:
            connection.execute(stmt)

    def set_state(
        self,
        name: str,
        state: CircuitState,
        failure_rate: Optional[float] = None,
        timestamp: Optional[int] = None,
    ) -> None:
        """Replace state and timestamp; counters are preserved."""
        now = timestamp if timestamp is not None else self._clock()

        if self._insert is None:
            self._set_state_generic(name, state, failure_rate, now)
        else:
            on_conflict: Dict[str, Any] = {"state": state.value, "timestamp": now}
            if failure_rate is not None:
                on_conflict["failure_rate"] = failure_rate
            self._upsert(
                {
                    "service_name": name,
                    "state": state.value,
                    "failure_rate": failure_rate or 0.0,
                    "timestamp": now,
                    "success_count": 0,
                    "failure_count": 0,
                    "total_count": 0,
                    "half_open_trial_count": 0,
                },
                on_conflict,
            )

        # Separate statement so the merge above never touches the trial counter
        if state == CircuitState.HALF_OPEN:
            with self.engine.begin() as connection:
                connection.execute(
                    update(_table).where(_table.c.service_name == name).values(half_open_trial_count=0)
                )

        logger.debug("Circuit state persisted", service_name=name, state=state.value, timestamp=now)

    def _set_state_generic(self, name: str, state: CircuitState, failure_rate: Optional[float], now: int) -> None:
        with Session(self.engine) as session:
            row = session.get(CircuitBreakerRecord, name)
            if row is None:
                row = CircuitBreakerRecord(service_name=name, state=state.value, failure_rate=failure_rate or 0.0, timestamp=now)
            else:
                row.state = state.value
                row.timestamp = now
                if failure_rate is not None:
                    row.failure_rate = failure_rate
            session.add(row)
            session.commit()

    def _increment(self, name: str, counter: str) -> None:
        now = self._clock()
        if self._insert is None:
            with Session(self.engine) as session:
                row = session.get(CircuitBreakerRecord, name)
                if row is None:
                    row = CircuitBreakerRecord(service_name=name, state=CircuitState.CLOSED.value, timestamp=now)
                setattr(row, counter, (getattr(row, counter) or 0) + 1)
                row.total_count = (row.total_count or 0) + 1
                session.add(row)
                session.commit()
            return

        values: Dict[str, Any] = {
            "service_name": name,
            "state": CircuitState.CLOSED.value,
            "failure_rate": 1.0 if counter == "failure_count" else 0.0,
            "timestamp": now,
            "success_count": 0,
            "failure_count": 0,
            "total_count": 1,
            "half_open_trial_count": 0,
        }
        values[counter] = 1
        self._upsert(
            values,
            {
                counter: _table.c[counter] + 1,
                "total_count": _table.c.total_count + 1,
            },
        )

    def increment_success(self, name: str) -> None:
        self._increment(name, "success_count")

    def increment_failure(self, name: str) -> None:
        self._increment(name, "failure_count")

    def recompute_failure_rate(self, name: str) -> float:
        """Persist failure_count / max(total_count, 1) and return it."""
        with self.engine.begin() as connection:
            row = connection.execute(
                sa_select(_table.c.failure_count, _table.c.total_count).where(_table.c.service_name == name)
            ).first()
            if row is None:
                return 0.0
            rate = failure_rate_of(row.failure_count, row.total_count)
            connection.execute(update(_table).where(_table.c.service_name == name).values(failure_rate=rate))
            return rate

    def increment_half_open_trials(self, name: str) -> int:
        """Add one admitted trial and return the new count (0 if the row is missing)."""
        stmt = (
            update(_table)
            .where(_table.c.service_name == name)
            .values(half_open_trial_count=_table.c.half_open_trial_count + 1)
        )
        with self.engine.begin() as connection:
            # Same dialects as the ON CONFLICT upserts: UPDATE ... RETURNING in one round trip
            if self._insert is not None:
                count = connection.execute(stmt.returning(_table.c.half_open_trial_count)).scalar_one_or_none()
                return count or 0

            result = connection.execute(stmt)
            if not result.rowcount:
                return 0
            return connection.execute(
                sa_select(_table.c.half_open_trial_count).where(_table.c.service_name == name)
            ).scalar_one()

    def list_records(self) -> List[CircuitRecord]:
        with Session(self.engine) as session:
            rows = session.exec(select(CircuitBreakerRecord)).all()
            return [CircuitRecord.from_row(row) for row in rows]

    def list_all(self) -> Dict[str, CircuitStatus]:
        """All circuits, with remaining recovery time computed for OPEN ones."""
        now = self._clock()
        return {
            record.service_name: record.status(now, self.recovery_timeout_ms)
            for record in self.list_records()
        }
