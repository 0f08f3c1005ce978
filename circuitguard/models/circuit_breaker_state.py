"""
Circuit breaker state model.

One row per protected dependency, shared by every instance that points at the
same database. Counters only ever add; state and timestamp are replaced on
each transition.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import BigInteger, Column, Float, Integer, Text
from sqlmodel import Field, SQLModel


class CircuitState(str, Enum):
    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Failing, reject requests
    HALF_OPEN = "HALF_OPEN"  # Testing if recovered


class CircuitBreakerRecord(SQLModel, table=True):
    """Persisted circuit breaker state for one dependency."""

    __tablename__ = "circuit_breaker"

    service_name: str = Field(sa_column=Column(Text, primary_key=True))
    state: str = Field(sa_column=Column(Text, nullable=False))
    failure_rate: float = Field(default=0.0, sa_column=Column(Float, nullable=False, default=0.0))
    timestamp: int = Field(sa_column=Column(BigInteger, nullable=False))  # epoch ms of last transition
    success_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    failure_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    total_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    half_open_trial_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))


@dataclass
class CircuitRecord:
    """Backend-independent view of one circuit, shared by both stores."""

    service_name: str
    state: CircuitState = CircuitState.CLOSED
    failure_rate: float = 0.0
    timestamp: int = 0
    success_count: int = 0
    failure_count: int = 0
    total_count: int = 0
    half_open_trial_count: int = 0

    @classmethod
    def from_row(cls, row: CircuitBreakerRecord) -> "CircuitRecord":
        try:
            state = CircuitState(row.state)
        except ValueError:
            state = CircuitState.CLOSED
        return cls(
            service_name=row.service_name,
            state=state,
            failure_rate=float(row.failure_rate or 0.0),
            timestamp=int(row.timestamp or 0),
            success_count=row.success_count or 0,
            failure_count=row.failure_count or 0,
            total_count=row.total_count or 0,
            half_open_trial_count=row.half_open_trial_count or 0,
        )

    def status(self, now: int, recovery_timeout_ms: int) -> "CircuitStatus":
        remaining = 0
        if self.state == CircuitState.OPEN:
            remaining = max(0, recovery_timeout_ms - (now - self.timestamp))
        return CircuitStatus(
            state=self.state,
            failure_rate=self.failure_rate,
            timestamp=self.timestamp,
            remaining_time_ms=remaining,
        )


@dataclass(frozen=True)
class CircuitStatus:
    """Snapshot returned by get_all_circuit_statuses()."""

    state: CircuitState
    failure_rate: float
    timestamp: int
    remaining_time_ms: int

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


def failure_rate_of(failure_count: int, total_count: Optional[int]) -> float:
    return failure_count / max(total_count or 0, 1)
