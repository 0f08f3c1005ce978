"""
Test fixtures for circuitguard tests.

Provides database engines (reachable and unreachable), a controllable
millisecond clock, a recording event reporter and service factories.
"""

import pytest
from typing import Any, Dict, List, Tuple
from sqlmodel import SQLModel, create_engine
from sqlalchemy.pool import StaticPool

from circuitguard.core.config import Settings
from circuitguard.core.events import EventKind, Severity
from circuitguard.service import CircuitBreakerService

# Use in-memory SQLite for unit tests (fast, isolated)
TEST_DATABASE_URL = "sqlite:///:memory:"

T0 = 1_700_000_000_000  # Arbitrary epoch ms start for the fake clock


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class RecordingReporter:
    """Event reporter that keeps every event for assertions."""

    def __init__(self):
        self.events: List[Tuple[EventKind, Dict[str, Any], Severity]] = []

    def report(self, kind: EventKind, details: Dict[str, Any], severity: Severity) -> None:
        self.events.append((kind, details, severity))

    def of_kind(self, kind: EventKind) -> List[Tuple[EventKind, Dict[str, Any], Severity]]:
        return [e for e in self.events if e[0] == kind]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        CIRCUIT_FAILURE_THRESHOLD=0.5,
        CIRCUIT_RECOVERY_TIMEOUT_MS=30000,
        CIRCUIT_HALF_OPEN_MAX_TRIALS=3,
        CIRCUIT_HALF_OPEN_TIMEOUT_MS=60000,
        STORAGE_RECONNECT_COOLDOWN_MS=5000,
        STORAGE_DEGRADED_REPORT_EVERY=10,
        STATUS_REFRESH_INTERVAL_SECONDS=60,
        SECURITY_EVENT_WEBHOOK_URL="",
        SENTRY_DSN="",
    )


@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def unavailable_engine(tmp_path):
    """Engine whose database file lives in a directory that does not exist: every connect fails."""
    missing = tmp_path / "missing-dir" / "circuits.db"
    engine = create_engine(f"sqlite:///{missing}", connect_args={"check_same_thread": False})
    yield engine
    engine.dispose()


@pytest.fixture
def make_service(test_settings, clock, reporter):
    """Factory for services bound to a given engine, sharing the test clock and reporter."""
    services: List[CircuitBreakerService] = []

    def _make(engine, **kwargs) -> CircuitBreakerService:
        kwargs.setdefault("config", test_settings)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("reporter", reporter)
        service = CircuitBreakerService(engine, **kwargs)
        services.append(service)
        return service

    yield _make

    for service in services:
        service.stop()


@pytest.fixture
def service(make_service, test_engine) -> CircuitBreakerService:
    """Service with a reachable durable store."""
    return make_service(test_engine)


@pytest.fixture
def degraded_service(make_service, unavailable_engine) -> CircuitBreakerService:
    """Service whose durable store is permanently unreachable."""
    return make_service(unavailable_engine)


@pytest.fixture(params=["durable", "fallback"])
def any_service(request, make_service, test_engine, unavailable_engine) -> CircuitBreakerService:
    """Runs a test against both the durable store and the fallback-only mode."""
    if request.param == "durable":
        return make_service(test_engine)
    return make_service(unavailable_engine)
