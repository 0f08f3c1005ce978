"""
Tests for the durable and in-memory circuit stores.

Tests cover:
- Exact durable schema and idempotent creation
- Merge contract: counters add, state/timestamp replace
- HALF_OPEN resets the trial counter without touching other counters
- Failure rate recomputation and trial counting
- Remaining recovery time in list_all()
- Fallback mirror semantics (separate trial and remaining-time fields)
"""

import pytest
from unittest.mock import MagicMock
from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError

from circuitguard.core.circuit_store import DurableCircuitStore
from circuitguard.core.errors import MissingRecordError
from circuitguard.core.fallback_store import FallbackMemoryStore
from circuitguard.models.circuit_breaker_state import CircuitRecord, CircuitState


@pytest.fixture
def store(test_engine, clock) -> DurableCircuitStore:
    return DurableCircuitStore(test_engine, recovery_timeout_ms=30000, clock=clock)


@pytest.fixture
def memory(clock) -> FallbackMemoryStore:
    return FallbackMemoryStore(recovery_timeout_ms=30000, clock=clock)


@pytest.fixture(params=["durable", "memory"])
def any_store(request, store, memory):
    return store if request.param == "durable" else memory


class TestSchema:
    def test_column_set(self, test_engine):
        columns = {c["name"]: c for c in inspect(test_engine).get_columns("circuit_breaker")}

        assert set(columns) == {
            "service_name",
            "state",
            "failure_rate",
            "timestamp",
            "success_count",
            "failure_count",
            "total_count",
            "half_open_trial_count",
        }
        assert inspect(test_engine).get_pk_constraint("circuit_breaker")["constrained_columns"] == ["service_name"]

    def test_ping(self, store):
        assert store.ping() is True

    def test_ping_unreachable_store_raises(self, unavailable_engine):
        with pytest.raises(OperationalError):
            DurableCircuitStore(unavailable_engine).ping()

    def test_create_schema_is_idempotent(self, store):
        store.create_schema()
        store.create_schema()

        assert "circuit_breaker" in inspect(store.engine).get_table_names()


class TestStoreOperations:
    """Behaviour shared by the durable store and its in-memory mirror."""

    def test_missing_record_defaults_to_closed(self, any_store):
        assert any_store.get_record("unknown") is None
        assert any_store.get_state("unknown") == CircuitState.CLOSED

    def test_require_record_raises_for_missing(self, any_store):
        with pytest.raises(MissingRecordError):
            any_store.require_record("unknown")

    def test_increments_create_closed_record(self, any_store, clock):
        any_store.increment_failure("rpc-node")

        record = any_store.get_record("rpc-node")
        assert record.state == CircuitState.CLOSED
        assert record.failure_count == 1
        assert record.success_count == 0
        assert record.total_count == 1
        assert record.timestamp == clock.now

    def test_counters_always_add(self, any_store):
        any_store.increment_success("rpc-node")
        any_store.increment_success("rpc-node")
        any_store.increment_failure("rpc-node")

        record = any_store.get_record("rpc-node")
        assert (record.success_count, record.failure_count, record.total_count) == (2, 1, 3)

    def test_increment_keeps_transition_timestamp(self, any_store, clock):
        any_store.set_state("rpc-node", CircuitState.OPEN, 0.5)
        opened_at = clock.now

        clock.advance(1000)
        any_store.increment_success("rpc-node")

        assert any_store.get_record("rpc-node").timestamp == opened_at

    def test_set_state_preserves_counters(self, any_store, clock):
        any_store.increment_success("rpc-node")
        any_store.increment_failure("rpc-node")
        clock.advance(500)

        any_store.set_state("rpc-node", CircuitState.OPEN, 0.5)

        record = any_store.get_record("rpc-node")
        assert record.state == CircuitState.OPEN
        assert record.failure_rate == pytest.approx(0.5)
        assert record.timestamp == clock.now
        assert (record.success_count, record.failure_count, record.total_count) == (1, 1, 2)

    def test_set_state_without_rate_keeps_rate(self, any_store):
        any_store.set_state("rpc-node", CircuitState.OPEN, 0.75)
        any_store.set_state("rpc-node", CircuitState.HALF_OPEN)

        assert any_store.get_record("rpc-node").failure_rate == pytest.approx(0.75)

    def test_explicit_timestamp(self, any_store):
        any_store.set_state("rpc-node", CircuitState.OPEN, 0.5, timestamp=1234)
        assert any_store.get_record("rpc-node").timestamp == 1234

    def test_half_open_resets_trials_only(self, any_store):
        any_store.increment_failure("rpc-node")
        any_store.set_state("rpc-node", CircuitState.HALF_OPEN)
        any_store.increment_half_open_trials("rpc-node")
        any_store.increment_half_open_trials("rpc-node")

        any_store.set_state("rpc-node", CircuitState.OPEN)
        any_store.set_state("rpc-node", CircuitState.HALF_OPEN)

        record = any_store.get_record("rpc-node")
        assert record.half_open_trial_count == 0
        assert record.failure_count == 1
        assert record.total_count == 1

    def test_increment_half_open_trials_returns_new_count(self, any_store):
        any_store.set_state("rpc-node", CircuitState.HALF_OPEN)

        assert [any_store.increment_half_open_trials("rpc-node") for _ in range(4)] == [1, 2, 3, 4]

    def test_recompute_failure_rate(self, any_store):
        for _ in range(3):
            any_store.increment_success("rpc-node")
        any_store.increment_failure("rpc-node")

        assert any_store.recompute_failure_rate("rpc-node") == pytest.approx(0.25)
        assert any_store.get_record("rpc-node").failure_rate == pytest.approx(0.25)

    def test_recompute_failure_rate_on_missing_record(self, any_store):
        assert any_store.recompute_failure_rate("unknown") == 0.0

    def test_list_all_remaining_time(self, any_store, clock):
        any_store.set_state("open-svc", CircuitState.OPEN, 1.0)
        any_store.increment_success("closed-svc")
        clock.advance(12000)

        statuses = any_store.list_all()

        assert statuses["open-svc"].state == CircuitState.OPEN
        assert statuses["open-svc"].remaining_time_ms == 18000
        assert statuses["closed-svc"].remaining_time_ms == 0

    def test_list_all_remaining_time_never_negative(self, any_store, clock):
        any_store.set_state("open-svc", CircuitState.OPEN, 1.0)
        clock.advance(90000)

        assert any_store.list_all()["open-svc"].remaining_time_ms == 0


class TestDurableStore:
    def test_unknown_state_text_reads_as_closed(self, store, test_engine):
        from sqlalchemy import text

        with test_engine.begin() as connection:
            connection.execute(
                text(
                    "INSERT INTO circuit_breaker (service_name, state, failure_rate, timestamp, "
                    "success_count, failure_count, total_count, half_open_trial_count) "
                    "VALUES ('legacy', 'closed-ish', 0, 0, 0, 0, 0, 0)"
                )
            )

        assert store.get_state("legacy") == CircuitState.CLOSED

    def test_generic_dialect_path(self, test_engine, clock):
        """Dialects without ON CONFLICT support use a read-modify-write session."""
        store = DurableCircuitStore(test_engine, clock=clock)
        store._insert = None

        store.increment_failure("rpc-node")
        store.increment_success("rpc-node")
        store.set_state("rpc-node", CircuitState.OPEN, 0.5)

        record = store.get_record("rpc-node")
        assert record.state == CircuitState.OPEN
        assert (record.success_count, record.failure_count, record.total_count) == (1, 1, 2)

    def test_increment_half_open_trials_on_missing_record(self, store):
        assert store.increment_half_open_trials("unknown") == 0
        assert store.get_record("unknown") is None

    def test_generic_dialect_half_open_trials(self, test_engine, clock):
        store = DurableCircuitStore(test_engine, clock=clock)
        store._insert = None
        store.set_state("rpc-node", CircuitState.HALF_OPEN)

        assert [store.increment_half_open_trials("rpc-node") for _ in range(3)] == [1, 2, 3]
        assert store.increment_half_open_trials("unknown") == 0

    def test_dialect_insert_selection(self, clock):
        engine = MagicMock()
        engine.dialect.name = "mysql"

        assert DurableCircuitStore(engine, clock=clock)._insert is None


class TestFallbackStore:
    def test_half_open_trials_counted_for_unseen_circuit(self, memory):
        assert [memory.increment_half_open_trials("rpc-node") for _ in range(4)] == [1, 2, 3, 4]

    def test_trial_count_does_not_leak_into_remaining_time(self, memory, clock):
        memory.set_state("rpc-node", CircuitState.HALF_OPEN)
        memory.increment_half_open_trials("rpc-node")
        memory.increment_half_open_trials("rpc-node")

        status = memory.list_all()["rpc-node"]
        assert status.remaining_time_ms == 0
        assert memory.get_record("rpc-node").half_open_trial_count == 2

    def test_get_record_returns_a_copy(self, memory):
        memory.increment_success("rpc-node")

        record = memory.get_record("rpc-node")
        record.success_count = 99

        assert memory.get_record("rpc-node").success_count == 1

    def test_sync_replaces_mirrored_records(self, memory):
        memory.increment_failure("rpc-node")

        memory.sync([
            CircuitRecord(
                service_name="rpc-node",
                state=CircuitState.OPEN,
                failure_rate=0.6,
                timestamp=42,
                success_count=2,
                failure_count=3,
                total_count=5,
            )
        ])

        record = memory.get_record("rpc-node")
        assert record.state == CircuitState.OPEN
        assert record.timestamp == 42
        assert (record.success_count, record.failure_count, record.total_count) == (2, 3, 5)
