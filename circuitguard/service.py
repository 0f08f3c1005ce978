"""
Circuit breaker service: the public entry point.

One instance owns the connection state, the in-memory mirror and the status
refresher; everything is wired through the constructor. Nothing starts on
import. The host process calls start()/stop() (or uses the instance as a
context manager) to run the background refresh.

Usage:
    service = CircuitBreakerService.from_settings()
    service.start()

    decision = service.should_allow_request("payments-api")
    if not decision.allowed:
        return JSONResponse({"error": "Service temporarily unavailable"},
                            status_code=503, headers=decision.headers())
    try:
        result = call_payments_api()
        service.record_request_result("payments-api", True)
    except PaymentsError:
        service.record_request_result("payments-api", False)
        raise
"""

from threading import Lock
from typing import Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.engine import Engine

from circuitguard.core.circuit_breaker import CircuitBreakerEngine, CircuitDecision, validate_circuit_name
from circuitguard.core.circuit_store import DurableCircuitStore
from circuitguard.core.config import Settings, settings as default_settings
from circuitguard.core.connection_health import ConnectionHealthTracker, ConnectionStatus
from circuitguard.core.errors import capture_exception, init_sentry
from circuitguard.core.events import (
    EventReporter,
    LoggingEventReporter,
    NullEventReporter,
    WebhookEventReporter,
)
from circuitguard.core.fallback_store import FallbackMemoryStore
from circuitguard.core.logging_config import get_logger
from circuitguard.core.refresher import BackgroundRefresher
from circuitguard.core.typing import Clock, epoch_ms
from circuitguard.db import build_engine
from circuitguard.models.circuit_breaker_state import CircuitState, CircuitStatus

logger = get_logger(__name__)

__all__ = ["CircuitBreakerService"]


class CircuitBreakerService:
    def __init__(
        self,
        engine: Optional[Engine] = None,
        reporter: Optional[EventReporter] = None,
        config: Optional[Settings] = None,
        clock: Clock = epoch_ms,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        config = config or default_settings
        self.config = config
        self.engine = engine if engine is not None else build_engine(config=config)
        self.reporter = reporter or NullEventReporter()

        self.store = DurableCircuitStore(
            self.engine,
            recovery_timeout_ms=config.CIRCUIT_RECOVERY_TIMEOUT_MS,
            clock=clock,
        )
        self.connection = ConnectionHealthTracker(
            self.store,
            reporter=self.reporter,
            cooldown_ms=config.STORAGE_RECONNECT_COOLDOWN_MS,
            degraded_report_every=config.STORAGE_DEGRADED_REPORT_EVERY,
            clock=clock,
        )
        self.fallback = FallbackMemoryStore(
            recovery_timeout_ms=config.CIRCUIT_RECOVERY_TIMEOUT_MS,
            clock=clock,
        )
        self.breaker = CircuitBreakerEngine(
            self.store,
            self.fallback,
            self.connection,
            reporter=self.reporter,
            failure_threshold=config.CIRCUIT_FAILURE_THRESHOLD,
            recovery_timeout_ms=config.CIRCUIT_RECOVERY_TIMEOUT_MS,
            half_open_max_trials=config.CIRCUIT_HALF_OPEN_MAX_TRIALS,
            half_open_timeout_ms=config.CIRCUIT_HALF_OPEN_TIMEOUT_MS,
            clock=clock,
        )
        self.refresher = BackgroundRefresher(
            self.breaker.get_all_statuses,
            interval_seconds=config.STATUS_REFRESH_INTERVAL_SECONDS,
            scheduler=scheduler,
        )

        # Last decision per circuit, served if the engine itself fails
        self._last_decisions: Dict[str, CircuitDecision] = {}
        self._decisions_lock = Lock()

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None, **kwargs) -> "CircuitBreakerService":
        """Build a service with the reporter and error tracking the settings ask for."""
        config = config or default_settings

        if config.SENTRY_DSN:
            init_sentry(config.SENTRY_DSN, environment=config.ENVIRONMENT)

        reporter: EventReporter
        if config.SECURITY_EVENT_WEBHOOK_URL:
            reporter = WebhookEventReporter(
                config.SECURITY_EVENT_WEBHOOK_URL,
                environment=config.ENVIRONMENT,
                timeout=config.SECURITY_EVENT_WEBHOOK_TIMEOUT,
            )
        else:
            reporter = LoggingEventReporter()

        kwargs.setdefault("reporter", reporter)
        return cls(config=config, **kwargs)

    def should_allow_request(self, name: str) -> CircuitDecision:
        """
        Decide whether a call to `name` may proceed.

        Raises InvalidCircuitNameError for an empty or malformed name. Any
        other internal failure yields the last decision for the circuit, or
        an allow when there is none.
        """
        validate_circuit_name(name)
        try:
            decision = self.breaker.should_allow(name)
        except Exception as e:
            capture_exception(e, context={"service_name": name, "action": "should_allow_request"})
            with self._decisions_lock:
                cached = self._last_decisions.get(name)
            return cached or CircuitDecision(allowed=True, state=CircuitState.CLOSED)

        with self._decisions_lock:
            self._last_decisions[name] = decision
        return decision

    def record_request_result(self, name: str, success: bool) -> None:
        """Report the outcome of a call to `name`. Never raises except for an invalid name."""
        validate_circuit_name(name)
        try:
            self.breaker.record_result(name, success)
        except Exception as e:
            capture_exception(
                e,
                context={"service_name": name, "success": success, "action": "record_request_result"},
            )

    def get_all_circuit_statuses(self) -> Dict[str, CircuitStatus]:
        try:
            return self.breaker.get_all_statuses()
        except Exception as e:
            capture_exception(e, context={"action": "get_all_circuit_statuses"})
            return self.refresher.latest()

    def get_cached_statuses(self) -> Dict[str, CircuitStatus]:
        """Snapshot from the most recent background refresh."""
        return self.refresher.latest()

    def force_reconnect(self) -> bool:
        return self.connection.force_reconnect()

    def get_connection_status(self) -> ConnectionStatus:
        return self.connection.status()

    def start(self) -> None:
        """Probe the durable store once and start the background refresh."""
        connected = self.connection.ensure_connection()
        self.refresher.start()
        logger.info("Circuit breaker service started", durable_store_connected=connected)

    def stop(self) -> None:
        self.refresher.stop()
        logger.info("Circuit breaker service stopped")

    def __enter__(self) -> "CircuitBreakerService":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
