"""
Periodic refresh of circuit status snapshots.

Runs one interval job on an APScheduler BackgroundScheduler. The refresher
creates and shuts down its own scheduler unless the host passes one in; a
host scheduler only ever gets the refresh job added and removed.

Nothing starts implicitly: the hosting process calls start() and stop(),
normally through CircuitBreakerService.

Usage:
    refresher = BackgroundRefresher(engine.get_all_statuses, interval_seconds=60)
    refresher.start()
    ...
    refresher.latest()  # last snapshot, e.g. for a dashboard
    refresher.stop()
"""

from threading import Lock
from typing import Callable, Dict, Optional

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from circuitguard.models.circuit_breaker_state import CircuitStatus

logger = structlog.get_logger(__name__)

__all__ = ["BackgroundRefresher"]

JOB_ID = "job_refresh_circuit_statuses"


class BackgroundRefresher:
    def __init__(
        self,
        fetch: Callable[[], Dict[str, CircuitStatus]],
        interval_seconds: float = 60,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        self.fetch = fetch
        self.interval_seconds = interval_seconds
        self._scheduler = scheduler
        # An injected scheduler belongs to the host: only our job is added or removed
        self._owns_scheduler = scheduler is None
        self._snapshot: Dict[str, CircuitStatus] = {}
        self._snapshot_lock = Lock()
        self._lock = Lock()

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running and self._has_job()

    def _has_job(self) -> bool:
        return self._scheduler is not None and self._scheduler.get_job(JOB_ID) is not None

    def refresh(self) -> Dict[str, CircuitStatus]:
        """Fetch and cache one snapshot. Errors are logged; the previous snapshot is kept."""
        try:
            snapshot = self.fetch()
        except Exception as e:
            logger.error("Error refreshing circuit states", error=str(e))
            return self.latest()

        with self._snapshot_lock:
            self._snapshot = dict(snapshot)
        logger.debug("Circuit states refreshed", circuits=len(snapshot))
        return dict(snapshot)

    def latest(self) -> Dict[str, CircuitStatus]:
        with self._snapshot_lock:
            return dict(self._snapshot)

    def start(self) -> None:
        with self._lock:
            if self._scheduler is None:
                self._scheduler = BackgroundScheduler(daemon=True)
                self._owns_scheduler = True

            if not self._has_job():
                # One refresh at a time; missed runs collapse into one
                self._scheduler.add_job(
                    self.refresh,
                    IntervalTrigger(seconds=self.interval_seconds),
                    id=JOB_ID,
                    max_instances=1,
                    coalesce=True,
                    replace_existing=True,
                )
            elif self._scheduler.running:
                return

            if not self._scheduler.running:
                self._scheduler.start()
            logger.info(
                "Circuit status refresher started",
                interval_seconds=self.interval_seconds,
                shared_scheduler=not self._owns_scheduler,
            )

    def stop(self) -> None:
        with self._lock:
            if not self._has_job():
                return

            if self._owns_scheduler:
                self._scheduler.shutdown(wait=False)
                # A shut-down scheduler cannot be restarted
                self._scheduler = None
            else:
                self._scheduler.remove_job(JOB_ID)
            logger.info("Circuit status refresher stopped")
