"""
Periodic address cluster sweep.

Runs ClusterDetector.detect_address_clusters on an interval in a daemon
thread. At most one sweep runs at a time; a trigger that arrives while a
sweep is in flight is skipped, not queued.

Sweep summaries and one alert per suspicious flag are published to a
bounded queue. When the queue is full the oldest message is dropped.
"""

from __future__ import annotations

import queue
import threading
from datetime import datetime
from typing import Optional, Any

from ..logger import get_logger
from ..services.base import ServiceContext
from ..services.cluster_detection import ClusterDetector, ClusterSweepResult

logger = get_logger(__name__)


class ClusterSweepWorker:
    """
    Interval scheduler around the cluster detector.

    Usage:
        worker = ClusterSweepWorker(context)
        worker.start()
        ...
        worker.stop()
    """

    def __init__(
        self,
        context: ServiceContext,
        detector: Optional[ClusterDetector] = None,
        interval_seconds: Optional[float] = None,
        alerts: Optional[queue.Queue] = None,
    ):
        settings = context.config.cluster
        self.detector = detector or ClusterDetector(context)
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else settings.interval_minutes * 60
        )
        self.alerts: queue.Queue = alerts if alerts is not None else queue.Queue(maxsize=settings.alert_queue_size)

        self._in_flight = threading.Lock()
        self._stop_event = threading.Event()
        self._counter_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

        self.runs = 0
        self.skipped_runs = 0
        self.failed_runs = 0
        self.dropped_alerts = 0
        self.last_run_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.last_result: Optional[ClusterSweepResult] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def in_flight(self) -> bool:
        return self._in_flight.locked()

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    def run_once(self, thresholds: Optional[dict[str, int]] = None) -> Optional[ClusterSweepResult]:
        """
        Run one sweep now.

        Returns None without sweeping if another sweep is in flight.
        Errors propagate to the caller; the interval loop catches them.
        """
        if not self._in_flight.acquire(blocking=False):
            self._count("skipped_runs")
            logger.info("Cluster sweep already in flight, skipping")
            return None

        try:
            result = self.detector.detect_address_clusters(thresholds)
            self._count("runs")
            self.last_run_at = result.run_at
            self.last_result = result
            self.last_error = None
            self._publish_result(result)
            return result
        finally:
            self._in_flight.release()

    def _count(self, counter: str) -> None:
        # Bumped from caller threads as well as the loop thread.
        with self._counter_lock:
            setattr(self, counter, getattr(self, counter) + 1)

    def _publish_result(self, result: ClusterSweepResult) -> None:
        for flag in result.suspicious:
            self.publish({
                "type": "cluster_alert",
                "cluster_id": flag.cluster_id,
                "risk_level": flag.risk_level.value,
                "risk_score": flag.risk_score,
                "voter_count": flag.voter_count,
                "normalized_address": flag.normalized_address,
            })
        self.publish({
            "type": "sweep_complete",
            "run_at": result.run_at.isoformat(),
            "clusters_found": result.clusters_found,
            "flags_created": result.flags_created,
            "new_flags": result.new_flags,
            "suspicious": len(result.suspicious),
        })

    def publish(self, message: dict[str, Any]) -> None:
        """Put a message on the alert queue, dropping the oldest when full."""
        while True:
            try:
                self.alerts.put_nowait(message)
                return
            except queue.Full:
                try:
                    self.alerts.get_nowait()
                    self._count("dropped_alerts")
                except queue.Empty:
                    pass

    def drain_alerts(self) -> list[dict[str, Any]]:
        messages = []
        while True:
            try:
                messages.append(self.alerts.get_nowait())
            except queue.Empty:
                return messages

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, run_immediately: bool = True) -> None:
        """Start the interval loop in a daemon thread."""
        if self.running:
            logger.warning("Cluster sweep worker already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            args=(run_immediately,),
            name="cluster-sweep",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Cluster sweep worker started (interval={self.interval_seconds}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the loop to exit and wait for the current sweep to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Cluster sweep worker stopped")

    def _loop(self, run_immediately: bool) -> None:
        if not run_immediately and self._stop_event.wait(self.interval_seconds):
            return

        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as e:
                self._count("failed_runs")
                self.last_error = str(e)
                logger.error(f"Cluster sweep failed: {e}")

            if self._stop_event.wait(self.interval_seconds):
                return

    def status(self) -> dict[str, Any]:
        with self._counter_lock:
            counters = {
                "runs": self.runs,
                "skipped_runs": self.skipped_runs,
                "failed_runs": self.failed_runs,
                "dropped_alerts": self.dropped_alerts,
            }
        return {
            "running": self.running,
            "in_flight": self.in_flight,
            "interval_seconds": self.interval_seconds,
            **counters,
            "pending_alerts": self.alerts.qsize(),
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_error": self.last_error,
        }
