import queue
import threading
import time

from rollguard.services.cluster_detection import ClusterDetector
from rollguard.workers import ClusterSweepWorker


class BlockingDetector:
    """Detector whose sweep waits until released."""

    def __init__(self, real):
        self.real = real
        self.entered = threading.Event()
        self.release = threading.Event()

    def detect_address_clusters(self, thresholds=None):
        self.entered.set()
        self.release.wait(5)
        return self.real.detect_address_clusters(thresholds)


def add_suspicious_cluster(add_voter):
    for i in range(25):
        add_voter(surname="kumar")


def test_run_once_publishes_alerts(context, add_voter):
    add_suspicious_cluster(add_voter)
    worker = ClusterSweepWorker(context)

    result = worker.run_once()
    messages = worker.drain_alerts()

    assert result.flags_created == 1
    assert [m["type"] for m in messages] == ["cluster_alert", "sweep_complete"]
    assert worker.status()["runs"] == 1


def test_concurrent_run_is_skipped(context, add_voter):
    add_suspicious_cluster(add_voter)
    blocking = BlockingDetector(ClusterDetector(context))
    worker = ClusterSweepWorker(context, detector=blocking)

    results = []
    thread = threading.Thread(target=lambda: results.append(worker.run_once()))
    thread.start()
    assert blocking.entered.wait(5)

    assert worker.in_flight
    assert worker.run_once() is None

    blocking.release.set()
    thread.join(5)
    assert results[0] is not None
    assert worker.skipped_runs == 1
    assert not worker.in_flight


def test_full_queue_drops_oldest_message(context):
    worker = ClusterSweepWorker(context, alerts=queue.Queue(maxsize=2))

    for i in range(3):
        worker.publish({"type": "test", "n": i})

    assert [m["n"] for m in worker.drain_alerts()] == [1, 2]
    assert worker.dropped_alerts == 1


def test_start_and_stop(context, add_voter):
    add_suspicious_cluster(add_voter)
    worker = ClusterSweepWorker(context, interval_seconds=60)

    worker.start()
    try:
        message = worker.alerts.get(timeout=5)
    finally:
        worker.stop(timeout=5)

    assert message["type"] == "cluster_alert"
    assert not worker.running
    assert worker.runs == 1


def test_loop_survives_failing_sweep(context):
    class Failing:
        def detect_address_clusters(self, thresholds=None):
            raise RuntimeError("store unavailable")

    worker = ClusterSweepWorker(context, detector=Failing(), interval_seconds=60)
    worker.start()
    deadline = time.monotonic() + 5
    while not worker.failed_runs and time.monotonic() < deadline:
        time.sleep(0.01)
    worker.stop(timeout=5)

    assert worker.failed_runs == 1
    assert worker.last_error == "store unavailable"


def test_counters_are_exact_under_concurrent_callers(context, add_voter):
    add_suspicious_cluster(add_voter)
    blocking = BlockingDetector(ClusterDetector(context))
    worker = ClusterSweepWorker(context, detector=blocking, alerts=queue.Queue(maxsize=4))

    sweep = threading.Thread(target=worker.run_once)
    sweep.start()
    assert blocking.entered.wait(5)

    def hammer():
        for i in range(200):
            worker.run_once()
            worker.publish({"type": "test", "n": i})

    callers = [threading.Thread(target=hammer) for _ in range(8)]
    for thread in callers:
        thread.start()
    for thread in callers:
        thread.join(10)
    blocking.release.set()
    sweep.join(5)

    status = worker.status()
    published = 8 * 200 + 2
    assert status["runs"] == 1
    assert status["skipped_runs"] == 8 * 200
    assert status["dropped_alerts"] == published - status["pending_alerts"]
