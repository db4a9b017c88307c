"""Flush scheduler: timer, threshold, and shutdown triggered batch flushes."""

import queue
import threading
import time
import logging
from concurrent.futures import Future, wait

from container_logger.batch_store import BatchStore
from container_logger.metrics import MetricsCollector
from container_logger.models import FlushResult
from container_logger.naming import utc_now
from container_logger.router import SinkRouter

logger = logging.getLogger(__name__)


class FlushScheduler:
    """Drives flushes of a BatchStore into a SinkRouter.

    One timer thread fires every ``interval`` seconds and hands each
    container with pending records to a pool of worker threads, so a hung
    sink call for one container does not hold up the others. Every write
    for a container happens under that container's flush lock: flushes for
    the same container never overlap and its appends reach the sinks in
    order. Workers are daemon threads, so a sink call still running when
    the shutdown deadline passes does not keep the process alive.
    """

    def __init__(
        self,
        store: BatchStore,
        router: SinkRouter,
        interval: float,
        shutdown_event: threading.Event,
        metrics: MetricsCollector | None = None,
        workers: int = 4,
        clock=None,
    ):
        self._store = store
        self._router = router
        self._interval = interval
        self._shutdown = shutdown_event
        self._metrics = metrics or MetricsCollector()
        self._clock = clock or utc_now

        self._flush_locks: dict[str, threading.Lock] = {}
        self._in_flight: dict[str, Future] = {}
        self._guard = threading.Lock()
        self._tasks: queue.Queue = queue.Queue()
        self._workers = [
            threading.Thread(target=self._work, name=f"flush-{i}", daemon=True)
            for i in range(workers)
        ]
        for worker in self._workers:
            worker.start()
        self._timer_thread = threading.Thread(
            target=self._flush_timer, name="flush-timer", daemon=True
        )

        store.set_threshold_callback(self._on_threshold)
    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    def start(self):
        self._timer_thread.start()
        logger.info("Flush timer started, interval %.1fs", self._interval)

    # ------------------------------------------------------------------
    # Flush operations
    # ------------------------------------------------------------------

    def flush_container(self, container_name: str, trigger: str = "timer") -> FlushResult | None:
        """Drain and write one container's batch. Returns None if it was empty."""
        with self._lock_for(container_name):
            records = self._store.drain(container_name)
            if not records:
                return None
            return self._write(container_name, records, trigger)

    def tick(self) -> list:
        """Submit a flush for every container with pending records.

        Containers whose previous flush has not finished are skipped; their
        records stay resident for the next tick.
        """
        futures = []
        for name in self._store.containers():
            if self._store.pending_count(name) == 0:
                continue
            with self._guard:
                if name in self._in_flight:
                    logger.warning("Flush for %s still in progress, skipping this tick", name)
                    continue
                future = self._submit(self._timer_flush, name)
                self._in_flight[name] = future
            futures.append(future)
        return futures

    def shutdown(self, timeout: float = 30.0) -> list[FlushResult]:
        """Stop the timer and perform one final flush of every container.

        Lines appended after this call starts are rejected. A write still
        running at the deadline is abandoned on its daemon worker and does
        not delay process exit.

        Args:
            timeout: Total seconds to wait for in-flight and final writes
                to settle.

        Returns:
            FlushResults of the final flushes that finished in time, one per
            container that had pending records.
        """
        deadline = time.monotonic() + timeout
        self._shutdown.set()
        if self._timer_thread.is_alive():
            self._timer_thread.join(timeout=max(0.0, deadline - time.monotonic()))

        self._store.close()

        with self._guard:
            pending = list(self._in_flight.values())
        if pending:
            logger.info("Waiting for %d in-flight flush(es)", len(pending))
            wait(pending, timeout=max(0.0, deadline - time.monotonic()))

        batches = self._store.drain_all()
        logger.info(
            "Final flush of %d container(s), %d record(s)",
            len(batches), sum(len(b) for b in batches.values()),
        )
        futures = {
            self._submit(self._locked_write, name, records, "shutdown"): name
            for name, records in batches.items()
        }
        done, not_done = wait(futures, timeout=max(0.0, deadline - time.monotonic()))

        results = []
        for future in done:
            results.append(future.result())
        for future in not_done:
            logger.error(
                "Final flush for container %s did not finish within %.1fs",
                futures[future], timeout,
            )
            future.cancel()
        for _ in self._workers:
            self._tasks.put(None)
        return results

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _submit(self, fn, *args) -> Future:
        future: Future = Future()
        self._tasks.put((future, fn, args))
        return future

    def _work(self):
        """Worker thread: run queued flushes until a None sentinel arrives."""
        while True:
            item = self._tasks.get()
            if item is None:
                return
            future, fn, args = item
            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = fn(*args)
            except BaseException as exc:
                future.set_exception(exc)
            else:
                future.set_result(result)

    def _lock_for(self, container_name: str) -> threading.Lock:
        with self._guard:
            return self._flush_locks.setdefault(container_name, threading.Lock())

    def _flush_timer(self):
        """Background thread that fires a tick every interval until shutdown."""
        while not self._shutdown.wait(timeout=self._interval):
            self.tick()

    def _timer_flush(self, container_name: str) -> FlushResult | None:
        try:
            return self.flush_container(container_name, trigger="timer")
        except Exception:
            logger.exception("Timer flush failed for container %s", container_name)
            return None
        finally:
            with self._guard:
                self._in_flight.pop(container_name, None)

    def _on_threshold(self, container_name: str):
        self.flush_container(container_name, trigger="size")

    def _locked_write(self, container_name: str, records, trigger: str) -> FlushResult:
        with self._lock_for(container_name):
            return self._write(container_name, records, trigger)

    def _write(self, container_name: str, records, trigger: str) -> FlushResult:
        start = time.monotonic()
        result = self._router.write_batch(
            container_name, records, now=self._clock(), trigger=trigger
        )
        elapsed_ms = (time.monotonic() - start) * 1000
        self._metrics.record_flush(result, elapsed_ms)

        if result.ok:
            logger.info(
                "Flushed %d record(s) for %s to %s (%s, %.0f ms)",
                result.record_count, container_name, result.destination, trigger, elapsed_ms,
            )
        else:
            # Records are not requeued; a failed sink loses this batch.
            logger.error(
                "Flush for %s failed on sink(s) %s, %d record(s) not delivered there",
                container_name, ", ".join(sorted(result.sink_errors)), result.record_count,
            )
        return result
