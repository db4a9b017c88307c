"""Metrics collector: thread-safe counters for line intake and batch flushing."""

import threading
import time
import logging

from container_logger.models import FlushResult

logger = logging.getLogger(__name__)


class MetricsCollector:
    """Collects and reports counters about lines received and batches flushed.

    Flush timings are kept as a running total and maximum, so memory use
    stays constant however long the daemon runs.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._lines_received: int = 0
        self._lines_filtered: int = 0
        self._lines_rejected: int = 0
        self._flushes: int = 0
        self._failed_flushes: int = 0
        self._records_written: int = 0
        self._records_dropped: int = 0
        self._bytes_written: int = 0
        self._flush_triggers: dict = {"timer": 0, "size": 0, "shutdown": 0}
        self._flush_time_total_ms: float = 0.0
        self._flush_time_max_ms: float = 0.0
        self._start_time = time.monotonic()

    def record_line(self, kept: bool) -> None:
        with self._lock:
            self._lines_received += 1
            if not kept:
                self._lines_filtered += 1

    def record_rejected(self) -> None:
        """A line arrived after the store was closed for shutdown."""
        with self._lock:
            self._lines_rejected += 1

    def record_flush(self, result: FlushResult, flush_time_ms: float) -> None:
        """Record the outcome of one container flush.

        A flush that failed on every sink counts its records as dropped; a
        partial failure still counts them as written.

        Args:
            result: The router's outcome for the flush, including its trigger
                ("timer", "size" or "shutdown") and any per-sink errors.
            flush_time_ms: Time taken to write the batch, in milliseconds.
        """
        with self._lock:
            self._flushes += 1
            self._flush_triggers[result.trigger] = self._flush_triggers.get(result.trigger, 0) + 1
            self._flush_time_total_ms += flush_time_ms
            self._flush_time_max_ms = max(self._flush_time_max_ms, flush_time_ms)
            self._bytes_written += result.bytes_written
            if result.ok:
                self._records_written += result.record_count
            else:
                self._failed_flushes += 1
                if result.bytes_written == 0:
                    self._records_dropped += result.record_count
                else:
                    self._records_written += result.record_count

    def snapshot(self) -> dict:
        """Return a point-in-time snapshot of all collected metrics."""
        with self._lock:
            avg_flush = self._flush_time_total_ms / self._flushes if self._flushes else 0.0
            return {
                "lines_received": self._lines_received,
                "lines_filtered": self._lines_filtered,
                "lines_rejected": self._lines_rejected,
                "flushes": self._flushes,
                "failed_flushes": self._failed_flushes,
                "records_written": self._records_written,
                "records_dropped": self._records_dropped,
                "bytes_written": self._bytes_written,
                "flush_triggers": dict(self._flush_triggers),
                "avg_flush_time_ms": avg_flush,
                "max_flush_time_ms": self._flush_time_max_ms,
                "uptime_seconds": time.monotonic() - self._start_time,
            }
