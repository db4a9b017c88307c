"""Batch store: per-container accumulation of formatted log records."""

import threading
import logging

from container_logger.models import LogRecord

logger = logging.getLogger(__name__)


class BatchStore:
    """Thread-safe map of container name to an ordered batch of LogRecords.

    Draining swaps the container's list for a fresh one under the lock, so a
    record appended while a flush is writing lands in the next batch. When a
    container's batch reaches ``threshold`` records the ``on_threshold``
    callback is invoked with the container name before ``append`` returns.
    The callback always runs OUTSIDE the lock so that a slow sink never
    blocks producers for other containers.
    """

    def __init__(self, threshold: int, on_threshold=None):
        self._threshold = threshold
        self._on_threshold = on_threshold
        self._batches: dict[str, list[LogRecord]] = {}
        self._lock = threading.Lock()
        self._closed = False
        self._appended = 0
        self._drained = 0
        self._rejected = 0

    @property
    def threshold(self) -> int:
        return self._threshold

    def set_threshold_callback(self, on_threshold):
        self._on_threshold = on_threshold

    # Public API

    def track(self, container_name: str):
        """Register a container so timer flushes visit it before its first line."""
        with self._lock:
            self._batches.setdefault(container_name, [])

    def append(self, container_name: str, record: LogRecord) -> bool:
        """Append a record to the container's batch.

        When the batch reaches the threshold the callback runs on the
        calling thread, after the store lock is released.

        Args:
            container_name: Container the record belongs to.
            record: Formatted record to buffer.

        Returns:
            False if the store is closed for shutdown, True otherwise.
        """
        with self._lock:
            if self._closed:
                self._rejected += 1
                return False
            batch = self._batches.setdefault(container_name, [])
            batch.append(record)
            self._appended += 1
            reached = len(batch) >= self._threshold

        if reached and self._on_threshold is not None:
            logger.info(
                "Batch for %s reached %d records, flushing early",
                container_name, self._threshold,
            )
            self._on_threshold(container_name)
        return True

    def drain(self, container_name: str) -> list[LogRecord]:
        """Return and clear the container's batch in one atomic step."""
        with self._lock:
            batch = self._batches.get(container_name)
            if not batch:
                return []
            self._batches[container_name] = []
            self._drained += len(batch)
            return batch

    def drain_all(self) -> dict[str, list[LogRecord]]:
        """Drain every known container. Containers with empty batches are omitted."""
        with self._lock:
            drained = {}
            for name, batch in self._batches.items():
                if batch:
                    drained[name] = batch
                    self._batches[name] = []
                    self._drained += len(batch)
            return drained

    def close(self):
        """Reject further appends; already-resident records can still be drained."""
        with self._lock:
            self._closed = True

    def containers(self) -> list[str]:
        with self._lock:
            return list(self._batches)

    def pending_count(self, container_name: str | None = None) -> int:
        """Records waiting in one container's batch, or across all containers."""
        with self._lock:
            if container_name is not None:
                return len(self._batches.get(container_name, ()))
            return sum(len(b) for b in self._batches.values())

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    @property
    def appended_count(self) -> int:
        with self._lock:
            return self._appended

    @property
    def drained_count(self) -> int:
        with self._lock:
            return self._drained

    @property
    def rejected_count(self) -> int:
        with self._lock:
            return self._rejected
