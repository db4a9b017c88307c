"""Log shipper: wires the tailer, filters, classifier, batch store, and scheduler together."""

import os
import threading
import logging

from container_logger.batch_store import BatchStore
from container_logger.classifier import classify
from container_logger.config import Config
from container_logger.filters import should_keep, should_watch_container
from container_logger.metrics import MetricsCollector
from container_logger.naming import container_name_from_path
from container_logger.router import SinkRouter
from container_logger.scheduler import FlushScheduler
from container_logger.tailer import ContainerLogTailer

logger = logging.getLogger(__name__)


class LogShipper:
    """High-level daemon object: every tailed line flows through
    ``on_line`` into the batch store, and the scheduler flushes batches
    to the router's sinks."""

    def __init__(self, config: Config, router: SinkRouter, shutdown_event: threading.Event,
                 clock=None):
        self._config = config
        self._router = router
        self._shutdown = shutdown_event
        self._metrics = MetricsCollector()
        self._store = BatchStore(config.batch_size_threshold)
        self._scheduler = FlushScheduler(
            self._store,
            router,
            interval=config.batch_upload_seconds,
            shutdown_event=shutdown_event,
            metrics=self._metrics,
            workers=config.flush_workers,
            clock=clock,
        )
        self._tailer = ContainerLogTailer(
            config.log_files_directory,
            on_line=self.on_line,
            should_track=self.should_track,
            exclude_patterns=config.exclude_patterns,
        )

    @property
    def store(self) -> BatchStore:
        return self._store

    @property
    def scheduler(self) -> FlushScheduler:
        return self._scheduler

    @property
    def tailer(self) -> ContainerLogTailer:
        return self._tailer

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    def should_track(self, path: str) -> bool:
        """Apply the container allow-filter and bind the container's destination."""
        container_name = container_name_from_path(path)
        if not should_watch_container(container_name, self._config.watch_containers):
            logger.debug("Ignoring %s: container %s not watched", path, container_name)
            return False

        self._store.track(container_name)
        try:
            self._router.ensure_handle(container_name)
        except Exception as exc:
            # Retried by the next flush for this container
            logger.error("Could not bind destination for container %s: %s", container_name, exc)
        logger.info(
            "Tracking container %s in file %s", container_name, os.path.basename(path)
        )
        return True

    def on_line(self, path: str, line: str):
        """Filter, classify, and buffer one raw line from a container log file."""
        kept = should_keep(line, self._config.message_filters)
        self._metrics.record_line(kept)
        if not kept:
            return

        container_name = container_name_from_path(path)
        record = classify(container_name, line)
        if not self._store.append(container_name, record):
            self._metrics.record_rejected()

    def start(self):
        self._tailer.startup_scan()
        self._scheduler.start()

    def poll(self) -> int:
        return self._tailer.poll()

    def stop(self, timeout: float | None = None):
        """Stop accepting lines, flush every container once, and close resources."""
        timeout = self._config.shutdown_timeout_seconds if timeout is None else timeout
        try:
            results = self._scheduler.shutdown(timeout=timeout)
        finally:
            self._tailer.close_all()
            self._router.close()
        failed = [r.container_name for r in results if not r.ok]
        if failed:
            logger.error("Final flush failed for: %s", ", ".join(sorted(failed)))
        logger.info("Shipper metrics: %s", self._metrics.snapshot())
        return results
