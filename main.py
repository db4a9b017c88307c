#!/usr/bin/env python3
"""Container Logger: entry point.

Tails container log files on the node, batches lines per container, and
flushes the batches to Azure append blobs and/or a local directory.
"""

import sys
import os
import signal
import logging
import threading

from watchdog.observers import Observer

from container_logger.config import ConfigError, load_config
from container_logger.router import SinkRouter
from container_logger.shipper import LogShipper

logger = logging.getLogger("container_logger")

POLL_INTERVAL_SECONDS = 1.0


def setup_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [LOGGER] %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    # The Azure SDK logs every HTTP request at INFO
    logging.getLogger("azure").setLevel(logging.WARNING)


def log_banner(config):
    logger.info("Container Logger starting")
    logger.info(
        "Config: destination=%s, store_by_date=%s, interval=%.0fs, threshold=%d, log_dir=%s",
        config.output_destination, config.store_by_date, config.batch_upload_seconds,
        config.batch_size_threshold, config.log_files_directory,
    )
    if config.uses_azure:
        logger.info(
            "Azure: account=%s, container=%s", config.storage_account_name,
            config.storage_container_name,
        )
    if config.uses_local:
        logger.info("Local: directory=%s", config.local_log_directory)
    logger.info(
        "Watch Containers: %s (%d)", ",".join(config.watch_containers), len(config.watch_containers),
    )
    logger.info(
        "Message Filters: %s (%d)", ",".join(config.message_filters), len(config.message_filters),
    )


def main() -> int:
    try:
        config = load_config()
    except ConfigError as exc:
        setup_logging()
        logger.error("Invalid configuration: %s", exc)
        return 2

    setup_logging(config.log_level)
    log_banner(config)

    shutdown_event = threading.Event()

    def handle_signal(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        shutdown_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    router = SinkRouter.from_config(config)
    if router.remote is not None:
        try:
            router.remote.ensure_container()
        except Exception:
            logger.exception("Failed to start: storage container check failed")
            return 1

    shipper = LogShipper(config, router, shutdown_event)
    shipper.start()

    observer = Observer()
    os.makedirs(config.log_files_directory, exist_ok=True)
    observer.schedule(shipper.tailer, config.log_files_directory, recursive=True)
    observer.start()
    logger.info("Online. Watching directory: %s", config.log_files_directory)

    while not shutdown_event.wait(timeout=POLL_INTERVAL_SECONDS):
        shipper.poll()

    logger.info("Shutting down...")
    observer.stop()
    observer.join(timeout=5)
    # Pick up anything written since the last poll before the final flush
    shipper.poll()

    try:
        shipper.stop()
    except Exception:
        logger.exception("Final flush failed")
        return 1

    logger.info("Container Logger stopped.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
