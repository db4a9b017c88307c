"""Sink router: fans a flushed batch out to every configured sink."""

import logging

from container_logger.config import Config
from container_logger.models import FlushResult, LogRecord
from container_logger.sinks import AzureBlobSink, LocalFileSink

logger = logging.getLogger(__name__)


def join_records(records: list[LogRecord]) -> str:
    """Newline-join record contents and add one trailing newline."""
    return "\n".join(r.content for r in records) + "\n"


class SinkRouter:
    """Writes one joined payload per sink per flush.

    Sinks are independent: a failure on one is logged, recorded in the
    returned FlushResult, and does not stop the others. Failed batches are
    not retried.
    """

    def __init__(self, sinks: list):
        if not sinks:
            raise ValueError("SinkRouter needs at least one sink")
        self._sinks = list(sinks)

    @classmethod
    def from_config(cls, config: Config) -> "SinkRouter":
        sinks = []
        if config.uses_azure:
            sinks.append(AzureBlobSink.from_config(config))
        if config.uses_local:
            sinks.append(LocalFileSink.from_config(config))
        return cls(sinks)

    @property
    def sinks(self) -> list:
        return list(self._sinks)

    @property
    def remote(self) -> AzureBlobSink | None:
        for sink in self._sinks:
            if isinstance(sink, AzureBlobSink):
                return sink
        return None

    def ensure_handle(self, container_name: str):
        """Bind the remote handle for a newly tracked container. Returns None without a remote sink."""
        remote = self.remote
        if remote is None:
            return None
        return remote.ensure_handle(container_name)

    def write_batch(self, container_name: str, records: list[LogRecord],
                    now=None, trigger: str = "timer") -> FlushResult:
        """Write one joined payload for a container's batch to every sink.

        Args:
            container_name: Container whose batch is being flushed.
            records: Records in arrival order; an empty list writes nothing.
            now: Time used to pick the date-partitioned destination.
            trigger: What caused the flush: "timer", "size" or "shutdown".

        Returns:
            FlushResult with the destinations written, total bytes, and an
            error message per failed sink.
        """
        result = FlushResult(container_name, len(records), trigger=trigger)
        if not records:
            return result

        content = join_records(records)
        destinations = []
        for sink in self._sinks:
            try:
                destination, written = sink.append(container_name, content, now)
            except Exception as exc:
                logger.error(
                    "Failed to write %d records for container %s to %s sink: %s",
                    len(records), container_name, sink.name, exc,
                )
                result.sink_errors[sink.name] = str(exc)
                continue
            destinations.append(destination)
            result.bytes_written += written

        result.destination = ", ".join(destinations)
        return result

    def close(self):
        for sink in self._sinks:
            try:
                sink.close()
            except Exception:
                logger.exception("Failed to close %s sink", sink.name)
