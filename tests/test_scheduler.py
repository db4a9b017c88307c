"""Tests for the FlushScheduler: timer, threshold, and shutdown flushes."""

import subprocess
import sys
import textwrap
import threading
import time
from concurrent.futures import wait
from datetime import datetime, timezone
from pathlib import Path

import pytest

from container_logger.batch_store import BatchStore
from container_logger.models import LogRecord
from container_logger.router import SinkRouter
from container_logger.scheduler import FlushScheduler
from container_logger.sinks import AzureBlobSink

from conftest import RecordingSink

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _record(container, i):
    return LogRecord(container, f"{container}/[info] : line-{i}")


def _make_scheduler(sink, threshold=100, interval=60.0, clock=None):
    store = BatchStore(threshold)
    shutdown = threading.Event()
    scheduler = FlushScheduler(
        store, SinkRouter([sink]), interval=interval, shutdown_event=shutdown, clock=clock,
    )
    return store, scheduler, shutdown


class TestFlushContainer:
    def test_flush_writes_joined_batch(self, recording_sink):
        store, scheduler, _ = _make_scheduler(recording_sink)
        store.append("c", _record("c", 0))
        store.append("c", _record("c", 1))

        result = scheduler.flush_container("c")

        assert result.ok
        assert recording_sink.writes == [("c", "c/[info] : line-0\nc/[info] : line-1\n")]
        assert store.pending_count("c") == 0
        scheduler.shutdown(timeout=1)

    def test_empty_container_is_not_written(self, recording_sink):
        store, scheduler, _ = _make_scheduler(recording_sink)
        store.track("c")
        assert scheduler.flush_container("c") is None
        assert recording_sink.writes == []
        scheduler.shutdown(timeout=1)

    def test_failed_flush_drops_batch(self):
        sink = RecordingSink(fail=True)
        store, scheduler, _ = _make_scheduler(sink)
        store.append("c", _record("c", 0))

        result = scheduler.flush_container("c")

        assert not result.ok
        assert store.pending_count("c") == 0
        assert scheduler.metrics.snapshot()["records_dropped"] == 1
        scheduler.shutdown(timeout=1)


class TestThresholdFlush:
    def test_threshold_flushes_inline(self, recording_sink):
        store, scheduler, _ = _make_scheduler(recording_sink, threshold=3)
        for i in range(3):
            store.append("c", _record("c", i))

        # Flushed before the third append returned
        assert len(recording_sink.writes) == 1
        assert store.pending_count("c") == 0
        assert scheduler.metrics.snapshot()["flush_triggers"]["size"] == 1
        scheduler.shutdown(timeout=1)

    def test_resident_batch_never_exceeds_threshold(self, recording_sink):
        store, scheduler, _ = _make_scheduler(recording_sink, threshold=5)
        for i in range(23):
            store.append("c", _record("c", i))
            assert store.pending_count("c") < 5

        assert len(recording_sink.writes) == 4
        scheduler.shutdown(timeout=1)


class TestTimerFlush:
    def test_tick_flushes_every_pending_container(self, recording_sink):
        store, scheduler, _ = _make_scheduler(recording_sink)
        store.append("a", _record("a", 0))
        store.append("b", _record("b", 0))
        store.track("idle")

        wait(scheduler.tick(), timeout=5)

        assert sorted(name for name, _ in recording_sink.writes) == ["a", "b"]
        scheduler.shutdown(timeout=1)

    def test_timer_thread_fires(self, recording_sink):
        store, scheduler, _ = _make_scheduler(recording_sink, interval=0.1)
        scheduler.start()
        store.append("c", _record("c", 0))

        for _ in range(50):
            if recording_sink.writes:
                break
            time.sleep(0.05)

        assert recording_sink.writes == [("c", "c/[info] : line-0\n")]
        scheduler.shutdown(timeout=1)

    def test_in_flight_container_is_skipped(self):
        release = threading.Event()
        sink = RecordingSink(delay=release)
        store, scheduler, _ = _make_scheduler(sink)
        store.append("c", _record("c", 0))
        first = scheduler.tick()
        for _ in range(100):
            if store.pending_count("c") == 0:
                break
            time.sleep(0.01)

        store.append("c", _record("c", 1))
        assert scheduler.tick() == []

        release.set()
        wait(first, timeout=5)
        wait(scheduler.tick(), timeout=5)

        assert [content for _, content in sink.writes] == [
            "c/[info] : line-0\n", "c/[info] : line-1\n",
        ]
        scheduler.shutdown(timeout=1)


class TestShutdown:
    def test_one_final_flush_per_container(self, recording_sink):
        store, scheduler, _ = _make_scheduler(recording_sink)
        scheduler.start()
        for i in range(3):
            store.append("a", _record("a", i))
        store.append("b", _record("b", 0))

        results = scheduler.shutdown(timeout=5)

        assert sorted(r.container_name for r in results) == ["a", "b"]
        assert all(r.trigger == "shutdown" for r in results)
        assert sorted(name for name, _ in recording_sink.writes) == ["a", "b"]
        assert store.pending_count() == 0

    def test_lines_after_shutdown_are_rejected(self, recording_sink):
        store, scheduler, shutdown = _make_scheduler(recording_sink)
        scheduler.shutdown(timeout=1)

        assert shutdown.is_set()
        assert store.append("c", _record("c", 0)) is False
        assert recording_sink.writes == []

    def test_shutdown_is_bounded_by_timeout(self):
        never = threading.Event()
        sink = RecordingSink(delay=never)
        store, scheduler, _ = _make_scheduler(sink)
        store.append("c", _record("c", 0))

        start = time.monotonic()
        results = scheduler.shutdown(timeout=0.3)

        assert time.monotonic() - start < 2
        assert results == []
        never.set()

    def test_hung_sink_does_not_delay_process_exit(self):
        script = textwrap.dedent(
            """
            import threading, time
            from container_logger.batch_store import BatchStore
            from container_logger.models import LogRecord
            from container_logger.router import SinkRouter
            from container_logger.scheduler import FlushScheduler

            class SlowSink:
                name = "slow"
                def append(self, container_name, content, now=None):
                    time.sleep(6)
                    return container_name, len(content)
                def close(self):
                    pass

            store = BatchStore(100)
            scheduler = FlushScheduler(
                store, SinkRouter([SlowSink()]), interval=60.0,
                shutdown_event=threading.Event(),
            )
            store.append("c", LogRecord("c", "c/[info] : line"))
            print(len(scheduler.shutdown(timeout=0.5)))
            """
        )
        start = time.monotonic()
        proc = subprocess.run(
            [sys.executable, "-c", script],
            cwd=PROJECT_ROOT, capture_output=True, text=True, timeout=20,
        )
        elapsed = time.monotonic() - start

        assert proc.returncode == 0, proc.stderr
        assert proc.stdout.strip() == "0"
        assert elapsed < 3


class TestRolloverThroughScheduler:
    def test_flush_after_midnight_goes_to_new_blob(self, blob_service, clock):
        sink = AzureBlobSink(blob_service, "akslogger", store_by_date=True, clock=clock)
        store, scheduler, _ = _make_scheduler(sink, clock=clock)

        store.append("c", _record("c", 0))
        scheduler.flush_container("c")
        clock.now = datetime(2024, 3, 6, 0, 0, 5, tzinfo=timezone.utc)
        store.append("c", _record("c", 1))
        scheduler.flush_container("c")
        store.append("c", _record("c", 2))
        scheduler.flush_container("c")

        names = [name for name, _ in blob_service.appends]
        assert names == ["2024-03-05/c.log", "2024-03-06/c.log", "2024-03-06/c.log"]
        assert blob_service.text("2024-03-06/c.log") == (
            "c/[info] : line-1\nc/[info] : line-2\n"
        )
        scheduler.shutdown(timeout=1)
