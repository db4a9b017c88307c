"""ContainerLogTailer: discovers container log files and reads newly appended lines."""

import os
import glob
import threading
import logging

from watchdog.events import FileSystemEventHandler

logger = logging.getLogger(__name__)


class _TrackedFile:
    __slots__ = ("handle", "inode", "partial")

    def __init__(self, handle, inode: int):
        self.handle = handle
        self.inode = inode
        self.partial = ""


class ContainerLogTailer(FileSystemEventHandler):
    """Watchdog event handler that tails every ``*.log`` file under a directory.

    Files present at startup are read from their current end, so only lines
    written after the daemon started are shipped; files created later are
    read from the beginning. Files whose name contains one of the exclude
    patterns (e.g. ``kube-system``) are never tracked. Each complete line is
    delivered as ``on_line(path, line)``.

    Kubernetes exposes container logs as symlinks, and writes to a symlink
    target do not raise events on the link's directory, so ``poll()`` should
    also be called periodically.
    """

    def __init__(self, directory: str, on_line, should_track=None,
                 exclude_patterns=("kube-system",)):
        super().__init__()
        self._directory = os.path.abspath(directory)
        self._on_line = on_line
        self._should_track = should_track
        self._exclude = tuple(exclude_patterns)
        self._files: dict[str, _TrackedFile] = {}
        self._ignored: set[str] = set()
        self._lock = threading.RLock()

    @property
    def directory(self) -> str:
        return self._directory

    def tracked_paths(self) -> list[str]:
        with self._lock:
            return sorted(self._files)

    def is_candidate(self, path: str) -> bool:
        name = os.path.basename(path)
        if not name.endswith(".log"):
            return False
        return not any(pattern in name for pattern in self._exclude)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def startup_scan(self) -> int:
        """Track every existing log file from its current end. Returns files tracked."""
        pattern = os.path.join(self._directory, "**", "*.log")
        count = 0
        for path in sorted(glob.glob(pattern, recursive=True)):
            if self.track(path, from_start=False):
                count += 1
        logger.info("Startup scan of %s: tracking %d file(s)", self._directory, count)
        return count

    def track(self, path: str, from_start: bool = True) -> bool:
        """Start tailing a file. Tracking an already-tracked path is a no-op."""
        abs_path = os.path.abspath(path)
        with self._lock:
            if abs_path in self._files or abs_path in self._ignored:
                return False
            if not self.is_candidate(abs_path):
                return False
            if self._should_track is not None and not self._should_track(abs_path):
                self._ignored.add(abs_path)
                return False
            try:
                fh = open(abs_path, "r", encoding="utf-8", errors="replace")
            except OSError as e:
                logger.warning("Cannot open %s: %s", abs_path, e)
                return False
            if not from_start:
                fh.seek(0, os.SEEK_END)
            self._files[abs_path] = _TrackedFile(fh, os.fstat(fh.fileno()).st_ino)
            logger.info("Tracking file %s", os.path.basename(abs_path))
            return True

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _reopen(self, path: str, tracked: _TrackedFile):
        tracked.handle.close()
        tracked.handle = open(path, "r", encoding="utf-8", errors="replace")
        tracked.inode = os.fstat(tracked.handle.fileno()).st_ino
        tracked.partial = ""

    def _check_rotation(self, path: str, tracked: _TrackedFile) -> bool:
        """Reopen from the start on inode change or truncation.

        Returns False if the file is gone; its remaining lines are delivered
        and it is no longer tracked.
        """
        try:
            stat = os.stat(path)
        except FileNotFoundError:
            logger.info("File removed: %s", path)
            self._deliver(path, tracked, tracked.handle.read())
            if tracked.partial:
                self._deliver(path, tracked, "\n")
            self.untrack(path)
            return False

        if stat.st_ino != tracked.inode:
            logger.info("File rotated (inode changed): %s", path)
            # Ship whatever the old file still had
            self._deliver(path, tracked, tracked.handle.read())
            self._reopen(path, tracked)
        elif stat.st_size < tracked.handle.tell():
            logger.info("File truncated: %s", path)
            tracked.handle.seek(0)
            tracked.partial = ""
        return True

    def _deliver(self, path: str, tracked: _TrackedFile, data: str) -> int:
        if not data:
            return 0
        data = tracked.partial + data
        lines = data.split("\n")
        # If data doesn't end with \n, last element is a partial line
        tracked.partial = lines.pop()

        delivered = 0
        for line in lines:
            line = line.rstrip("\r")
            if not line:
                continue
            try:
                self._on_line(path, line)
            except Exception:
                logger.exception("Line handler failed for %s", path)
            delivered += 1
        return delivered

    def read_new_lines(self, path: str) -> int:
        """Read from the current position to EOF and deliver complete lines."""
        abs_path = os.path.abspath(path)
        with self._lock:
            tracked = self._files.get(abs_path)
            if tracked is None:
                return 0
            if not self._check_rotation(abs_path, tracked):
                return 0
            return self._deliver(abs_path, tracked, tracked.handle.read())

    def untrack(self, path: str) -> bool:
        """Stop tailing a file and close its handle. Returns False if it was not tracked."""
        abs_path = os.path.abspath(path)
        with self._lock:
            self._ignored.discard(abs_path)
            tracked = self._files.pop(abs_path, None)
            if tracked is None:
                return False
            try:
                tracked.handle.close()
            except OSError as e:
                logger.debug("Error closing log file: %s", e)
            logger.info("Stopped tracking file %s", os.path.basename(abs_path))
            return True

    def poll(self) -> int:
        """Read new lines from every tracked file. Returns lines delivered."""
        total = 0
        for path in self.tracked_paths():
            total += self.read_new_lines(path)
        with self._lock:
            self._ignored = {p for p in self._ignored if os.path.lexists(p)}
        return total

    # ------------------------------------------------------------------
    # Watchdog callbacks
    # ------------------------------------------------------------------

    def on_created(self, event):
        if event.is_directory:
            return
        if self.track(event.src_path, from_start=True):
            self.read_new_lines(event.src_path)

    def on_modified(self, event):
        if event.is_directory:
            return
        self.read_new_lines(event.src_path)

    def on_moved(self, event):
        if event.is_directory:
            return
        if self.track(event.dest_path, from_start=True):
            self.read_new_lines(event.dest_path)

    def on_deleted(self, event):
        if event.is_directory:
            return
        # Ships anything written before the unlink and untracks a vanished file
        self.read_new_lines(event.src_path)
        if not os.path.lexists(event.src_path):
            self.untrack(event.src_path)

    def close_all(self):
        """Close all open file handles."""
        with self._lock:
            for tracked in self._files.values():
                try:
                    tracked.handle.close()
                except OSError as e:
                    logger.debug("Error closing log file: %s", e)
            self._files.clear()
