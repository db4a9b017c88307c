"""Write targets for flushed batches: Azure append blobs and a local directory.

Both sinks name their destination with ``naming.destination_name`` on every
append, so a UTC date change between flushes moves a container to a new
blob / file without any extra bookkeeping by the caller.
"""

import os
import threading
import logging

from azure.core import MatchConditions
from azure.core.exceptions import ResourceExistsError, ResourceModifiedError
from azure.storage.blob import BlobServiceClient

from container_logger.naming import destination_name, utc_now

logger = logging.getLogger(__name__)

# Service limit for a single Append Block call
MAX_APPEND_BLOCK_BYTES = 4 * 1024 * 1024


class AzureBlobSink:
    """Appends batches to one append blob per container.

    Keeps a BlobClient (the destination handle) per container. Before every
    append the handle's bound ``blob_name`` is compared with the name that is
    expected right now; on mismatch a new handle is created and the append
    blob is created if it does not exist yet (rollover). If the rebind fails
    the old handle is kept and the error propagates, so the next flush retries.
    """

    name = "azure"

    def __init__(self, service_client: BlobServiceClient, container_name: str,
                 store_by_date: bool = False, timeout: int = 30, clock=None):
        self._service = service_client
        self._container_name = container_name
        self._container = service_client.get_container_client(container_name)
        self._store_by_date = store_by_date
        self._timeout = timeout
        self._clock = clock or utc_now
        self._handles: dict[str, object] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config) -> "AzureBlobSink":
        """Build a sink authenticated with the storage account shared key."""
        service = BlobServiceClient(
            account_url=config.account_url,
            credential={
                "account_name": config.storage_account_name,
                "account_key": config.storage_account_key,
            },
            connection_timeout=config.sink_timeout_seconds,
            read_timeout=config.sink_timeout_seconds,
        )
        return cls(
            service,
            config.storage_container_name,
            store_by_date=config.store_by_date,
            timeout=config.sink_timeout_seconds,
        )

    @property
    def container_name(self) -> str:
        return self._container_name

    def ensure_container(self) -> bool:
        """Create the storage container if missing. Returns True if it was created."""
        for container in self._service.list_containers(name_starts_with=self._container_name):
            if container.name == self._container_name:
                logger.info("Using existing storage container %s", self._container_name)
                return False
        try:
            self._service.create_container(self._container_name, timeout=self._timeout)
        except ResourceExistsError:
            return False
        logger.info("Created storage container %s", self._container_name)
        return True

    def bound_name(self, container_name: str) -> str | None:
        """Blob name the container's current handle points at, if any."""
        with self._lock:
            handle = self._handles.get(container_name)
        return handle.blob_name if handle is not None else None

    def ensure_handle(self, container_name: str, now=None):
        """Return a handle bound to the expected blob name, rebinding if stale."""
        expected = destination_name(container_name, now or self._clock(), self._store_by_date)
        with self._lock:
            current = self._handles.get(container_name)
        if current is not None and current.blob_name == expected:
            return current

        handle = self._container.get_blob_client(expected)
        try:
            handle.create_append_blob(
                match_condition=MatchConditions.IfMissing, timeout=self._timeout,
            )
        except (ResourceExistsError, ResourceModifiedError):
            pass

        if current is None:
            logger.info("Streaming container %s to blob %s", container_name, expected)
        else:
            logger.info("Cycling log file from %s to %s", current.blob_name, expected)
        with self._lock:
            self._handles[container_name] = handle
        return handle

    def append(self, container_name: str, content: str, now=None) -> tuple[str, int]:
        """Append content to the container's blob. Returns (blob name, bytes written)."""
        handle = self.ensure_handle(container_name, now)
        data = content.encode("utf-8")
        for start in range(0, len(data), MAX_APPEND_BLOCK_BYTES):
            block = data[start:start + MAX_APPEND_BLOCK_BYTES]
            handle.append_block(block, length=len(block), timeout=self._timeout)
        return handle.blob_name, len(data)

    def close(self):
        self._service.close()


class LocalFileSink:
    """Appends batches to ``<root>/<destination name>``, creating directories as needed."""

    name = "local"

    def __init__(self, root_dir: str, store_by_date: bool = False, clock=None):
        self._root = root_dir
        self._store_by_date = store_by_date
        self._clock = clock or utc_now
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_config(cls, config) -> "LocalFileSink":
        return cls(config.local_log_directory, store_by_date=config.store_by_date)

    def path_for(self, container_name: str, now=None) -> str:
        name = destination_name(container_name, now or self._clock(), self._store_by_date)
        return os.path.join(self._root, *name.split("/"))

    def _lock_for(self, container_name: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(container_name, threading.Lock())

    def append(self, container_name: str, content: str, now=None) -> tuple[str, int]:
        """Append content to the container's file. Returns (path, bytes written)."""
        path = self.path_for(container_name, now)
        data = content.encode("utf-8")
        with self._lock_for(container_name):
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "ab") as f:
                f.write(data)
        return path, len(data)

    def close(self):
        pass
