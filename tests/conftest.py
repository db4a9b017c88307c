"""Shared pytest fixtures: an in-memory Azure blob service and a settable clock."""

from datetime import datetime, timezone

import pytest
from azure.core import MatchConditions
from azure.core.exceptions import ResourceExistsError

from container_logger.config import Config


class FakeContainerInfo:
    def __init__(self, name):
        self.name = name


class FakeBlobClient:
    def __init__(self, service, blob_name):
        self._service = service
        self.blob_name = blob_name

    def create_append_blob(self, match_condition=None, **kwargs):
        if self._service.fail_create:
            raise RuntimeError("create failed")
        if self.blob_name in self._service.blobs:
            if match_condition == MatchConditions.IfMissing:
                raise ResourceExistsError("BlobAlreadyExists")
        self._service.blobs[self.blob_name] = b""
        self._service.created.append(self.blob_name)

    def append_block(self, data, length=None, **kwargs):
        if self._service.fail_append:
            raise RuntimeError("append failed")
        self._service.appends.append((self.blob_name, bytes(data)))
        self._service.blobs[self.blob_name] = self._service.blobs.get(self.blob_name, b"") + data


class FakeContainerClient:
    def __init__(self, service):
        self._service = service

    def get_blob_client(self, blob):
        return FakeBlobClient(self._service, blob)


class FakeBlobService:
    """Records every create / append made through it."""

    def __init__(self, containers=()):
        self.containers = list(containers)
        self.blobs: dict[str, bytes] = {}
        self.created: list[str] = []
        self.appends: list[tuple[str, bytes]] = []
        self.fail_create = False
        self.fail_append = False
        self.closed = False

    def list_containers(self, name_starts_with=None, **kwargs):
        return [
            FakeContainerInfo(n) for n in self.containers
            if name_starts_with is None or n.startswith(name_starts_with)
        ]

    def create_container(self, name, **kwargs):
        if name in self.containers:
            raise ResourceExistsError("ContainerAlreadyExists")
        self.containers.append(name)

    def get_container_client(self, name):
        return FakeContainerClient(self)

    def close(self):
        self.closed = True

    def text(self, blob_name) -> str:
        return self.blobs[blob_name].decode("utf-8")


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingSink:
    """Sink that keeps (container, content) pairs in memory."""

    name = "recording"

    def __init__(self, fail=False, delay=None):
        self.writes: list[tuple[str, str]] = []
        self.fail = fail
        self.delay = delay
        self.closed = False

    def append(self, container_name, content, now=None):
        if self.delay is not None:
            self.delay.wait(timeout=5)
        if self.fail:
            raise OSError("disk full")
        self.writes.append((container_name, content))
        return f"{container_name}.log", len(content.encode("utf-8"))

    def close(self):
        self.closed = True


@pytest.fixture
def blob_service():
    return FakeBlobService(containers=["akslogger"])


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 5, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def local_config(tmp_path):
    """Config for a LOCAL-only daemon rooted in tmp_path."""
    return Config(
        output_destination="LOCAL",
        local_log_directory=str(tmp_path / "out"),
        log_files_directory=str(tmp_path / "containers"),
        batch_upload_seconds=60.0,
        batch_size_threshold=1000,
    )
