"""Container identity and destination (blob / file) naming."""

import os
from datetime import datetime, timezone


def container_name_from_path(path: str) -> str:
    """Container name is the text before the first underscore of the file's base name.

    Kubernetes names container logs ``<pod>_<namespace>_<container>-<id>.log``,
    so this yields the pod name, which is stable across file rotations.
    """
    return os.path.basename(path).split("_", 1)[0]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def date_string(now: datetime) -> str:
    """UTC calendar date as YYYY-MM-DD. Naive datetimes are taken as UTC."""
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime("%Y-%m-%d")


def destination_name(container_name: str, now: datetime, store_by_date: bool) -> str:
    """Name of the blob (or relative file path) a container's batch goes to."""
    if store_by_date:
        return f"{date_string(now)}/{container_name}.log"
    return f"{container_name}.log"
