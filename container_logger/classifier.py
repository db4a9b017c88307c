"""Line classifier: turns a raw tail line into a formatted LogRecord."""

import json
import logging

from container_logger.models import LogRecord

logger = logging.getLogger(__name__)

LEVEL_ERROR = "error"
LEVEL_INFO = "info"


def format_content(container_name: str, level: str, message: str) -> str:
    return f"{container_name}/[{level}] : {message}"


def classify(container_name: str, raw: str) -> LogRecord:
    """Classify a raw line from a container log file.

    Docker/CRI JSON lines look like::

        {"log":"listening on 80\\n","stream":"stdout","time":"..."}

    The level is "error" for the stderr stream, "info" otherwise, and the
    ``log`` field is used verbatim. Any other line falls back to a substring
    check for "error" and gets a trailing newline appended. Never raises.
    """
    try:
        data = json.loads(raw)
        message = data["log"]
        level = LEVEL_ERROR if data.get("stream") == "stderr" else LEVEL_INFO
        return LogRecord(container_name, format_content(container_name, level, str(message)))
    except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
        logger.debug("Unstructured line from %s: %s", container_name, e)

    level = LEVEL_ERROR if "error" in raw.lower() else LEVEL_INFO
    return LogRecord(container_name, format_content(container_name, level, raw) + "\n")
