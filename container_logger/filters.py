"""Allow-filters for container names and raw log lines.

Both filters use the same rule: an empty filter list keeps everything,
otherwise a value is kept when its lower-cased form contains any of the
configured substrings. No wildcards, no regex.
"""


def parse_csv_filters(value: str | None) -> tuple[str, ...]:
    """Split a comma-separated setting into stripped, lower-cased, non-empty entries."""
    if not value:
        return ()
    return tuple(
        part.strip().lower() for part in value.split(",") if part.strip()
    )


def _contains_any(value: str, filters) -> bool:
    lowered = value.lower()
    return any(f.lower() in lowered for f in filters)


def should_keep(raw: str, filters) -> bool:
    """Return True if the raw (pre-classification) line passes the message filter."""
    if not filters:
        return True
    return _contains_any(raw, filters)


def should_watch_container(container_name: str, filters) -> bool:
    """Return True if files for this container should be tailed at all."""
    if not filters:
        return True
    return _contains_any(container_name, filters)
