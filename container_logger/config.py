"""Configuration module: frozen dataclass loaded from environment variables,
optionally seeded from a YAML file."""

import os
import logging
from dataclasses import dataclass, field, fields

import yaml

from container_logger.filters import parse_csv_filters

logger = logging.getLogger(__name__)

DESTINATION_AZURE = "AZURE"
DESTINATION_LOCAL = "LOCAL"
DESTINATION_BOTH = "BOTH"
DESTINATIONS = (DESTINATION_AZURE, DESTINATION_LOCAL, DESTINATION_BOTH)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    """Raised when the daemon cannot start with the given configuration."""


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def _parse_filters(value) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        value = ",".join(str(v) for v in value)
    return parse_csv_filters(str(value))


@dataclass(frozen=True)
class Config:
    output_destination: str = DESTINATION_AZURE
    local_log_directory: str = "/kubernetes-logs"
    batch_upload_seconds: float = 60.0
    batch_size_threshold: int = 50_000
    store_by_date: bool = False
    watch_containers: tuple[str, ...] = field(default_factory=tuple)
    message_filters: tuple[str, ...] = field(default_factory=tuple)
    storage_account_name: str = ""
    storage_account_key: str = ""
    storage_account_url_suffix: str = "blob.core.windows.net"
    storage_container_name: str = ""
    log_files_directory: str = "/var/log/containers"
    exclude_patterns: tuple[str, ...] = ("kube-system",)
    sink_timeout_seconds: int = 30
    shutdown_timeout_seconds: float = 30.0
    flush_workers: int = 4
    log_level: str = "INFO"

    @property
    def uses_azure(self) -> bool:
        return self.output_destination in (DESTINATION_AZURE, DESTINATION_BOTH)

    @property
    def uses_local(self) -> bool:
        return self.output_destination in (DESTINATION_LOCAL, DESTINATION_BOTH)

    @property
    def account_url(self) -> str:
        return f"https://{self.storage_account_name}.{self.storage_account_url_suffix}"

    def validate(self) -> "Config":
        """Check cross-field constraints. Returns self so calls can chain."""
        if self.output_destination not in DESTINATIONS:
            raise ConfigError(
                f"LOG_OUTPUT_DESTINATION must be one of {', '.join(DESTINATIONS)}, "
                f"got {self.output_destination!r}"
            )
        if self.batch_upload_seconds <= 0:
            raise ConfigError("BATCH_LOG_UPLOAD_TIME_SECONDS must be positive")
        if self.batch_size_threshold <= 0:
            raise ConfigError("BATCH_SIZE_THRESHOLD must be positive")
        if self.flush_workers <= 0:
            raise ConfigError("FLUSH_WORKERS must be positive")
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")
        if self.uses_azure:
            missing = [
                env for env, value in (
                    ("STORAGE_ACCOUNT_NAME", self.storage_account_name),
                    ("STORAGE_ACCOUNT_KEY", self.storage_account_key),
                    ("STORAGE_ACCOUNT_CONTAINER_NAME", self.storage_container_name),
                )
                if not value
            ]
            if missing:
                raise ConfigError(
                    f"Missing required storage settings for {self.output_destination} output: "
                    + ", ".join(missing)
                )
        return self


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        logger.info("Loaded YAML config from %s", path)
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    known = {f.name for f in fields(Config)}
    unknown = set(data) - known
    if unknown:
        logger.warning("Ignoring unknown config keys in %s: %s", path, ", ".join(sorted(unknown)))
    return {k: v for k, v in data.items() if k in known}


def load_config(env=None) -> Config:
    """Build Config from environment variables over YAML values over defaults.

    Pass env for testability; when None, os.environ is used.
    """
    env = os.environ if env is None else env
    yaml_data = load_yaml_config(env.get("LOGGER_CONFIG_FILE"))

    def pick(env_key: str, name: str):
        if env_key in env:
            return env[env_key]
        if name in yaml_data:
            return yaml_data[name]
        return getattr(Config, name, None)

    try:
        config = Config(
            output_destination=str(
                pick("LOG_OUTPUT_DESTINATION", "output_destination")
            ).strip().upper(),
            local_log_directory=str(pick("LOCAL_LOG_DIRECTORY", "local_log_directory")),
            batch_upload_seconds=float(
                pick("BATCH_LOG_UPLOAD_TIME_SECONDS", "batch_upload_seconds")
            ),
            batch_size_threshold=int(pick("BATCH_SIZE_THRESHOLD", "batch_size_threshold")),
            store_by_date=_parse_bool(pick("STORE_BY_DATE", "store_by_date")),
            watch_containers=_parse_filters(
                env.get("WATCH_CONTAINERS", yaml_data.get("watch_containers"))
            ),
            message_filters=_parse_filters(
                env.get("WATCH_MESSAGE_FILTERS", yaml_data.get("message_filters"))
            ),
            storage_account_name=str(pick("STORAGE_ACCOUNT_NAME", "storage_account_name")),
            storage_account_key=str(pick("STORAGE_ACCOUNT_KEY", "storage_account_key")),
            storage_account_url_suffix=str(
                pick("STORAGE_ACCOUNT_URL_SUFFIX", "storage_account_url_suffix")
            ),
            storage_container_name=str(
                pick("STORAGE_ACCOUNT_CONTAINER_NAME", "storage_container_name")
            ),
            log_files_directory=str(pick("LOG_FILES_DIRECTORY", "log_files_directory")),
            exclude_patterns=_parse_filters(
                env.get("EXCLUDE_NAMESPACES", yaml_data.get("exclude_patterns", "kube-system"))
            ),
            sink_timeout_seconds=int(pick("SINK_TIMEOUT_SECONDS", "sink_timeout_seconds")),
            shutdown_timeout_seconds=float(
                pick("SHUTDOWN_TIMEOUT_SECONDS", "shutdown_timeout_seconds")
            ),
            flush_workers=int(pick("FLUSH_WORKERS", "flush_workers")),
            log_level=str(pick("LOG_LEVEL", "log_level")).strip().upper(),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid configuration value: {exc}") from exc
    return config.validate()
