"""Log record and flush outcome models."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class LogRecord:
    container_name: str
    content: str     # formatted "<container>/[<level>] : <message>"


@dataclass
class FlushResult:
    container_name: str
    record_count: int
    destination: str = ""
    trigger: str = "timer"   # "timer", "size", or "shutdown"
    bytes_written: int = 0
    sink_errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.sink_errors
