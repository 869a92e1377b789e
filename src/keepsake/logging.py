"""JSONL event log for pipeline observability."""

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

_stdlib_logger = logging.getLogger("keepsake.events")


@dataclass
class LogEntry:
    """A single log entry."""

    timestamp: str
    event: str
    identity: str | None = None
    subject: str | None = None
    duration_ms: float | None = None
    count: int | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None and v != {} and v != []}


class EventLog:
    """Structured event log injected into pipeline components.

    Entries always go to the ``keepsake.events`` logger. When ``log_dir`` is
    set they are also appended to a JSONL file. Detail events logged through
    :meth:`detail` are dropped unless ``verbose`` is on.
    """

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "events.jsonl",
        max_size_mb: float = 10.0,
        verbose: bool = False,
    ) -> None:
        self.log_dir = Path(log_dir) if log_dir is not None else None
        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)
        self.verbose = verbose

    @property
    def log_path(self) -> Path | None:
        """Current log file path, None when only stdlib logging is used."""
        if self.log_dir is None:
            return None
        return self.log_dir / self.filename

    def _rotate_if_needed(self, path: Path) -> None:
        """Rotate log file if it exceeds max size."""
        if not path.exists():
            return

        if path.stat().st_size >= self.max_size_bytes:
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
            path.rename(path.with_name(f"{path.stem}_{timestamp}.jsonl"))

    def _write(self, entry: LogEntry, level: int) -> None:
        data = entry.to_dict()
        _stdlib_logger.log(level, "%s %s", entry.event, json.dumps(data, default=str))

        path = self.log_path
        if path is None:
            return
        try:
            self._rotate_if_needed(path)
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(data, default=str) + "\n")
        except OSError as e:
            _stdlib_logger.warning("Could not write event log %s: %s", path, e)

    def log(
        self,
        event: str,
        *,
        identity: str | None = None,
        subject: str | None = None,
        duration_ms: float | None = None,
        count: int | None = None,
        error: str | None = None,
        level: int = logging.INFO,
        **extra: Any,
    ) -> None:
        """Log an event."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            identity=identity,
            subject=subject,
            duration_ms=duration_ms,
            count=count,
            error=error,
            extra=extra if extra else {},
        )
        self._write(entry, level)

    def warning(self, event: str, **kwargs: Any) -> None:
        """Log a failure that was handled."""
        self.log(event, level=logging.WARNING, **kwargs)

    def detail(self, event: str, **kwargs: Any) -> None:
        """Log a verbose-only event (rule hits, retry attempts)."""
        if self.verbose:
            self.log(event, level=logging.DEBUG, **kwargs)
