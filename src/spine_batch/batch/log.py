"""Batch log -- the logger / error collaborator.

Every message an operation reports, and every error the worker records, is
forwarded to structlog *and* kept as an entry.  The worker returns the
entries in its result envelope so the supervising process can surface what
happened inside a worker it only sees through stdout.

``record_error`` honours the ``halt_on_error`` runtime option: while it is
on, recording an error raises :class:`HaltOnErrorError`.  The worker turns it
off around each operation invocation so a failing operation is logged and
tolerated instead of ending the whole batch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from spine_batch.core.errors import HaltOnErrorError
from spine_batch.core.logging import get_logger
from spine_batch.core.options import RuntimeOptions
from spine_batch.core.timestamps import epoch_now

logger = get_logger("spine_batch.batch")

_LEVELS = ("debug", "info", "notice", "success", "warning", "error")


@dataclass(frozen=True)
class LogEntry:
    level: str
    message: str
    timestamp: float
    code: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "level": self.level,
            "message": self.message,
            "timestamp": self.timestamp,
        }
        if self.code:
            data["code"] = self.code
        if self.fields:
            data["fields"] = self.fields
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LogEntry:
        return cls(
            level=data.get("level", "info"),
            message=data.get("message", ""),
            timestamp=float(data.get("timestamp", 0.0)),
            code=data.get("code"),
            fields=dict(data.get("fields") or {}),
        )


class BatchLog:
    """Collects and forwards batch log entries."""

    def __init__(self, options: RuntimeOptions | None = None) -> None:
        self._options = options or RuntimeOptions()
        self._entries: list[LogEntry] = []

    @property
    def options(self) -> RuntimeOptions:
        return self._options

    @property
    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    @property
    def has_errors(self) -> bool:
        return any(e.level == "error" for e in self._entries)

    def error_log(self) -> list[LogEntry]:
        return [e for e in self._entries if e.level == "error"]

    def log(self, level: str, message: str, **fields: Any) -> None:
        if level not in _LEVELS:
            raise ValueError(f"Unknown log level {level!r}")
        self._entries.append(LogEntry(level, message, epoch_now(), fields=fields))
        # notice/success are batch-facing levels; structlog only knows info.
        method = "info" if level in ("notice", "success") else level
        getattr(logger, method)(message, **fields)

    def record_error(self, code: str, message: str, **fields: Any) -> None:
        """Record an error; raises when errors are configured to be fatal."""
        self._entries.append(LogEntry("error", message, epoch_now(), code=code, fields=fields))
        logger.error(message, code=code, **fields)
        if self._options.halt_on_error:
            raise HaltOnErrorError(code, message)

    def extend(self, entries: list[LogEntry]) -> None:
        """Fold in entries reported by another process."""
        self._entries.extend(entries)

    def to_list(self) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self._entries]
