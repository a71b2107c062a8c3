"""Structured logging for storysync runs.

Two output shapes share one ``StructuredLogger`` facade:

* human: ``<time> <LEVEL> <message> [key=value ...]`` for terminals
* json: one object per line with the structured fields lifted to the top
  level, so CI can grep ``operation`` / ``issue_number`` without parsing
  the message text

Every string that reaches the output passes through ``errors.redact`` so
tokens pasted into an error message never land in a log file. In JSON mode
an exact repeat of the previous entry is dropped; paging loops and retries
otherwise flood the stream with identical lines.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, TextIO

from .errors import redact

# Attributes every LogRecord carries; anything else came in through ``extra``.
_BUILTIN_FIELDS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}

_HUMAN_FIELDS = ("operation", "issue_number", "path", "category", "error")


def _fields_of(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _BUILTIN_FIELDS and not key.startswith("_")
    }


def _scrub(value: Any) -> Any:
    return redact(value) if isinstance(value, str) else value


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        fields = {key: _scrub(value) for key, value in _fields_of(record).items()}
        head = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact(record.getMessage()),
        }
        fields.update(head)
        return json.dumps(fields, default=str)


class _HumanFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = redact(super().format(record))
        fields = _fields_of(record)
        tail = [f"{key}={_scrub(fields[key])}" for key in _HUMAN_FIELDS if key in fields]
        return f"{line} [{' '.join(tail)}]" if tail else line


class _RepeatFilter(logging.Filter):
    """Drop a record identical to the one emitted just before it."""

    def __init__(self) -> None:
        super().__init__()
        self._previous: tuple[Any, ...] | None = None

    def filter(self, record: logging.LogRecord) -> bool:
        fields = _fields_of(record)
        key = (
            record.levelno,
            record.getMessage(),
            tuple(sorted((name, repr(value)) for name, value in fields.items())),
        )
        if key == self._previous:
            return False
        self._previous = key
        return True


class StructuredLogger:
    """Facade over a stdlib logger with storysync-shaped helpers."""

    def __init__(
        self,
        name: str = "storysync",
        json_logging: bool = False,
        level: str = "INFO",
        stream: TextIO | None = None,
    ) -> None:
        self.json_logging = json_logging
        self._logger = logging.getLogger(name)
        resolved = logging.getLevelName((level or "INFO").upper())
        self._logger.setLevel(resolved if isinstance(resolved, int) else logging.INFO)
        for existing in list(self._logger.handlers):
            self._logger.removeHandler(existing)
        handler = logging.StreamHandler(stream or sys.stdout)
        if json_logging:
            handler.setFormatter(JSONFormatter())
            handler.addFilter(_RepeatFilter())
        else:
            handler.setFormatter(_HumanFormatter())
        self._logger.addHandler(handler)
        self._logger.propagate = False

    @property
    def level(self) -> int:
        return self._logger.level

    def _log(self, level: int, message: str, fields: dict[str, Any]) -> None:
        self._logger.log(level, message, extra=fields)

    # ---- plain levels -------------------------------------------------
    def debug(self, message: str, **fields: Any) -> None:
        self._log(logging.DEBUG, message, fields)

    def info(self, message: str, **fields: Any) -> None:
        self._log(logging.INFO, message, fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._log(logging.WARNING, message, fields)

    def error(self, message: str, **fields: Any) -> None:
        self._log(logging.ERROR, message, fields)

    # ---- run events ---------------------------------------------------
    def log_operation(self, operation: str, **fields: Any) -> None:
        self._log(logging.INFO, f"Operation: {operation}", {"operation": operation, **fields})

    def log_issue_action(
        self,
        action: str,
        title: str,
        issue_number: int | None = None,
        dry_run: bool = False,
        **fields: Any,
    ) -> None:
        """One line per create/update/close decision taken on an issue."""
        parts = [f"issue {action}"]
        if issue_number:
            parts.append(f"#{issue_number}")
            fields["issue_number"] = issue_number
        parts.append(repr(title))
        if dry_run:
            parts.append("[DRY]")
        fields.update(operation=f"issue_{action}", title=title, dry_run=dry_run)
        self._log(logging.INFO, " ".join(parts), fields)

    def log_performance(self, operation: str, duration_ms: float, **fields: Any) -> None:
        fields.update(operation=operation, duration_ms=round(duration_ms, 2))
        self._log(logging.INFO, f"Performance: {operation} completed in {duration_ms:.2f}ms", fields)

    def log_error(self, message: str, error: str | None = None, **fields: Any) -> None:
        if error:
            fields["error"] = error
        self._log(logging.ERROR, message, fields)

    def log_rate_limit_pause(self, wait_seconds: float, remaining: int) -> None:
        self._log(
            logging.DEBUG,
            f"Rate limit protection: waiting {wait_seconds:.2f}s ({remaining} requests remaining)",
            {
                "operation": "rate_limit_pause",
                "wait_seconds": round(wait_seconds, 2),
                "remaining": remaining,
            },
        )

    def log_file_skipped(self, path: str, reason: str, **fields: Any) -> None:
        """A CSV (or CSV root) that could not be used; the run carries on."""
        fields.setdefault("operation", "csv_load")
        fields["path"] = path
        self._log(logging.WARNING, reason, fields)

    @contextmanager
    def timed_operation(self, operation: str, **fields: Any) -> Iterator[None]:  # noqa: D401
        self.log_operation(f"{operation}_start", **fields)
        started = time.perf_counter()
        try:
            yield
        except Exception as exc:
            self.log_error(f"operation {operation} failed", error=str(exc), **fields)
            raise
        self.log_performance(operation, (time.perf_counter() - started) * 1000, **fields)


_GLOBAL: StructuredLogger | None = None


def get_logger() -> StructuredLogger:
    """Process-wide logger; created with human output on first use."""
    global _GLOBAL  # noqa: PLW0603
    if _GLOBAL is None:
        _GLOBAL = StructuredLogger()
    return _GLOBAL


def configure_logging(
    json_logging: bool = False, level: str = "INFO", stream: TextIO | None = None
) -> StructuredLogger:
    global _GLOBAL  # noqa: PLW0603
    _GLOBAL = StructuredLogger(json_logging=json_logging, level=level, stream=stream)
    return _GLOBAL


__all__ = ["JSONFormatter", "StructuredLogger", "configure_logging", "get_logger"]
