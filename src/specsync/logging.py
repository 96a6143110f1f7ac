"""Structured logging for specsync.

Plain text by default; with ``logging.json_enabled`` every entry is one JSON
object per line. Entries go to stderr; stdout is left to command output such
as ``--json`` payloads. Identifying fields (operation, spec id, issue number,
duration, dry-run flag, error) come first in a fixed order; any other keyword
passed to a logging call follows.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

_LEADING_FIELDS = ("operation", "spec_id", "issue_number", "duration_ms", "dry_run", "error")
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys() | {"message", "asctime"}
)
_TEXT_FORMAT = "%(asctime)s %(levelname)s %(message)s"


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (name, getattr(record, name)) for name in _LEADING_FIELDS if hasattr(record, name)
        )
        entry.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in entry and key not in _RECORD_ATTRS and not key.startswith("_")
        )
        return json.dumps(entry, default=str)


def _stderr_handler(json_logging: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if json_logging else logging.Formatter(_TEXT_FORMAT))
    return handler


class StructuredLogger:
    """Thin wrapper over a stdlib logger that carries structured ``extra`` fields.

    In JSON mode an entry identical to the one just written (same level,
    message and fields) is dropped, which keeps per-record loops readable.
    """

    def __init__(
        self, name: str = "specsync", json_logging: bool = False, level: str = "INFO"
    ) -> None:
        self._logger = logging.getLogger(name)
        self._logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        for existing in list(self._logger.handlers):
            self._logger.removeHandler(existing)
        self._logger.addHandler(_stderr_handler(json_logging))
        self._logger.propagate = False
        self._collapse_repeats = json_logging
        self._previous: tuple[int, str, tuple[tuple[str, str], ...]] | None = None

    def _emit(self, level: int, message: str, fields: dict[str, Any]) -> None:
        if self._collapse_repeats:
            key = (level, message, tuple(sorted((k, repr(v)) for k, v in fields.items())))
            if key == self._previous:
                return
            self._previous = key
        self._logger.log(level, message, extra=fields)

    # ---- domain events ----------------------------------------------------
    def log_operation(self, operation: str, **kw: Any) -> None:
        self._emit(logging.INFO, f"Operation: {operation}", {"operation": operation, **kw})

    def log_link_action(
        self,
        action: str,
        spec_id: str,
        issue_number: int | None = None,
        reason: str | None = None,
        dry_run: bool = False,
        **kw: Any,
    ) -> None:
        """Record a change to a spec <-> issue link (cleared, deleted, relinked, ...)."""
        fields: dict[str, Any] = {
            "operation": f"link_{action}",
            "spec_id": spec_id,
            "dry_run": dry_run,
            **kw,
        }
        parts = [f"link {action} {spec_id}"]
        if issue_number is not None:
            fields["issue_number"] = issue_number
            parts.append(f"#{issue_number}")
        if reason:
            fields["reason"] = reason
            parts.append(f"({reason})")
        if dry_run:
            parts.append("[DRY]")
        self._emit(logging.WARNING, " ".join(parts), fields)

    def log_security_event(self, event: str, **kw: Any) -> None:
        fields = {"operation": "security", "event": event, **kw}
        self._emit(logging.WARNING, f"Security: {event}", fields)

    def log_performance(self, operation: str, duration_ms: float, **kw: Any) -> None:
        self._emit(
            logging.INFO,
            f"Performance: {operation} completed in {duration_ms:.2f}ms",
            {"operation": operation, "duration_ms": round(duration_ms, 2), **kw},
        )

    def log_error(self, message: str, error: str | None = None, **kw: Any) -> None:
        fields = {**kw, "error": error} if error else dict(kw)
        self._logger.error(message, extra=fields)

    # ---- plain levels -------------------------------------------------------
    def debug(self, message: str, **kw: Any) -> None:
        self._logger.debug(message, extra=kw)

    def info(self, message: str, **kw: Any) -> None:
        self._logger.info(message, extra=kw)

    def warning(self, message: str, **kw: Any) -> None:
        self._logger.warning(message, extra=kw)

    def error(self, message: str, **kw: Any) -> None:  # noqa: D401
        self._logger.error(message, extra=kw)

    @contextmanager
    def timed_operation(self, operation: str, **kw: Any) -> Iterator[None]:
        """Log ``<operation>_start``, then the duration, or the failure and re-raise."""
        self.log_operation(f"{operation}_start", **kw)
        started = time.perf_counter()
        try:
            yield
        except Exception as exc:
            self.log_error(f"operation {operation} failed", error=str(exc), **kw)
            raise
        self.log_performance(operation, (time.perf_counter() - started) * 1000, **kw)


_DEFAULT_LOGGER: StructuredLogger | None = None


def get_logger() -> StructuredLogger:
    global _DEFAULT_LOGGER  # noqa: PLW0603
    if _DEFAULT_LOGGER is None:
        _DEFAULT_LOGGER = StructuredLogger()
    return _DEFAULT_LOGGER


def configure_logging(json_logging: bool = False, level: str = "INFO") -> StructuredLogger:
    """Replace the process logger; called once per CLI invocation."""
    global _DEFAULT_LOGGER  # noqa: PLW0603
    _DEFAULT_LOGGER = StructuredLogger(json_logging=json_logging, level=level)
    return _DEFAULT_LOGGER


__all__ = ["JSONFormatter", "StructuredLogger", "configure_logging", "get_logger"]
