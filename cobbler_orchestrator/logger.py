"""
Structured JSONL logging for Cobbler.

This module provides:
- JSONL event logging for debugging and audit trails
- Log files organized by scope (generation name or command) and date
- Log levels (debug, info, warn, error)
- Context manager for session-scoped logging
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional


class LogLevel:
    """Log level constants."""
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class CobblerLogger:
    """
    JSONL event logger for Cobbler.

    Writes structured log entries to <logs_dir>/<scope>-YYYY-MM-DD.jsonl

    Each log entry is a JSON object with:
    - timestamp: ISO format timestamp
    - level: Log level (debug, info, warn, error)
    - event_type: Type of event being logged
    - scope: Generation or command the entry belongs to
    - data: Additional event data (dict)
    """

    def __init__(self, scope: str, logs_dir: str | Path) -> None:
        """
        Initialize logger for a scope.

        Args:
            scope: Identifier used to name the log file.
            logs_dir: Directory holding log files.
        """
        self.scope = scope
        self.logs_dir = Path(logs_dir)
        self._current_session_id: Optional[str] = None

    def _get_log_path(self) -> Path:
        """Get the log file path for today."""
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return self.logs_dir / f"{self.scope}-{today}.jsonl"

    def _write_entry(self, entry: dict[str, Any]) -> None:
        """Write a log entry to the JSONL file."""
        log_path = self._get_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        with open(log_path, "a") as f:
            f.write(json.dumps(entry, default=str) + "\n")

    def log(
        self,
        event_type: str,
        data: Optional[dict[str, Any]] = None,
        level: str = LogLevel.INFO,
    ) -> None:
        """
        Log an event.

        Args:
            event_type: Type of event (e.g., "task_start", "merge", "error").
            data: Additional data to include in the log entry.
            level: Log level (debug, info, warn, error).
        """
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level,
            "event_type": event_type,
            "scope": self.scope,
            "data": data or {},
        }

        if self._current_session_id:
            entry["session_id"] = self._current_session_id

        self._write_entry(entry)

    def debug(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        """Log a debug event."""
        self.log(event_type, data, LogLevel.DEBUG)

    def info(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        """Log an info event."""
        self.log(event_type, data, LogLevel.INFO)

    def warn(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        """Log a warning event."""
        self.log(event_type, data, LogLevel.WARN)

    def error(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        """Log an error event."""
        self.log(event_type, data, LogLevel.ERROR)

    @contextmanager
    def session_context(self, session_id: str) -> Iterator[CobblerLogger]:
        """
        Context manager for session-scoped logging.

        All logs within this context will include the session_id.

        Example:
            with logger.session_context("stitch-3") as log:
                log.info("task_start", {"task_id": "gen-1"})
        """
        old_session_id = self._current_session_id
        self._current_session_id = session_id
        self.info("session_start", {"session_id": session_id})
        try:
            yield self
        finally:
            self.info("session_end", {"session_id": session_id})
            self._current_session_id = old_session_id


_logger_cache: dict[tuple[str, Path], CobblerLogger] = {}


def get_logger(scope: str, logs_dir: str | Path) -> CobblerLogger:
    """Get or create the logger for a scope under a logs directory."""
    key = (scope, Path(logs_dir))
    if key not in _logger_cache:
        _logger_cache[key] = CobblerLogger(scope, logs_dir)
    return _logger_cache[key]


def clear_logger_cache() -> None:
    """Clear the logger cache. Useful for testing."""
    _logger_cache.clear()
