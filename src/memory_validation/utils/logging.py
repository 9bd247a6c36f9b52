"""Structured logging for the memory validation engine.

Every verdict, calibration step and quality alert is logged with its
context so a run can be reconstructed afterwards.

This module provides:
- LogCategory: Predefined log categories for consistent filtering
- StructuredLogger: Category-prefixed, thread-safe logging with context
- SessionLogger: Session-aware logging to text and JSONL files
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, TextIO

# =============================================================================
# LOG CATEGORIES
# =============================================================================

class LogCategory(str, Enum):
    """Log categories for structured filtering and analysis.

    Categories name engine components, not record content.
    """
    SCORING = "SCORING"            # Confidence factor combination
    SIGNIFICANCE = "SIGNIFICANCE"  # Significance scoring and threshold shifts
    DECISION = "DECISION"          # Verdicts, priority, review time
    BATCH = "BATCH"                # Batch dispatch, errors, statistics
    QUEUE = "QUEUE"                # Review queue construction
    SAMPLING = "SAMPLING"          # Validation sampling and coverage
    CALIBRATION = "CALIBRATION"    # Threshold proposals, application, rollback
    QUALITY = "QUALITY"            # Quality metrics and alerts
    CONFIG = "CONFIG"              # Config loading and replacement
    INVARIANT = "INVARIANT"        # Invariant checks and violations
    SYSTEM = "SYSTEM"              # Session-level operations


# =============================================================================
# LOG LEVELS
# =============================================================================

class LogLevel(str, Enum):
    """Log levels for filtering."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


_LEVEL_MAP = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.CRITICAL: logging.CRITICAL,
}


# =============================================================================
# LOG ENTRY
# =============================================================================

class LogEntry:
    """A structured log entry.

    Named context fields (record id, confidence, significance, batch id,
    config version) are promoted for console formatting; anything else
    passed as keyword arguments lands in ``context``.
    """

    def __init__(
        self,
        category: LogCategory,
        level: LogLevel,
        message: str,
        record_id: str | None = None,
        confidence: float | None = None,
        significance: float | None = None,
        batch_id: str | None = None,
        config_version: int | None = None,
        extras: dict[str, Any] | None = None,
        **kwargs: Any,
    ):
        self.timestamp = datetime.now()
        self.category = category
        self.level = level
        self.message = message
        self.record_id = record_id
        self.confidence = confidence
        self.significance = significance
        self.batch_id = batch_id
        self.config_version = config_version
        self.extras = extras or {}
        self.context = dict(kwargs)
        for key in ("record_id", "confidence", "significance", "batch_id", "config_version"):
            value = getattr(self, key)
            if value is not None:
                self.context[key] = value

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        d: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "category": self.category.value,
            "level": self.level.value,
            "message": self.message,
        }
        if self.extras:
            d["extras"] = self.extras
        if self.context:
            d["context"] = self.context
        return d

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def format_console(self) -> str:
        """Format for console output with category prefix."""
        ts = self.timestamp.strftime("%H:%M:%S.%f")[:-3]
        prefix = f"[{self.category.value}]"

        context_parts = []
        if self.record_id:
            context_parts.append(f"record={self.record_id[:12]}")
        if self.confidence is not None:
            context_parts.append(f"conf={self.confidence:.3f}")
        if self.significance is not None:
            context_parts.append(f"sig={self.significance:.1f}")
        if self.batch_id:
            context_parts.append(f"batch={self.batch_id[:8]}")
        if self.config_version is not None:
            context_parts.append(f"cfg=v{self.config_version}")

        context_str = f" ({', '.join(context_parts)})" if context_parts else ""
        return f"{ts} {prefix:15} {self.message}{context_str}"


# =============================================================================
# STRUCTURED LOGGER
# =============================================================================

class StructuredLogger:
    """Category-prefixed structured logger.

    Safe to share between batch worker threads: filtering, statistics,
    history and output all happen under one lock.
    """

    def __init__(
        self,
        name: str = "memory_validation",
        level: LogLevel = LogLevel.INFO,
        console_output: bool = False,
        file_output: TextIO | None = None,
        json_output: bool = False,
        max_history: int = 10000,
    ):
        """Initialize the structured logger.

        Args:
            name: Logger name
            level: Minimum log level
            console_output: Whether to output to stdout
            file_output: Optional file handle for output
            json_output: Whether to use JSON format for file output
            max_history: Number of entries kept for retrieval
        """
        self._name = name
        self._level = level
        self._console_output = console_output
        self._file_output = file_output
        self._json_output = json_output
        self._lock = threading.RLock()

        self._counts: dict[LogCategory, int] = {cat: 0 for cat in LogCategory}
        self._error_count = 0
        self._warning_count = 0

        self._entries: list[LogEntry] = []
        self._max_history = max_history

        # None = all enabled
        self._enabled_categories: set[LogCategory] | None = None
        self._disabled_categories: set[LogCategory] = set()

    def log(
        self,
        category: LogCategory,
        level: LogLevel | str,
        message: str,
        **kwargs: Any,
    ) -> LogEntry:
        """Log a structured entry.

        Args:
            category: Log category
            level: Log level (enum or its string value)
            message: Log message
            **kwargs: Additional context (record_id, confidence, etc.)

        Returns:
            The created LogEntry, whether or not it passed the filters
        """
        level = LogLevel(level)
        entry = LogEntry(category, level, message, **kwargs)

        with self._lock:
            if _LEVEL_MAP[level] < _LEVEL_MAP[self._level]:
                return entry
            if self._enabled_categories is not None and category not in self._enabled_categories:
                return entry
            if category in self._disabled_categories:
                return entry

            self._counts[category] += 1
            if level in (LogLevel.ERROR, LogLevel.CRITICAL):
                self._error_count += 1
            elif level == LogLevel.WARNING:
                self._warning_count += 1

            self._entries.append(entry)
            if len(self._entries) > self._max_history:
                self._entries = self._entries[-self._max_history:]

            if self._console_output:
                self._write_console(entry)
            if self._file_output:
                self._write_file(entry)

        return entry

    def _write_console(self, entry: LogEntry) -> None:
        output = entry.format_console()
        if sys.stdout.isatty():
            colors = {
                LogLevel.DEBUG: "\033[90m",
                LogLevel.INFO: "\033[0m",
                LogLevel.WARNING: "\033[93m",
                LogLevel.ERROR: "\033[91m",
                LogLevel.CRITICAL: "\033[91;1m",
            }
            output = f"{colors.get(entry.level, '')}{output}\033[0m"
        print(output)

    def _write_file(self, entry: LogEntry) -> None:
        if self._json_output:
            self._file_output.write(entry.to_json() + "\n")
        else:
            self._file_output.write(entry.format_console() + "\n")
        self._file_output.flush()

    # -------------------------------------------------------------------------
    # CONVENIENCE METHODS
    # -------------------------------------------------------------------------

    def debug(self, category: LogCategory, message: str, **kwargs: Any) -> LogEntry:
        return self.log(category, LogLevel.DEBUG, message, **kwargs)

    def info(self, category: LogCategory, message: str, **kwargs: Any) -> LogEntry:
        return self.log(category, LogLevel.INFO, message, **kwargs)

    def warning(self, category: LogCategory, message: str, **kwargs: Any) -> LogEntry:
        return self.log(category, LogLevel.WARNING, message, **kwargs)

    def error(self, category: LogCategory, message: str, **kwargs: Any) -> LogEntry:
        return self.log(category, LogLevel.ERROR, message, **kwargs)

    # -------------------------------------------------------------------------
    # CATEGORY-SPECIFIC METHODS
    # -------------------------------------------------------------------------

    def scoring(self, message: str, level: LogLevel = LogLevel.DEBUG, **kwargs: Any) -> LogEntry:
        """Log confidence scoring."""
        return self.log(LogCategory.SCORING, level, message, **kwargs)

    def significance(self, message: str, level: LogLevel = LogLevel.DEBUG, **kwargs: Any) -> LogEntry:
        """Log significance scoring."""
        return self.log(LogCategory.SIGNIFICANCE, level, message, **kwargs)

    def decision(self, message: str, level: LogLevel = LogLevel.DEBUG, **kwargs: Any) -> LogEntry:
        """Log verdicts."""
        return self.log(LogCategory.DECISION, level, message, **kwargs)

    def batch(self, message: str, level: LogLevel = LogLevel.INFO, **kwargs: Any) -> LogEntry:
        """Log batch processing."""
        return self.log(LogCategory.BATCH, level, message, **kwargs)

    def queue(self, message: str, level: LogLevel = LogLevel.INFO, **kwargs: Any) -> LogEntry:
        """Log review queue construction."""
        return self.log(LogCategory.QUEUE, level, message, **kwargs)

    def sampling(self, message: str, level: LogLevel = LogLevel.INFO, **kwargs: Any) -> LogEntry:
        """Log sample selection and coverage."""
        return self.log(LogCategory.SAMPLING, level, message, **kwargs)

    def calibration(self, message: str, level: LogLevel = LogLevel.INFO, **kwargs: Any) -> LogEntry:
        """Log calibration."""
        return self.log(LogCategory.CALIBRATION, level, message, **kwargs)

    def quality(self, message: str, level: LogLevel = LogLevel.INFO, **kwargs: Any) -> LogEntry:
        """Log quality monitoring."""
        return self.log(LogCategory.QUALITY, level, message, **kwargs)

    def config(self, message: str, level: LogLevel = LogLevel.INFO, **kwargs: Any) -> LogEntry:
        """Log configuration changes."""
        return self.log(LogCategory.CONFIG, level, message, **kwargs)

    def invariant(self, message: str, level: LogLevel = LogLevel.WARNING, **kwargs: Any) -> LogEntry:
        """Log invariant checks."""
        return self.log(LogCategory.INVARIANT, level, message, **kwargs)

    def system(self, message: str, level: LogLevel = LogLevel.INFO, **kwargs: Any) -> LogEntry:
        """Log session-level operations."""
        return self.log(LogCategory.SYSTEM, level, message, **kwargs)

    # -------------------------------------------------------------------------
    # INVARIANT LOGGING
    # -------------------------------------------------------------------------

    def check_invariant(
        self,
        condition: bool,
        invariant_name: str,
        message: str,
        **kwargs: Any,
    ) -> LogEntry:
        """Check and log an invariant.

        Passing checks log at INFO, failures at ERROR.
        """
        extras = {"invariant": invariant_name, "result": "pass" if condition else "fail"}
        extras.update(kwargs.pop("extras", {}))
        if condition:
            return self.invariant(
                f"PASS: {invariant_name} - {message}",
                level=LogLevel.INFO,
                extras=extras,
                **kwargs,
            )
        return self.invariant(
            f"FAIL: {invariant_name} - {message}",
            level=LogLevel.ERROR,
            extras=extras,
            **kwargs,
        )

    # -------------------------------------------------------------------------
    # CONFIGURATION
    # -------------------------------------------------------------------------

    def set_level(self, level: LogLevel) -> None:
        """Set minimum log level."""
        self._level = level

    def enable_categories(self, categories: list[LogCategory]) -> None:
        """Enable only specific categories."""
        self._enabled_categories = set(categories)

    def disable_categories(self, categories: list[LogCategory]) -> None:
        """Disable specific categories."""
        self._disabled_categories.update(categories)

    def enable_all_categories(self) -> None:
        """Enable all categories."""
        self._enabled_categories = None
        self._disabled_categories.clear()

    # -------------------------------------------------------------------------
    # STATISTICS
    # -------------------------------------------------------------------------

    def get_statistics(self) -> dict[str, Any]:
        """Get logging statistics."""
        with self._lock:
            return {
                "total": sum(self._counts.values()),
                "by_category": {cat.value: count for cat, count in self._counts.items()},
                "errors": self._error_count,
                "warnings": self._warning_count,
            }

    def get_recent_entries(self, count: int = 100) -> list[LogEntry]:
        """Get the most recent log entries."""
        with self._lock:
            return self._entries[-count:]

    def filter_by_category(self, category: LogCategory) -> list[LogEntry]:
        """Get all retained entries of a specific category."""
        with self._lock:
            return [e for e in self._entries if e.category == category]


# =============================================================================
# SESSION LOGGER
# =============================================================================

class SessionLogger(StructuredLogger):
    """Session-aware logger that writes to a session directory.

    Creates ``<runs_dir>/<session_id>/logs/main.log`` (console format) and
    ``main.jsonl`` (one JSON entry per line).
    """

    def __init__(
        self,
        session_id: str,
        runs_dir: str | Path = "runs",
        console_output: bool = False,
        level: LogLevel = LogLevel.INFO,
    ):
        self._session_id = session_id
        self._session_dir = Path(runs_dir) / session_id
        self._logs_dir = self._session_dir / "logs"
        self._logs_dir.mkdir(parents=True, exist_ok=True)

        self._main_log_file = open(self._logs_dir / "main.log", "a", encoding="utf-8")
        self._json_log_file = open(self._logs_dir / "main.jsonl", "a", encoding="utf-8")

        super().__init__(
            name=f"session_{session_id}",
            level=level,
            console_output=console_output,
            file_output=self._main_log_file,
            json_output=False,
        )
        self.system(f"Session started: {session_id}")

    def _write_file(self, entry: LogEntry) -> None:
        self._main_log_file.write(entry.format_console() + "\n")
        self._main_log_file.flush()
        self._json_log_file.write(entry.to_json() + "\n")
        self._json_log_file.flush()

    def close(self) -> None:
        """Close log files."""
        self.system(f"Session ended: {self._session_id}")
        with self._lock:
            self._file_output = None
            self._main_log_file.close()
            self._json_log_file.close()

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def session_dir(self) -> Path:
        return self._session_dir

    @property
    def logs_dir(self) -> Path:
        return self._logs_dir


# =============================================================================
# GLOBAL LOGGER INSTANCE
# =============================================================================

_global_logger: StructuredLogger | None = None


def get_logger() -> StructuredLogger:
    """Get the global logger instance."""
    global _global_logger
    if _global_logger is None:
        _global_logger = StructuredLogger()
    return _global_logger


def set_logger(logger: StructuredLogger) -> None:
    """Set the global logger instance."""
    global _global_logger
    _global_logger = logger


def create_session_logger(
    session_id: str | None = None,
    runs_dir: str | Path = "runs",
    console_output: bool = False,
    level: LogLevel = LogLevel.INFO,
) -> SessionLogger:
    """Create a session logger and install it as the global logger.

    Args:
        session_id: Session ID (timestamp-based if not provided)
        runs_dir: Base directory for runs
        console_output: Whether to echo entries to stdout
        level: Minimum log level

    Returns:
        The created session logger
    """
    if session_id is None:
        session_id = datetime.now().strftime("%Y%m%d_%H%M%S")

    logger = SessionLogger(
        session_id=session_id,
        runs_dir=runs_dir,
        console_output=console_output,
        level=level,
    )
    set_logger(logger)
    return logger


__all__ = [
    "LogCategory",
    "LogLevel",
    "LogEntry",
    "StructuredLogger",
    "SessionLogger",
    "get_logger",
    "set_logger",
    "create_session_logger",
]
