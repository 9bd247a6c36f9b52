"""Utility functions and configuration."""

from memory_validation.utils.config import (
    DEFAULT_AUTO_APPROVE_THRESHOLD,
    DEFAULT_AUTO_REJECT_THRESHOLD,
    DEFAULT_REVIEW_REQUIRED_THRESHOLD,
    load_threshold_config,
    save_threshold_config,
)
from memory_validation.utils.logging import (
    create_session_logger,
    get_logger,
    LogCategory,
    LogEntry,
    LogLevel,
    SessionLogger,
    set_logger,
    StructuredLogger,
)

__all__ = [
    "DEFAULT_AUTO_APPROVE_THRESHOLD",
    "DEFAULT_AUTO_REJECT_THRESHOLD",
    "DEFAULT_REVIEW_REQUIRED_THRESHOLD",
    "load_threshold_config",
    "save_threshold_config",
    # Structured logging
    "create_session_logger",
    "get_logger",
    "LogCategory",
    "LogEntry",
    "LogLevel",
    "SessionLogger",
    "set_logger",
    "StructuredLogger",
]
