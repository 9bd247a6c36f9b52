"""Exception types raised by the validation engine."""

from __future__ import annotations


class ValidationEngineError(Exception):
    """Base class for engine errors."""


class MalformedRecordError(ValidationEngineError, ValueError):
    """A record is missing sub-scores or carries non-numeric values.

    Raised during single-record evaluation. The batch processor catches it
    per record and reports it in the batch error list.
    """

    def __init__(self, record_id: str | None, message: str) -> None:
        self.record_id = record_id
        super().__init__(f"{record_id or '<unknown>'}: {message}")
