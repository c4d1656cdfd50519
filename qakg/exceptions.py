"""Error taxonomy shared across the extraction pipeline."""

from __future__ import annotations

from typing import Optional


class QAKGError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(QAKGError):
    """Raised when configuration or required inputs are unusable.

    Always fatal: surfaced before any unit is dispatched.
    """


class InputParseError(QAKGError):
    """A single input line could not be parsed into a record."""

    def __init__(self, message: str, *, line_number: int) -> None:
        super().__init__(f"line {line_number}: {message}")
        self.line_number = line_number


class TransportError(QAKGError):
    """The inference endpoint was unreachable or answered with a failure."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GraphSinkError(QAKGError):
    """Writing records into the graph database failed."""
