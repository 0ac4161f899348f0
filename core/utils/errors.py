"""Custom exceptions for core logic."""

from __future__ import annotations


class InputError(Exception):
    """Raised when a request violates the input boundary (missing or invalid inputs)."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class PatternCompileError(Exception):
    """Raised when a literal placeholder pattern cannot be compiled into a matcher."""

    def __init__(self, pattern: str, reason: str) -> None:
        super().__init__(f"cannot compile pattern: {reason}")
        self.pattern = pattern
        self.reason = reason


class OracleError(Exception):
    """Base class for soft failures of external decision services."""


class OracleTimeoutError(OracleError):
    """Raised when an oracle call misses its deadline."""


class OracleUnavailableError(OracleError):
    """Raised when an oracle call fails or returns an unusable response."""


class RepackagingError(Exception):
    """Raised when the rewritten document package cannot be produced safely."""
