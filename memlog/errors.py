from __future__ import annotations


class MemlogError(Exception):
    """Base class for errors raised by the memory log actions."""


class Unauthorized(MemlogError):
    """Capability or anti-forgery check failed."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class NotFound(MemlogError):
    """The log store has no backing file yet."""

    def __init__(self, message: str = "No logs available.") -> None:
        super().__init__(message)


class ParseSkipped(MemlogError):
    """A stored line could not be turned into a record. Never leaves the read path."""

    def __init__(self, line_number: int, reason: str) -> None:
        super().__init__(f"line {line_number}: {reason}")
        self.line_number = line_number
        self.reason = reason


class WriteFailed(MemlogError):
    """Appending to or truncating the log file failed."""
