"""Custom exceptions for the serial counter library."""


class CounterError(Exception):
    """Base exception for all counter library errors."""

    pass


class SerialIOError(CounterError):
    """Raised when serial communication fails (port closed, open failure, etc)."""

    pass


class ReadTimeout(SerialIOError):
    """Raised when no complete line arrived within the port read timeout."""

    pass


class InvalidResponse(CounterError):
    """Raised when a diagnostic caller asks for a strict parse of a malformed line."""

    pass
