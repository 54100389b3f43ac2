"""Exceptions raised by the recorder and its protocol transport."""

from typing import Any


class RecorderError(Exception):
    """Base exception for all recorder errors."""
    pass


class ProtocolError(RecorderError):
    """Exception raised when the browser answers a command with an error object."""

    def __init__(
        self,
        message: str,
        error: dict[str, Any] | None = None,
        method: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error = error or {}
        self.method = method

    @property
    def code(self) -> int | None:
        return self.error.get('code')

    def __str__(self) -> str:
        if self.method:
            return f'[{self.method}] {self.message}'
        return self.message


class CommandTimeoutError(RecorderError):
    """Exception raised when a routed command receives no reply in time."""

    def __init__(
        self,
        method: str,
        timeout_seconds: float | None = None,
    ):
        super().__init__(f'{method} timed out after {timeout_seconds}s')
        self.method = method
        self.timeout_seconds = timeout_seconds


class TransportClosedError(RecorderError):
    """Exception raised when a command is sent on a transport that is not attached."""

    def __init__(self, message: str = 'Transport is not attached'):
        super().__init__(message)
        self.message = message
