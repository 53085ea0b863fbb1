"""Exit codes and the base exception for ticketbridge.

Every error raised by the package derives from TicketBridgeError, which
carries the exit code the CLI reports when the error reaches the top level.
"""

from enum import IntEnum
from typing import ClassVar


class ExitCode(IntEnum):
    """Process exit codes used by the CLI.

    These codes are stable so calling scripts or CI systems can branch
    on them.
    """

    SUCCESS = 0
    GENERAL_ERROR = 1
    CONNECTION_FAILED = 2  # Detection or negotiation aborted the connection
    NOT_CONFIGURED = 3
    NOT_FOUND = 4
    REJECTED = 5  # Backend refused the request content or transition
    USER_CANCELLED = 6


class TicketBridgeError(Exception):
    """Base exception for ticketbridge errors.

    Each exception type has an associated exit code for proper error reporting.
    """

    _default_exit_code: ClassVar[ExitCode] = ExitCode.GENERAL_ERROR

    def __init__(self, message: str, exit_code: ExitCode | None = None) -> None:
        """Initialize the exception."""
        super().__init__(message)
        self._exit_code = exit_code

    @property
    def exit_code(self) -> ExitCode:
        """Get the exit code for this exception."""
        if self._exit_code is not None:
            return self._exit_code
        return self.__class__._default_exit_code


class ConfigurationError(TicketBridgeError):
    """A connection or setting is missing or malformed.

    Raised when:
    - A named connection has no base URL or family
    - A configured value cannot be parsed
    - No credential material is configured for a connection
    """

    _default_exit_code: ClassVar[ExitCode] = ExitCode.NOT_CONFIGURED


class UserCancelledError(TicketBridgeError):
    """User cancelled the operation (Ctrl+C)."""

    _default_exit_code: ClassVar[ExitCode] = ExitCode.USER_CANCELLED


__all__ = [
    "ExitCode",
    "TicketBridgeError",
    "ConfigurationError",
    "UserCancelledError",
]
