"""Error taxonomy for the ticket provider layer.

Connection-level errors abort a connection attempt and stay raised until
the caller reconnects explicitly:
- DetectionError: backend unreachable, or its version unparseable/unsupported
- NegotiationError: no authentication method could be verified

Per-operation errors are returned to the caller and never touch the
connection caches:
- InvalidTransition: target state not allowed from the current state
- TransientNetworkError: timeouts / 5xx / 429 after retries were exhausted
- ValidationError: backend rejected the payload content
- TicketNotFoundError: the ticket does not exist (or is not visible)
- AuthenticationRejected: credentials refused (401/403) outside negotiation
- UnsupportedOperationError: the connected backend cannot do this at all
- MalformedResponseError: a 2xx response was not the expected JSON shape

Non-fatal conditions are reported as warnings (``warnings.warn``):
- TranslationDegraded: a document or value was lossily approximated
- FieldUnmapped: a semantic field write was skipped
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, ClassVar

from ticketbridge.utils.errors import ExitCode, TicketBridgeError

if TYPE_CHECKING:
    from ticketbridge.integrations.auth import AuthAttempt


# ============================================================================
# Connection-level errors
# ============================================================================


class DetectionError(TicketBridgeError):
    """The backend version or capabilities could not be established.

    Attributes:
        base_url: Endpoint that was queried
        reason: Short description of what went wrong
    """

    _default_exit_code: ClassVar[ExitCode] = ExitCode.CONNECTION_FAILED

    def __init__(
        self,
        base_url: str,
        reason: str,
        message: str | None = None,
    ) -> None:
        self.base_url = base_url
        self.reason = reason
        if message is None:
            message = f"Could not detect backend at {base_url}: {reason}"
        super().__init__(message)


class UnsupportedVersionError(DetectionError):
    """The backend reports a version older than any documented capability point."""

    def __init__(
        self,
        base_url: str,
        version: str,
        minimum: str,
        message: str | None = None,
    ) -> None:
        self.version = version
        self.minimum = minimum
        super().__init__(
            base_url=base_url,
            reason=f"version {version} is below the minimum supported {minimum}",
            message=message,
        )


class NegotiationError(TicketBridgeError):
    """No authentication method could be verified against the backend.

    Attributes:
        attempts: One record per method in preference order, each saying
            whether it was unsupported, lacked credentials, was rejected,
            or could not be reached
    """

    _default_exit_code: ClassVar[ExitCode] = ExitCode.CONNECTION_FAILED

    def __init__(
        self,
        attempts: Sequence[AuthAttempt],
        message: str | None = None,
    ) -> None:
        self.attempts = tuple(attempts)
        if message is None:
            details = "; ".join(
                f"{a.method.value}: {a.outcome.value}" + (f" ({a.detail})" if a.detail else "")
                for a in self.attempts
            )
            message = f"No working authentication method. Tried {details or 'nothing'}"
        super().__init__(message)

    def attempt_for(self, method: object) -> AuthAttempt | None:
        """Return the attempt record for a method, if one was made."""
        for attempt in self.attempts:
            if attempt.method == method:
                return attempt
        return None


# ============================================================================
# Per-operation errors
# ============================================================================


class TransientNetworkError(TicketBridgeError):
    """A request kept failing with retryable errors until attempts ran out.

    Attributes:
        attempts: Number of attempts made
        last_error: The final underlying exception
        status_code: Final HTTP status, if a response was received
    """

    def __init__(
        self,
        attempts: int,
        last_error: BaseException | None = None,
        status_code: int | None = None,
        message: str | None = None,
    ) -> None:
        self.attempts = attempts
        self.last_error = last_error
        self.status_code = status_code
        if message is None:
            message = f"Request failed after {attempts} attempts"
            if status_code is not None:
                message += f" (last status {status_code})"
            elif last_error is not None:
                message += f": {last_error}"
        super().__init__(message)


class ValidationError(TicketBridgeError):
    """The backend rejected the request content.

    Backend detail is surfaced verbatim when the backend provides it.

    Attributes:
        status_code: HTTP status (200 for GraphQL errors)
        details: Messages extracted from the backend response
    """

    _default_exit_code: ClassVar[ExitCode] = ExitCode.REJECTED

    def __init__(
        self,
        status_code: int,
        details: Sequence[str] = (),
        message: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.details = tuple(details)
        if message is None:
            message = f"Backend rejected the request ({status_code})"
            if self.details:
                message += ": " + "; ".join(self.details)
        super().__init__(message)


class AuthenticationRejected(TicketBridgeError):
    """The backend refused the supplied credentials (401/403)."""

    _default_exit_code: ClassVar[ExitCode] = ExitCode.CONNECTION_FAILED

    def __init__(self, status_code: int, message: str | None = None) -> None:
        self.status_code = status_code
        if message is None:
            message = f"Authentication rejected ({status_code})"
        super().__init__(message)


class TicketNotFoundError(TicketBridgeError):
    """The requested ticket does not exist or is not visible to the user."""

    _default_exit_code: ClassVar[ExitCode] = ExitCode.NOT_FOUND

    def __init__(self, ticket_id: str, message: str | None = None) -> None:
        self.ticket_id = ticket_id
        if message is None:
            message = f"Ticket '{ticket_id}' not found"
        super().__init__(message)


class InvalidTransition(TicketBridgeError):
    """The target state is not reachable from the ticket's current state.

    Attributes:
        ticket_id: Ticket being moved
        target_state: Requested state
        current_state: State the ticket is in
        allowed: Names of the states that are reachable
    """

    _default_exit_code: ClassVar[ExitCode] = ExitCode.REJECTED

    def __init__(
        self,
        ticket_id: str,
        target_state: str,
        current_state: str = "",
        allowed: Sequence[str] = (),
        message: str | None = None,
    ) -> None:
        self.ticket_id = ticket_id
        self.target_state = target_state
        self.current_state = current_state
        self.allowed = tuple(allowed)
        if message is None:
            origin = f" from '{current_state}'" if current_state else ""
            message = f"Cannot move {ticket_id}{origin} to '{target_state}'"
            if self.allowed:
                message += f". Allowed: {', '.join(self.allowed)}"
            else:
                message += ". No transitions are available"
        super().__init__(message)


class MalformedResponseError(TicketBridgeError):
    """A successful response could not be interpreted (not JSON, missing data)."""

    def __init__(self, url: str, reason: str, message: str | None = None) -> None:
        self.url = url
        self.reason = reason
        if message is None:
            message = f"Unexpected response from {url}: {reason}"
        super().__init__(message)


class UnsupportedOperationError(TicketBridgeError):
    """The connected backend has no way to perform the requested operation."""

    def __init__(self, operation: str, backend: str, message: str | None = None) -> None:
        self.operation = operation
        self.backend = backend
        if message is None:
            message = f"{backend} does not support {operation}"
        super().__init__(message)


# ============================================================================
# Non-fatal warnings
# ============================================================================


class TranslationDegraded(UserWarning):
    """A document or value was approximated on its way to the backend."""

    pass


class FieldUnmapped(UserWarning):
    """A semantic field write was skipped because no backend field matched."""

    pass


__all__ = [
    "DetectionError",
    "UnsupportedVersionError",
    "NegotiationError",
    "TransientNetworkError",
    "ValidationError",
    "AuthenticationRejected",
    "TicketNotFoundError",
    "InvalidTransition",
    "UnsupportedOperationError",
    "MalformedResponseError",
    "TranslationDegraded",
    "FieldUnmapped",
]
