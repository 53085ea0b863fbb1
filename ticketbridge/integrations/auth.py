"""Authentication method negotiation.

Given a detected server and the available credential material, try each
authentication method in preference order (token-based before basic) and
lock in the first one the backend accepts. Every method gets a recorded
outcome so a failed negotiation can explain exactly why nothing worked.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from ticketbridge.integrations.capabilities import AUTH_PREFERENCE, AuthMethod, BackendFamily
from ticketbridge.integrations.credentials import CredentialSet
from ticketbridge.integrations.errors import (
    AuthenticationRejected,
    MalformedResponseError,
    NegotiationError,
    TicketNotFoundError,
    TransientNetworkError,
    ValidationError,
)
from ticketbridge.integrations.models import DetectedServer
from ticketbridge.integrations.transport import HttpTransport

logger = logging.getLogger(__name__)

LINEAR_VIEWER_QUERY = """
query Viewer {
  viewer { id name email }
}
"""


class AttemptOutcome(Enum):
    """What happened when a method was considered."""

    UNSUPPORTED = "unsupported by server"
    MISSING_CREDENTIALS = "missing credentials"
    REJECTED = "rejected"
    UNREACHABLE = "unreachable"
    SUCCEEDED = "succeeded"


@dataclass(frozen=True)
class AuthAttempt:
    method: AuthMethod
    outcome: AttemptOutcome
    detail: str = ""


class AuthNegotiator:
    """Selects the authentication method for a connection.

    Attributes:
        transport: Transport whose credentials are tried
        attempts: Records from the most recent negotiation
    """

    def __init__(self, transport: HttpTransport) -> None:
        self.transport = transport
        self.attempts: tuple[AuthAttempt, ...] = ()

    async def negotiate(
        self,
        detected: DetectedServer,
        credentials: CredentialSet | None = None,
    ) -> AuthMethod:
        """Find the first method that is supported, configured and accepted.

        Args:
            detected: Outcome of version detection
            credentials: Material to negotiate with; replaces the transport's
                credentials when given

        Returns:
            The verified authentication method

        Raises:
            NegotiationError: If no method succeeded; lists every attempt
        """
        if credentials is not None:
            self.transport.credentials = credentials
        material = self.transport.credentials

        attempts: list[AuthAttempt] = []
        try:
            for method in AUTH_PREFERENCE:
                if not detected.capabilities.supports(method):
                    attempts.append(AuthAttempt(method, AttemptOutcome.UNSUPPORTED))
                    continue
                if not material.has_material_for(method):
                    attempts.append(AuthAttempt(method, AttemptOutcome.MISSING_CREDENTIALS))
                    continue

                attempt = await self._try_method(detected, method)
                attempts.append(attempt)
                if attempt.outcome is AttemptOutcome.SUCCEEDED:
                    logger.info("Negotiated %s for %s", method.value, detected.base_url)
                    return method
                logger.info(
                    "Authentication with %s failed: %s %s",
                    method.value,
                    attempt.outcome.value,
                    attempt.detail,
                )
        finally:
            self.attempts = tuple(attempts)

        raise NegotiationError(attempts)

    async def _try_method(self, detected: DetectedServer, method: AuthMethod) -> AuthAttempt:
        """Make one authenticated identity call with ``method``."""
        try:
            if detected.family is BackendFamily.LINEAR:
                await self.transport.graphql(detected.base_url, LINEAR_VIEWER_QUERY, auth=method)
            else:
                api = "3" if not detected.deployment_kind.is_self_managed else "2"
                await self.transport.request(
                    "GET", f"{detected.base_url}/rest/api/{api}/myself", auth=method
                )
        except AuthenticationRejected as e:
            return AuthAttempt(method, AttemptOutcome.REJECTED, f"HTTP {e.status_code}")
        except TransientNetworkError as e:
            return AuthAttempt(method, AttemptOutcome.UNREACHABLE, str(e))
        except (ValidationError, TicketNotFoundError, MalformedResponseError) as e:
            return AuthAttempt(method, AttemptOutcome.REJECTED, str(e))
        return AuthAttempt(method, AttemptOutcome.SUCCEEDED)


__all__ = [
    "AttemptOutcome",
    "AuthAttempt",
    "AuthNegotiator",
    "LINEAR_VIEWER_QUERY",
]
