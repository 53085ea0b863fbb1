"""Tests for ticketbridge.integrations.auth module.

Tests cover:
- Preference order (token-based before basic)
- Per-method outcomes recorded on failure
- Old Jira Server with only a token configured
- Jira Cloud and Linear identity checks
"""

import httpx
import pytest

from ticketbridge.integrations.auth import AttemptOutcome, AuthNegotiator
from ticketbridge.integrations.capabilities import (
    AuthMethod,
    BackendFamily,
    DeploymentKind,
    Version,
    lookup_capabilities,
)
from ticketbridge.integrations.credentials import CredentialSet
from ticketbridge.integrations.detector import LINEAR_API_URL
from ticketbridge.integrations.errors import NegotiationError
from ticketbridge.integrations.models import DetectedServer

JIRA_URL = "https://jira.example.com"
CLOUD_URL = "https://example.atlassian.net"


def detected_jira(version, kind=DeploymentKind.SERVER, base_url=JIRA_URL):
    capabilities = lookup_capabilities(BackendFamily.JIRA, kind, version)
    return DetectedServer(
        family=BackendFamily.JIRA,
        deployment_kind=kind,
        version=version,
        capabilities=capabilities,
        base_url=base_url,
    )


def detected_linear():
    return DetectedServer(
        family=BackendFamily.LINEAR,
        deployment_kind=DeploymentKind.CLOUD,
        version=Version(1, 0),
        capabilities=lookup_capabilities(
            BackendFamily.LINEAR, DeploymentKind.CLOUD, Version(1, 0)
        ),
        base_url=LINEAR_API_URL,
    )


# =============================================================================
# Failed negotiation
# =============================================================================


class TestNegotiationFailure:
    """Tests for negotiation that cannot succeed."""

    @pytest.mark.asyncio
    async def test_old_server_with_only_a_token(self, fake_backend, make_transport):
        """Jira Server 8.5 predates tokens, so a token-only setup cannot connect."""
        negotiator = AuthNegotiator(make_transport(CredentialSet.of(token="pat-123")))

        with pytest.raises(NegotiationError) as exc_info:
            await negotiator.negotiate(detected_jira(Version(8, 5)))

        error = exc_info.value
        outcomes = [(a.method, a.outcome) for a in error.attempts]
        assert outcomes == [
            (AuthMethod.BEARER_TOKEN, AttemptOutcome.UNSUPPORTED),
            (AuthMethod.API_KEY, AttemptOutcome.UNSUPPORTED),
            (AuthMethod.BASIC, AttemptOutcome.MISSING_CREDENTIALS),
        ]
        assert fake_backend.requests == []
        assert error.exit_code == 2
        assert "missing credentials" in str(error)

    @pytest.mark.asyncio
    async def test_every_method_rejected(self, fake_backend, make_transport):
        fake_backend.add_json("GET", "/rest/api/2/myself", {}, status_code=401)
        credentials = CredentialSet.of(token="bad", username="alice", password="wrong")
        negotiator = AuthNegotiator(make_transport(credentials))

        with pytest.raises(NegotiationError) as exc_info:
            await negotiator.negotiate(detected_jira(Version(9, 4)))

        error = exc_info.value
        assert error.attempt_for(AuthMethod.BEARER_TOKEN).outcome is AttemptOutcome.REJECTED
        assert error.attempt_for(AuthMethod.BASIC).outcome is AttemptOutcome.REJECTED
        assert error.attempt_for(AuthMethod.BASIC).detail == "HTTP 401"
        assert negotiator.attempts == error.attempts

    @pytest.mark.asyncio
    async def test_unreachable_identity_endpoint(self, fake_backend, make_transport):
        fake_backend.add("GET", "/rest/api/2/myself", httpx.Response(502))
        negotiator = AuthNegotiator(make_transport(CredentialSet.of(token="pat"), max_attempts=1))

        with pytest.raises(NegotiationError) as exc_info:
            await negotiator.negotiate(detected_jira(Version(9, 4)))

        attempt = exc_info.value.attempt_for(AuthMethod.BEARER_TOKEN)
        assert attempt.outcome is AttemptOutcome.UNREACHABLE


# =============================================================================
# Successful negotiation
# =============================================================================


class TestNegotiationSuccess:
    """Tests for picking the first working method."""

    @pytest.mark.asyncio
    async def test_bearer_preferred_on_8_14(self, fake_backend, make_transport):
        fake_backend.add_json("GET", "/rest/api/2/myself", {"name": "alice"})
        credentials = CredentialSet.of(token="pat-1", username="alice", password="pw")
        negotiator = AuthNegotiator(make_transport(credentials))

        method = await negotiator.negotiate(detected_jira(Version(8, 14)))

        assert method is AuthMethod.BEARER_TOKEN
        assert len(fake_backend.requests) == 1
        assert fake_backend.requests[0].headers["Authorization"] == "Bearer pat-1"

    @pytest.mark.asyncio
    async def test_falls_back_to_basic_when_token_rejected(self, fake_backend, make_transport):
        def by_header(request):
            if request.headers.get("Authorization", "").startswith("Bearer"):
                return httpx.Response(401, json={})
            return httpx.Response(200, json={"name": "alice"})

        fake_backend.add("GET", "/rest/api/2/myself", by_header)
        credentials = CredentialSet.of(token="expired", username="alice", password="pw")
        negotiator = AuthNegotiator(make_transport(credentials))

        method = await negotiator.negotiate(detected_jira(Version(9, 4)))

        assert method is AuthMethod.BASIC
        assert [a.outcome for a in negotiator.attempts] == [
            AttemptOutcome.REJECTED,
            AttemptOutcome.UNSUPPORTED,
            AttemptOutcome.SUCCEEDED,
        ]

    @pytest.mark.asyncio
    async def test_cloud_checks_v3_identity(self, fake_backend, make_transport):
        fake_backend.add_json("GET", "/rest/api/3/myself", {"accountId": "abc"})
        credentials = CredentialSet.of(email="alice@example.com", api_token="tok")
        negotiator = AuthNegotiator(make_transport(credentials))

        method = await negotiator.negotiate(
            detected_jira(Version(1001, 0, 0), kind=DeploymentKind.CLOUD, base_url=CLOUD_URL)
        )

        assert method is AuthMethod.BASIC
        assert fake_backend.requests[0].url.host == "example.atlassian.net"

    @pytest.mark.asyncio
    async def test_credentials_argument_replaces_transport_material(
        self, fake_backend, make_transport
    ):
        fake_backend.add_json("GET", "/rest/api/2/myself", {"name": "alice"})
        transport = make_transport()
        negotiator = AuthNegotiator(transport)

        method = await negotiator.negotiate(
            detected_jira(Version(8, 5)), CredentialSet.of(username="alice", password="pw")
        )

        assert method is AuthMethod.BASIC
        assert transport.credentials.identity == "alice"


class TestLinearNegotiation:
    """Tests for the Linear viewer check."""

    @pytest.mark.asyncio
    async def test_api_key(self, fake_backend, make_transport):
        fake_backend.add_graphql("Viewer", {"viewer": {"id": "u1", "name": "A", "email": "a@x"}})
        negotiator = AuthNegotiator(make_transport(CredentialSet.of(api_key="lin_api_1")))

        method = await negotiator.negotiate(detected_linear())

        assert method is AuthMethod.API_KEY
        assert fake_backend.requests[0].headers["Authorization"] == "lin_api_1"
        assert negotiator.attempts[0].outcome is AttemptOutcome.MISSING_CREDENTIALS

    @pytest.mark.asyncio
    async def test_oauth_token_preferred_over_api_key(self, fake_backend, make_transport):
        fake_backend.add_graphql("Viewer", {"viewer": {"id": "u1", "name": "A", "email": "a@x"}})
        credentials = CredentialSet.of(token="oauth-1", api_key="lin_api_1")
        negotiator = AuthNegotiator(make_transport(credentials))

        method = await negotiator.negotiate(detected_linear())

        assert method is AuthMethod.BEARER_TOKEN

    @pytest.mark.asyncio
    async def test_graphql_authentication_error_is_rejected(self, fake_backend, make_transport):
        fake_backend.add(
            "GRAPHQL",
            "Viewer",
            httpx.Response(
                200,
                json={
                    "errors": [
                        {"message": "bad key", "extensions": {"code": "UNAUTHENTICATED"}}
                    ]
                },
            ),
        )
        negotiator = AuthNegotiator(make_transport(CredentialSet.of(api_key="bad")))

        with pytest.raises(NegotiationError) as exc_info:
            await negotiator.negotiate(detected_linear())

        assert exc_info.value.attempt_for(AuthMethod.API_KEY).outcome is AttemptOutcome.REJECTED
        assert exc_info.value.attempt_for(AuthMethod.BASIC).outcome is AttemptOutcome.UNSUPPORTED
