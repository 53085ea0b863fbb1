"""Shared pytest fixtures for ticketbridge tests."""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from ticketbridge.config.performance import TransportConfig
from ticketbridge.integrations.capabilities import (
    AuthMethod,
    BackendFamily,
    DeploymentKind,
    Version,
    lookup_capabilities,
)
from ticketbridge.integrations.credentials import CredentialSet
from ticketbridge.integrations.detector import LINEAR_API_URL
from ticketbridge.integrations.models import ConnectionDescriptor, ServerProfile
from ticketbridge.integrations.transport import HttpTransport

# Enable pytest-asyncio for async test support
pytest_plugins = ("pytest_asyncio",)

JIRA_URL = "https://jira.example.com"
JIRA_CLOUD_URL = "https://example.atlassian.net"

_OPERATION_NAME = re.compile(r"^\s*(?:query|mutation)\s+(\w+)")

Responder = httpx.Response | Callable[[httpx.Request], httpx.Response]


def graphql_operation(request: httpx.Request) -> str:
    """Operation name of a GraphQL request body (``query GetIssue(...)`` -> GetIssue)."""
    body = json.loads(request.content or b"{}")
    match = _OPERATION_NAME.match(body.get("query", ""))
    return match.group(1) if match else ""


def graphql_variables(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content or b"{}").get("variables", {})


class FakeBackend:
    """Canned HTTP backend for ``httpx.MockTransport``.

    REST routes are keyed by ``(method, path)``; GraphQL requests are keyed
    by ``("GRAPHQL", operation_name)``. Each route serves its responses in
    order and keeps repeating the last one. Unrouted requests get a 404.

    Attributes:
        requests: Every request received, in order
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Responder]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, *responses: Responder) -> FakeBackend:
        self.routes.setdefault((method.upper(), path), []).extend(responses)
        return self

    def add_json(
        self, method: str, path: str, payload: Any, status_code: int = 200
    ) -> FakeBackend:
        return self.add(method, path, httpx.Response(status_code, json=payload))

    def add_graphql(self, operation: str, data: Any) -> FakeBackend:
        return self.add("GRAPHQL", operation, httpx.Response(200, json={"data": data}))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/graphql"):
            key = ("GRAPHQL", graphql_operation(request))
        else:
            key = (request.method, request.url.path)
        queue = self.routes.get(key)
        if not queue:
            return httpx.Response(404, json={"errorMessages": [f"No route for {key}"]})
        responder = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(responder) and not isinstance(responder, httpx.Response):
            return responder(request)
        return responder

    def mock_transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def requests_to(self, method: str, path: str) -> list[httpx.Request]:
        if method.upper() == "GRAPHQL":
            return [r for r in self.requests if graphql_operation(r) == path]
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def json_body(self, request: httpx.Request) -> Any:
        return json.loads(request.content)

    def variables(self, request: httpx.Request) -> dict[str, Any]:
        return graphql_variables(request)


@pytest.fixture
def fake_backend() -> FakeBackend:
    """Empty fake backend; tests register the routes they need."""
    return FakeBackend()


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Async sleeper that returns immediately and records the delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def make_transport(
    fake_backend: FakeBackend, no_sleep: AsyncMock
) -> Callable[..., HttpTransport]:
    """Factory for transports wired to the fake backend with instant retries."""

    def _make(
        credentials: CredentialSet | None = None,
        *,
        max_attempts: int = 3,
        base_url: str = "",
    ) -> HttpTransport:
        return HttpTransport(
            credentials,
            TransportConfig(max_attempts=max_attempts, retry_base_delay_seconds=0),
            base_url=base_url,
            sleeper=no_sleep,
            jitter_generator=lambda _: 0.0,
            transport=fake_backend.mock_transport(),
        )

    return _make


@pytest.fixture
def basic_credentials() -> CredentialSet:
    return CredentialSet.of(username="alice", password="s3cret")


@pytest.fixture
def jira_server_connection() -> ConnectionDescriptor:
    return ConnectionDescriptor(name="work", family=BackendFamily.JIRA, base_url=JIRA_URL)


@pytest.fixture
def linear_connection() -> ConnectionDescriptor:
    return ConnectionDescriptor(name="linear", family=BackendFamily.LINEAR)


def make_profile(
    family: BackendFamily = BackendFamily.JIRA,
    kind: DeploymentKind = DeploymentKind.SERVER,
    version: Version = Version(9, 4),
    auth: AuthMethod = AuthMethod.BASIC,
    base_url: str | None = None,
) -> ServerProfile:
    """Build a negotiated profile straight from the capability tables."""
    capabilities = lookup_capabilities(family, kind, version)
    assert capabilities is not None
    if base_url is None:
        if family is BackendFamily.LINEAR:
            base_url = LINEAR_API_URL
        elif kind is DeploymentKind.CLOUD:
            base_url = JIRA_CLOUD_URL
        else:
            base_url = JIRA_URL
    return ServerProfile(
        family=family,
        deployment_kind=kind,
        version=version,
        capabilities=capabilities,
        negotiated_auth=auth,
        base_url=base_url,
    )


@pytest.fixture
def profile_factory() -> Callable[..., ServerProfile]:
    return make_profile


@pytest.fixture
def jira_server_profile() -> ServerProfile:
    return make_profile()


@pytest.fixture
def jira_cloud_profile() -> ServerProfile:
    return make_profile(kind=DeploymentKind.CLOUD, version=Version(1001, 0, 0))


@pytest.fixture
def linear_profile() -> ServerProfile:
    return make_profile(
        family=BackendFamily.LINEAR,
        kind=DeploymentKind.CLOUD,
        version=Version(1, 0, 0),
        auth=AuthMethod.API_KEY,
    )


@pytest.fixture
def temp_config_file(tmp_path: Path) -> Path:
    """Create a temporary global config file with one Jira connection."""
    config_file = tmp_path / ".ticketbridge-config"
    config_file.write_text(
        """# ticketbridge configuration
DEFAULT_CONNECTION="work"
TIMEOUT_SECONDS="45"
MAX_ATTEMPTS="5"
CONNECTION_WORK_FAMILY="jira"
CONNECTION_WORK_URL="https://jira.example.com/"
CONNECTION_WORK_DEPLOYMENT="data-center"
CONNECTION_WORK_USERNAME="alice"
CONNECTION_WORK_PASSWORD="s3cret"
"""
    )
    return config_file
