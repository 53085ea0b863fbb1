"""Protocol clients, one per wire protocol.

CLIENT_REGISTRY maps a profile's ClientKind to the class that speaks it.
"""

from types import MappingProxyType

from ticketbridge.integrations.clients.base import BackendClient
from ticketbridge.integrations.clients.jira import (
    JiraRestClient,
    RestClientV2,
    RestClientV3,
    build_jql,
)
from ticketbridge.integrations.clients.linear import LinearGraphClient, build_issue_filter
from ticketbridge.integrations.models import ClientKind

CLIENT_REGISTRY: MappingProxyType[ClientKind, type[BackendClient]] = MappingProxyType(
    {
        ClientKind.GRAPH: LinearGraphClient,
        ClientKind.REST_V2: RestClientV2,
        ClientKind.REST_V3: RestClientV3,
    }
)

__all__ = [
    "BackendClient",
    "CLIENT_REGISTRY",
    "JiraRestClient",
    "LinearGraphClient",
    "RestClientV2",
    "RestClientV3",
    "build_issue_filter",
    "build_jql",
]
