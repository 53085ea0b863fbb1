"""Static capability model for supported backends.

Capabilities are derived purely from ``(family, deployment kind, version)``
through a versioned lookup table. Each table is a sorted tuple of
CapabilityRange entries; an entry applies from its ``since`` version up to
the next entry. Adding a new backend release is a data change here, not a
logic change elsewhere.

Lookup policy ("round down"): a version that falls between two documented
points gets the capability set of the nearest lower documented point. A
capability introduced in a newer release is never assumed.
"""

from __future__ import annotations

import bisect
import re
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from types import MappingProxyType


class BackendFamily(Enum):
    """Issue tracker families the provider layer can talk to."""

    LINEAR = "linear"
    JIRA = "jira"


class DeploymentKind(Enum):
    """How a backend instance is hosted.

    SERVER and DATA_CENTER are both self-managed and expose the same API;
    they differ only in licensing.
    """

    CLOUD = "cloud"
    SERVER = "server"
    DATA_CENTER = "data_center"

    @property
    def is_self_managed(self) -> bool:
        return self is not DeploymentKind.CLOUD


class AuthMethod(Enum):
    """Authentication methods, declared in preference order.

    Attributes:
        BEARER_TOKEN: Personal access token or OAuth token sent as a Bearer header
        API_KEY: Raw API key in the Authorization header (Linear)
        BASIC: Username or email plus password or API token
    """

    BEARER_TOKEN = "bearer_token"
    API_KEY = "api_key"
    BASIC = "basic"

    @property
    def is_token_based(self) -> bool:
        return self is not AuthMethod.BASIC


# Preference order used by negotiation: token-based methods before basic.
AUTH_PREFERENCE: tuple[AuthMethod, ...] = (
    AuthMethod.BEARER_TOKEN,
    AuthMethod.API_KEY,
    AuthMethod.BASIC,
)

_VERSION_PATTERN = re.compile(r"^\s*v?(\d+)\.(\d+)(?:\.(\d+))?")


@dataclass(frozen=True, order=True)
class Version:
    """A parsed ``major.minor.patch`` backend version."""

    major: int
    minor: int = 0
    patch: int = 0

    @classmethod
    def parse(cls, text: str) -> Version:
        """Parse a version string such as ``9.4.0``, ``8.14`` or ``1001.0.0-SNAPSHOT``.

        Raises:
            ValueError: If the text does not start with ``major.minor``
        """
        if not isinstance(text, str):
            raise ValueError(f"Version must be a string, got {type(text).__name__}")
        match = _VERSION_PATTERN.match(text)
        if not match:
            raise ValueError(f"Unparseable version: {text!r}")
        major, minor, patch = match.groups()
        return cls(int(major), int(minor), int(patch or 0))

    @classmethod
    def from_parts(cls, parts: list[int] | tuple[int, ...]) -> Version:
        """Build a version from a numeric list like Jira's ``versionNumbers``.

        Raises:
            ValueError: If fewer than two numeric parts are given
        """
        if len(parts) < 2 or not all(isinstance(p, int) and p >= 0 for p in parts[:3]):
            raise ValueError(f"Unusable version numbers: {parts!r}")
        padded = list(parts[:3]) + [0] * (3 - len(parts[:3]))
        return cls(padded[0], padded[1], padded[2])

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class CapabilitySet:
    """Optional backend behaviors available on a given release.

    Never mutated after creation; build variants with ``dataclasses.replace``.

    Attributes:
        supported_auth_methods: Authentication methods the backend accepts
        personal_access_tokens: Bearer personal access tokens are accepted
        rich_document_format: Free text uses the structured document format
        bulk_operations: Bulk create/update endpoints exist
        field_schema_introspection: Per-project field schema can be queried
        agile_endpoints: Boards and sprints are available
        workflow_properties: Workflow transition properties are exposed
        advanced_search: The full query language is available for search
    """

    supported_auth_methods: frozenset[AuthMethod] = field(default_factory=frozenset)
    personal_access_tokens: bool = False
    rich_document_format: bool = False
    bulk_operations: bool = False
    field_schema_introspection: bool = False
    agile_endpoints: bool = False
    workflow_properties: bool = False
    advanced_search: bool = False

    def supports(self, method: AuthMethod) -> bool:
        """Check whether an authentication method is declared for this release."""
        return method in self.supported_auth_methods

    def enabled_flags(self) -> frozenset[str]:
        """Names of the boolean capabilities that are switched on."""
        return frozenset(f.name for f in fields(self) if getattr(self, f.name) is True)


@dataclass(frozen=True)
class CapabilityRange:
    """One documented point in a capability table.

    Applies to every version ``>= since`` until the next entry.
    """

    since: Version
    capabilities: CapabilitySet
    note: str = ""


# ============================================================================
# Capability tables
# ============================================================================

# Jira Server / Data Center. Descriptions are plain text (wiki markup) on
# every self-managed release, so rich_document_format stays off throughout.
_JIRA_SERVER_8_0 = CapabilitySet(
    supported_auth_methods=frozenset({AuthMethod.BASIC}),
    agile_endpoints=True,
    advanced_search=True,
)
_JIRA_SERVER_8_5 = replace(_JIRA_SERVER_8_0, bulk_operations=True)
_JIRA_SERVER_8_14 = replace(
    _JIRA_SERVER_8_5,
    supported_auth_methods=frozenset({AuthMethod.BEARER_TOKEN, AuthMethod.BASIC}),
    personal_access_tokens=True,
)
_JIRA_SERVER_8_20 = replace(_JIRA_SERVER_8_14, workflow_properties=True)
_JIRA_SERVER_9_0 = replace(_JIRA_SERVER_8_20, field_schema_introspection=True)

JIRA_SELF_MANAGED_TABLE: tuple[CapabilityRange, ...] = (
    CapabilityRange(Version(8, 0), _JIRA_SERVER_8_0, "minimum supported release"),
    CapabilityRange(Version(8, 5), _JIRA_SERVER_8_5, "bulk operations"),
    CapabilityRange(Version(8, 14), _JIRA_SERVER_8_14, "personal access tokens"),
    CapabilityRange(Version(8, 20), _JIRA_SERVER_8_20, "workflow properties"),
    CapabilityRange(Version(9, 0), _JIRA_SERVER_9_0, "project field schema"),
    CapabilityRange(Version(9, 4), _JIRA_SERVER_9_0, "long term support"),
    CapabilityRange(Version(9, 12), _JIRA_SERVER_9_0, "long term support"),
)

# Jira Cloud is continuously deployed and reports versions like 1001.0.0.
JIRA_CLOUD_TABLE: tuple[CapabilityRange, ...] = (
    CapabilityRange(
        Version(0, 0),
        CapabilitySet(
            supported_auth_methods=frozenset({AuthMethod.BEARER_TOKEN, AuthMethod.BASIC}),
            rich_document_format=True,
            bulk_operations=True,
            field_schema_introspection=True,
            agile_endpoints=True,
            workflow_properties=True,
            advanced_search=True,
        ),
        "REST API v3",
    ),
)

# Linear exposes a single GraphQL schema; descriptions are markdown, not the
# structured document format, and there are no boards or custom field schemas.
LINEAR_TABLE: tuple[CapabilityRange, ...] = (
    CapabilityRange(
        Version(1, 0),
        CapabilitySet(
            supported_auth_methods=frozenset({AuthMethod.API_KEY, AuthMethod.BEARER_TOKEN}),
            bulk_operations=True,
            advanced_search=True,
        ),
        "GraphQL API",
    ),
)

CAPABILITY_TABLE: MappingProxyType[
    tuple[BackendFamily, DeploymentKind], tuple[CapabilityRange, ...]
] = MappingProxyType(
    {
        (BackendFamily.JIRA, DeploymentKind.SERVER): JIRA_SELF_MANAGED_TABLE,
        (BackendFamily.JIRA, DeploymentKind.DATA_CENTER): JIRA_SELF_MANAGED_TABLE,
        (BackendFamily.JIRA, DeploymentKind.CLOUD): JIRA_CLOUD_TABLE,
        (BackendFamily.LINEAR, DeploymentKind.CLOUD): LINEAR_TABLE,
    }
)


def capability_ranges(family: BackendFamily, kind: DeploymentKind) -> tuple[CapabilityRange, ...]:
    """Return the documented ranges for a family and deployment kind.

    Raises:
        KeyError: If the combination is not supported (e.g. self-managed Linear)
    """
    try:
        return CAPABILITY_TABLE[(family, kind)]
    except KeyError:
        raise KeyError(f"No capability table for {family.value}/{kind.value}") from None


def documented_versions(family: BackendFamily, kind: DeploymentKind) -> tuple[Version, ...]:
    """List the documented version points for a family and deployment kind."""
    return tuple(entry.since for entry in capability_ranges(family, kind))


def minimum_version(family: BackendFamily, kind: DeploymentKind) -> Version:
    """Lowest documented version for a family and deployment kind."""
    return capability_ranges(family, kind)[0].since


def lookup_capabilities(
    family: BackendFamily,
    kind: DeploymentKind,
    version: Version,
) -> CapabilitySet | None:
    """Find the capability set for a version using the round-down policy.

    Args:
        family: Backend family
        kind: Deployment kind
        version: Parsed backend version

    Returns:
        Capabilities of the greatest documented version ``<= version``,
        or None if the version is older than every documented point.

    Raises:
        KeyError: If the family/kind combination has no table
    """
    ranges = capability_ranges(family, kind)
    boundaries = [entry.since for entry in ranges]
    index = bisect.bisect_right(boundaries, version) - 1
    if index < 0:
        return None
    return ranges[index].capabilities


__all__ = [
    "AUTH_PREFERENCE",
    "CAPABILITY_TABLE",
    "AuthMethod",
    "BackendFamily",
    "CapabilityRange",
    "CapabilitySet",
    "DeploymentKind",
    "Version",
    "capability_ranges",
    "documented_versions",
    "lookup_capabilities",
    "minimum_version",
]
