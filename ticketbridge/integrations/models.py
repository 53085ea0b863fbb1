"""Canonical data model shared by every backend.

This module defines:
- ClientKind, the tag selecting which backend client handles a connection
- ConnectionDescriptor, DetectedServer and ServerProfile for connection state
- SemanticField, FieldMapping and FieldMappingWarning for custom fields
- Ticket, TicketInput and SearchQuery for ticket operations
- MetadataKind, MetadataItem and Transition for lookups

Consumers only ever see these types; backend payloads never leave the
normalizers in ``ticketbridge.integrations.providers``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from ticketbridge.integrations.capabilities import (
    AuthMethod,
    BackendFamily,
    CapabilitySet,
    DeploymentKind,
    Version,
)
from ticketbridge.integrations.documents.model import Document, plain_text


def _frozen_mapping(value: Mapping[Any, Any] | None) -> Mapping[Any, Any]:
    return MappingProxyType(dict(value or {}))


def _normalize_for_json(obj: Any) -> Any:
    """Recursively convert enums, datetimes, documents and mappings to JSON-safe values."""
    if obj is None or isinstance(obj, bool | int | float | str):
        return obj
    if isinstance(obj, datetime | date):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Document):
        return plain_text(obj)
    if isinstance(obj, Mapping):
        return {
            (k.value if isinstance(k, Enum) else str(k)): _normalize_for_json(v)
            for k, v in obj.items()
        }
    if isinstance(obj, list | tuple | set | frozenset):
        return [_normalize_for_json(item) for item in obj]
    return repr(obj)


class ClientKind(Enum):
    """Wire protocol used for a connection.

    Attributes:
        GRAPH: Linear GraphQL API
        REST_V2: Jira REST API v2 (Server / Data Center, plain text fields)
        REST_V3: Jira REST API v3 (Cloud, ADF fields)
    """

    GRAPH = "graph"
    REST_V2 = "rest_v2"
    REST_V3 = "rest_v3"

    @classmethod
    def for_profile(cls, family: BackendFamily, deployment_kind: DeploymentKind) -> ClientKind:
        if family is BackendFamily.LINEAR:
            return cls.GRAPH
        if deployment_kind is DeploymentKind.CLOUD:
            return cls.REST_V3
        return cls.REST_V2


class TicketStatus(Enum):
    """Normalized status category across backends."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    DONE = "done"
    CLOSED = "closed"
    BLOCKED = "blocked"
    UNKNOWN = "unknown"


class SemanticField(Enum):
    """Custom fields the provider knows how to locate on every backend."""

    EPIC_LINK = "epic_link"
    STORY_POINTS = "story_points"
    SPRINT = "sprint"


class MetadataKind(Enum):
    """Lookup lists exposed by ``TicketProvider.list_metadata``."""

    PROJECTS = "projects"
    TICKET_TYPES = "ticket_types"
    PRIORITIES = "priorities"
    STATUSES = "statuses"
    USERS = "users"
    BOARDS = "boards"
    SPRINTS = "sprints"
    TEAMS = "teams"


# ============================================================================
# Connection state
# ============================================================================


@dataclass(frozen=True)
class ConnectionDescriptor:
    """Where and what to connect to.

    Attributes:
        name: Logical connection name, also the credential store namespace
        family: Backend family
        base_url: Instance root URL (ignored for Linear, which has one endpoint)
        deployment_hint: What the user believes the deployment is; detection
            may override it
    """

    name: str
    family: BackendFamily
    base_url: str = ""
    deployment_hint: DeploymentKind | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Connection name must not be empty")
        if self.family is BackendFamily.JIRA and not self.base_url:
            raise ValueError(f"Connection '{self.name}' needs a base URL")
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))


@dataclass(frozen=True)
class DetectedServer:
    """Outcome of version detection, before authentication is negotiated."""

    family: BackendFamily
    deployment_kind: DeploymentKind
    version: Version
    capabilities: CapabilitySet
    base_url: str = ""
    server_title: str = ""

    @property
    def client_kind(self) -> ClientKind:
        return ClientKind.for_profile(self.family, self.deployment_kind)

    def with_auth(self, method: AuthMethod) -> ServerProfile:
        """Promote to a full profile once ``method`` has been verified."""
        return ServerProfile(
            family=self.family,
            deployment_kind=self.deployment_kind,
            version=self.version,
            capabilities=self.capabilities,
            negotiated_auth=method,
            base_url=self.base_url,
            server_title=self.server_title,
        )


@dataclass(frozen=True)
class ServerProfile:
    """Negotiated, immutable description of a live connection.

    ``negotiated_auth`` is always one of ``capabilities.supported_auth_methods``.
    """

    family: BackendFamily
    deployment_kind: DeploymentKind
    version: Version
    capabilities: CapabilitySet
    negotiated_auth: AuthMethod
    base_url: str = ""
    server_title: str = ""

    def __post_init__(self) -> None:
        if not self.capabilities.supports(self.negotiated_auth):
            raise ValueError(
                f"{self.negotiated_auth.value} is not supported by "
                f"{self.family.value} {self.deployment_kind.value} {self.version}"
            )

    @property
    def client_kind(self) -> ClientKind:
        return ClientKind.for_profile(self.family, self.deployment_kind)


# ============================================================================
# Field mapping
# ============================================================================


class FieldMappingIssue(Enum):
    UNMAPPED = "unmapped"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class FieldMappingWarning:
    """A semantic field that could not be mapped unambiguously.

    Attributes:
        field: The semantic field concerned
        issue: Whether no candidate or several candidates matched
        candidates: Backend field ids that matched, in declaration order
    """

    field: SemanticField
    issue: FieldMappingIssue
    candidates: tuple[str, ...] = ()

    def __str__(self) -> str:
        if self.issue is FieldMappingIssue.UNMAPPED:
            return f"{self.field.value}: no matching field"
        return (
            f"{self.field.value}: {len(self.candidates)} candidates "
            f"({', '.join(self.candidates)}), using {self.candidates[0]}"
        )


@dataclass(frozen=True)
class BackendField:
    """A field as declared by the backend's project metadata.

    Attributes:
        id: Backend field identifier (``customfield_10016``, ``estimate``)
        name: Display name
        schema_type: Declared value type (``number``, ``array``, ``any``), if known
    """

    id: str
    name: str
    schema_type: str | None = None


@dataclass(frozen=True)
class FieldMapping:
    """Per-project map from semantic fields to backend field ids."""

    project_key: str
    fields: Mapping[SemanticField, str] = field(default_factory=dict)
    warnings: tuple[FieldMappingWarning, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", _frozen_mapping(self.fields))

    def backend_id(self, semantic: SemanticField) -> str | None:
        return self.fields.get(semantic)

    def is_mapped(self, semantic: SemanticField) -> bool:
        return semantic in self.fields

    def semantic_for(self, backend_id: str) -> SemanticField | None:
        """Inverse lookup used when normalizing backend payloads."""
        for semantic, mapped in self.fields.items():
            if mapped == backend_id:
                return semantic
        return None


# ============================================================================
# Tickets
# ============================================================================


@dataclass(frozen=True)
class Ticket:
    """Backend-agnostic ticket, built only by the normalizers.

    Attributes:
        id: Stable backend identifier (Jira numeric id, Linear UUID)
        display_key: Human-facing key such as ``PROJ-123`` or ``ENG-42``
        title: Summary line
        description: Semantic rich-text description
        status: Backend status name as shown in the tracker
        status_category: Normalized status
        assignee: Assignee display name
        priority: Priority name
        project_key: Jira project key or Linear team key
        custom_fields: Values of the mapped semantic fields
        ticket_type: Issue type name (Jira) or empty (Linear)
        labels: Label names
        url: Browser URL
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    id: str
    display_key: str
    title: str = ""
    description: Document = field(default_factory=Document.empty)
    status: str = ""
    status_category: TicketStatus = TicketStatus.UNKNOWN
    assignee: str | None = None
    priority: str | None = None
    project_key: str = ""
    custom_fields: Mapping[SemanticField, Any] = field(default_factory=dict)
    ticket_type: str = ""
    labels: tuple[str, ...] = ()
    url: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "custom_fields", _frozen_mapping(self.custom_fields))
        object.__setattr__(self, "labels", tuple(self.labels))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary (description as plain text)."""
        return {
            "id": self.id,
            "display_key": self.display_key,
            "title": self.title,
            "description": plain_text(self.description),
            "status": self.status,
            "status_category": self.status_category.value,
            "assignee": self.assignee,
            "priority": self.priority,
            "project_key": self.project_key,
            "custom_fields": _normalize_for_json(self.custom_fields),
            "ticket_type": self.ticket_type,
            "labels": list(self.labels),
            "url": self.url,
            "created_at": _normalize_for_json(self.created_at),
            "updated_at": _normalize_for_json(self.updated_at),
        }


@dataclass(frozen=True)
class TicketInput:
    """Fields for creating a ticket.

    ``project_key`` is the Jira project key or the Linear team key.
    """

    project_key: str
    title: str
    description: Document = field(default_factory=Document.empty)
    ticket_type: str | None = None
    priority: str | None = None
    assignee: str | None = None
    labels: tuple[str, ...] = ()
    due_date: date | None = None
    parent_key: str | None = None
    custom_fields: Mapping[SemanticField, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.project_key:
            raise ValueError("project_key is required")
        if not self.title.strip():
            raise ValueError("title is required")
        object.__setattr__(self, "custom_fields", _frozen_mapping(self.custom_fields))
        object.__setattr__(self, "labels", tuple(self.labels))

    def with_description(self, description: Document | str) -> TicketInput:
        if isinstance(description, str):
            description = Document.from_text(description)
        return replace(self, description=description)


@dataclass(frozen=True)
class TicketUpdate:
    """Changes to an existing ticket. Fields left as None are not touched.

    An empty ``assignee`` unassigns the ticket and an empty ``description``
    clears it.
    """

    title: str | None = None
    description: Document | None = None
    priority: str | None = None
    assignee: str | None = None
    labels: tuple[str, ...] | None = None
    due_date: date | None = None
    custom_fields: Mapping[SemanticField, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.title is not None and not self.title.strip():
            raise ValueError("title must not be blank")
        object.__setattr__(self, "custom_fields", _frozen_mapping(self.custom_fields))
        if self.labels is not None:
            object.__setattr__(self, "labels", tuple(self.labels))

    @property
    def has_field_changes(self) -> bool:
        """True when any standard (non-custom) field is set."""
        values = (
            self.title,
            self.description,
            self.priority,
            self.assignee,
            self.labels,
            self.due_date,
        )
        return any(value is not None for value in values)


@dataclass(frozen=True)
class SearchQuery:
    """Search filters; empty filters match everything the user can see."""

    project_keys: tuple[str, ...] = ()
    statuses: tuple[str, ...] = ()
    ticket_types: tuple[str, ...] = ()
    assignee: str | None = None
    labels: tuple[str, ...] = ()
    text: str | None = None
    max_results: int = 50
    start_at: int = 0

    def __post_init__(self) -> None:
        if self.max_results < 1:
            raise ValueError("max_results must be at least 1")
        if self.start_at < 0:
            raise ValueError("start_at must not be negative")
        for name in ("project_keys", "statuses", "ticket_types", "labels"):
            object.__setattr__(self, name, tuple(getattr(self, name)))


# ============================================================================
# Metadata
# ============================================================================


@dataclass(frozen=True)
class MetadataItem:
    """One entry of a metadata list (project, user, sprint, ...).

    Attributes:
        id: Backend identifier
        name: Display name
        key: Short key where the backend has one (project key, team key)
        extra: Additional backend-specific attributes (state, email, ...)
    """

    id: str
    name: str
    key: str = ""
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "extra", _frozen_mapping(self.extra))


@dataclass(frozen=True)
class Transition:
    """A workflow move available from a ticket's current state."""

    id: str
    name: str
    target_state: str
    target_state_id: str = ""

    def matches(self, wanted: str) -> bool:
        """Case-insensitive match on transition name, target state name or id."""
        needle = wanted.strip().casefold()
        if not needle:
            return False
        return needle in {
            self.id.casefold(),
            self.name.casefold(),
            self.target_state.casefold(),
            self.target_state_id.casefold(),
        }


__all__ = [
    "BackendField",
    "ClientKind",
    "ConnectionDescriptor",
    "DetectedServer",
    "FieldMapping",
    "FieldMappingIssue",
    "FieldMappingWarning",
    "MetadataItem",
    "MetadataKind",
    "SearchQuery",
    "SemanticField",
    "ServerProfile",
    "Ticket",
    "TicketInput",
    "TicketStatus",
    "TicketUpdate",
    "Transition",
]
