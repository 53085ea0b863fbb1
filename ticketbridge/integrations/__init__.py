"""Ticket provider layer for ticketbridge.

This package contains:
- provider: TicketProvider, the uniform async ticket contract
- capabilities: Static capability tables keyed by backend version
- detector: Version and capability detection
- auth: Authentication method negotiation
- documents: Semantic rich text and its wire formats (ADF, plain text, markdown)
- fields: Per-project semantic field resolution
- clients: Wire protocol clients (Linear GraphQL, Jira REST v2/v3)
- providers: Normalizers from backend payloads to Ticket
- transport: Retrying HTTP transport
- cache: Metadata TTL cache
- credentials: Credential material and stores
"""

from ticketbridge.integrations.auth import AttemptOutcome, AuthAttempt, AuthNegotiator
from ticketbridge.integrations.cache import MetadataCache, MetadataCacheKey
from ticketbridge.integrations.capabilities import (
    AUTH_PREFERENCE,
    AuthMethod,
    BackendFamily,
    CapabilitySet,
    DeploymentKind,
    Version,
    lookup_capabilities,
)
from ticketbridge.integrations.credentials import (
    CredentialSet,
    CredentialStore,
    EnvironmentCredentialStore,
    InMemoryCredentialStore,
    load_credentials,
)
from ticketbridge.integrations.detector import VersionDetector
from ticketbridge.integrations.documents import Document, DocumentFormatAdapter, WireKind
from ticketbridge.integrations.errors import (
    AuthenticationRejected,
    DetectionError,
    FieldUnmapped,
    InvalidTransition,
    MalformedResponseError,
    NegotiationError,
    TicketNotFoundError,
    TransientNetworkError,
    TranslationDegraded,
    UnsupportedOperationError,
    UnsupportedVersionError,
    ValidationError,
)
from ticketbridge.integrations.fields import FieldMappingResolver, match_fields
from ticketbridge.integrations.models import (
    BackendField,
    ClientKind,
    ConnectionDescriptor,
    DetectedServer,
    FieldMapping,
    FieldMappingIssue,
    FieldMappingWarning,
    MetadataItem,
    MetadataKind,
    SearchQuery,
    SemanticField,
    ServerProfile,
    Ticket,
    TicketInput,
    TicketStatus,
    TicketUpdate,
    Transition,
)
from ticketbridge.integrations.provider import TicketProvider
from ticketbridge.integrations.transport import HttpTransport

__all__ = [
    # Provider
    "TicketProvider",
    # Connection
    "AUTH_PREFERENCE",
    "AttemptOutcome",
    "AuthAttempt",
    "AuthMethod",
    "AuthNegotiator",
    "BackendFamily",
    "CapabilitySet",
    "ClientKind",
    "ConnectionDescriptor",
    "DeploymentKind",
    "DetectedServer",
    "ServerProfile",
    "Version",
    "VersionDetector",
    "lookup_capabilities",
    # Credentials
    "CredentialSet",
    "CredentialStore",
    "EnvironmentCredentialStore",
    "InMemoryCredentialStore",
    "load_credentials",
    # Model
    "BackendField",
    "Document",
    "DocumentFormatAdapter",
    "FieldMapping",
    "FieldMappingIssue",
    "FieldMappingResolver",
    "FieldMappingWarning",
    "MetadataItem",
    "MetadataKind",
    "SearchQuery",
    "SemanticField",
    "Ticket",
    "TicketInput",
    "TicketStatus",
    "TicketUpdate",
    "Transition",
    "WireKind",
    "match_fields",
    # Infrastructure
    "HttpTransport",
    "MetadataCache",
    "MetadataCacheKey",
    # Errors
    "AuthenticationRejected",
    "DetectionError",
    "FieldUnmapped",
    "InvalidTransition",
    "MalformedResponseError",
    "NegotiationError",
    "TicketNotFoundError",
    "TransientNetworkError",
    "TranslationDegraded",
    "UnsupportedOperationError",
    "UnsupportedVersionError",
    "ValidationError",
]
