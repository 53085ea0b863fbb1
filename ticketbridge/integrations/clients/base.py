"""Base class for backend protocol clients.

A client speaks exactly one wire protocol (Linear GraphQL, Jira REST v2 or
Jira REST v3). It returns raw backend payloads for tickets and already
normalized values for small lookups (transitions, metadata, fields);
turning raw tickets into ``Ticket`` objects is the normalizers' job.

Clients never choose a protocol themselves. ``TicketProvider`` selects the
client class from the negotiated ``ServerProfile.client_kind``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any, ClassVar

from ticketbridge.integrations.documents import (
    Document,
    DocumentFormatAdapter,
    WireDocument,
    WireKind,
)
from ticketbridge.integrations.errors import UnsupportedOperationError
from ticketbridge.integrations.models import (
    BackendField,
    ClientKind,
    MetadataItem,
    MetadataKind,
    SearchQuery,
    ServerProfile,
    TicketInput,
    TicketUpdate,
    Transition,
)
from ticketbridge.integrations.transport import HttpTransport


class BackendClient(ABC):
    """Protocol-specific operations behind ``TicketProvider``.

    Attributes:
        transport: Shared retrying transport for the connection
        profile: Negotiated server profile
        adapter: Document translator
    """

    kind: ClassVar[ClientKind]
    # Text format requested from the adapter when rich documents are unavailable
    wire_target: ClassVar[WireKind] = WireKind.PLAIN_TEXT
    # Fields requested when a search is not scoped to known projects
    unscoped_search_fields: ClassVar[tuple[str, ...]] = ()

    def __init__(
        self,
        transport: HttpTransport,
        profile: ServerProfile,
        adapter: DocumentFormatAdapter | None = None,
    ) -> None:
        self.transport = transport
        self.profile = profile
        self.adapter = adapter or DocumentFormatAdapter()

    @property
    def backend_name(self) -> str:
        return f"{self.profile.family.value} {self.profile.deployment_kind.value}"

    async def _get(self, path: str, **kwargs: Any) -> Any:
        return await self.transport.request(
            "GET", path, auth=self.profile.negotiated_auth, **kwargs
        )

    async def _post(self, path: str, json_data: Any = None, **kwargs: Any) -> Any:
        return await self.transport.request(
            "POST", path, auth=self.profile.negotiated_auth, json_data=json_data, **kwargs
        )

    async def _put(self, path: str, json_data: Any = None, **kwargs: Any) -> Any:
        return await self.transport.request(
            "PUT", path, auth=self.profile.negotiated_auth, json_data=json_data, **kwargs
        )

    def encode(self, doc: Document) -> WireDocument:
        """Encode a document for this backend, warning when lossy."""
        return self.adapter.to_wire(doc, self.profile.capabilities, self.wire_target)

    def decode(self, raw: Any) -> Document:
        """Decode a description or comment body from this backend."""
        return self.adapter.decode(raw, self.wire_target)

    def unsupported(self, operation: str) -> UnsupportedOperationError:
        return UnsupportedOperationError(operation, self.backend_name)

    @abstractmethod
    async def get_ticket_raw(self, ticket_id: str) -> dict[str, Any]:
        """Fetch one ticket's raw payload.

        Raises:
            TicketNotFoundError: If the ticket does not exist
        """

    @abstractmethod
    async def search_raw(
        self, query: SearchQuery, extra_fields: Sequence[str] = ()
    ) -> list[dict[str, Any]]:
        """Run a search and return raw ticket payloads in backend order.

        Args:
            query: Search filters
            extra_fields: Backend field ids to include (mapped custom fields)
        """

    @abstractmethod
    async def create_raw(
        self,
        ticket: TicketInput,
        description: WireDocument,
        custom_fields: Mapping[str, Any],
    ) -> str:
        """Create a ticket and return its display key.

        Args:
            ticket: Ticket fields
            description: Already encoded description
            custom_fields: Values keyed by backend field id
        """

    @abstractmethod
    async def update_raw(
        self,
        ticket_id: str,
        changes: TicketUpdate,
        description: WireDocument | None,
        custom_fields: Mapping[str, Any],
    ) -> None:
        """Write the fields set on ``changes`` to an existing ticket.

        Args:
            ticket_id: Ticket key or backend id
            changes: Standard field changes
            description: Encoded description, or None to leave it unchanged
            custom_fields: Values keyed by backend field id
        """

    @abstractmethod
    async def list_transitions(self, ticket_id: str) -> list[Transition]:
        """List the workflow moves available from the ticket's current state."""

    @abstractmethod
    async def apply_transition(self, ticket_id: str, transition: Transition) -> None:
        """Move a ticket along one of its available transitions."""

    @abstractmethod
    async def add_comment(self, ticket_id: str, body: WireDocument) -> None:
        """Append a comment to a ticket."""

    @abstractmethod
    async def list_metadata(
        self,
        kind: MetadataKind,
        project_key: str | None = None,
        board_id: str | None = None,
    ) -> list[MetadataItem]:
        """List lookup values.

        Raises:
            UnsupportedOperationError: If the backend has no such list
            ValueError: If a required scope argument is missing
        """

    @abstractmethod
    async def list_project_fields(self, project_key: str) -> list[BackendField]:
        """Introspect the fields declared for a project, in declaration order."""

    @abstractmethod
    def well_known_fields(self) -> list[BackendField]:
        """Fields assumed to exist when introspection is unavailable."""


__all__ = ["BackendClient"]
