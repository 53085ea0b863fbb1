"""TicketProvider: the single ticket contract over every backend.

One provider serves one connection and owns its transport, caches and
connection state. Nothing is shared between providers.

Connection lifecycle:
    The first operation triggers version detection followed by
    authentication negotiation. Both run inside one shared task: concurrent
    callers await the same task through ``asyncio.shield``, so a cancelled
    caller never cancels the connection attempt for the others. The profile
    is stored only once both steps succeeded. A DetectionError or
    NegotiationError is remembered and re-raised until ``reconnect()``.

Every operation then:
    1. Ensures the ServerProfile
    2. Resolves the FieldMapping for project-scoped work
    3. Translates free text through the DocumentFormatAdapter
    4. Dispatches to the client registered for the profile's ClientKind
    5. Normalizes the backend payload into a Ticket
"""

from __future__ import annotations

import asyncio
import logging
import warnings
from collections.abc import Mapping
from typing import Any

from ticketbridge.config.performance import CacheConfig, TransportConfig
from ticketbridge.integrations.auth import AuthAttempt, AuthNegotiator
from ticketbridge.integrations.cache import MetadataCache, MetadataCacheKey
from ticketbridge.integrations.clients import CLIENT_REGISTRY, BackendClient
from ticketbridge.integrations.credentials import (
    CredentialSet,
    CredentialStore,
    load_credentials,
)
from ticketbridge.integrations.detector import VersionDetector
from ticketbridge.integrations.documents import Document, DocumentFormatAdapter
from ticketbridge.integrations.errors import (
    DetectionError,
    FieldUnmapped,
    InvalidTransition,
    NegotiationError,
)
from ticketbridge.integrations.fields import FieldMappingResolver
from ticketbridge.integrations.models import (
    ConnectionDescriptor,
    FieldMapping,
    MetadataItem,
    MetadataKind,
    SearchQuery,
    SemanticField,
    ServerProfile,
    Ticket,
    TicketInput,
    TicketUpdate,
    Transition,
)
from ticketbridge.integrations.providers import TicketNormalizer, normalizer_for
from ticketbridge.integrations.transport import HttpTransport

logger = logging.getLogger(__name__)

# Errors that end a connection attempt and stay raised until reconnect()
CONNECTION_ERRORS = (DetectionError, NegotiationError)


class TicketProvider:
    """Uniform async ticket operations for one connection.

    Example:
        async with TicketProvider(connection, credentials) as provider:
            ticket = await provider.get_ticket("PROJ-123")

    Attributes:
        connection: Where to connect
        metadata_cache: TTL/LRU cache for metadata lists
        auth_attempts: Outcome of every method tried during the last negotiation
    """

    def __init__(
        self,
        connection: ConnectionDescriptor,
        credentials: CredentialSet | None = None,
        *,
        credential_store: CredentialStore | None = None,
        transport: HttpTransport | None = None,
        transport_config: TransportConfig | None = None,
        cache_config: CacheConfig | None = None,
        adapter: DocumentFormatAdapter | None = None,
    ) -> None:
        """Initialize the provider. No request is made until the first operation.

        Args:
            connection: Connection descriptor
            credentials: Credential material; takes precedence over the store
            credential_store: Store read (once per connection attempt) when no
                credentials are given
            transport: Pre-built transport; the caller remains responsible for
                closing it
            transport_config: Settings for the transport created when none is given
            cache_config: Metadata cache settings
            adapter: Document translator
        """
        self.connection = connection
        self._credentials = credentials
        self._credential_store = credential_store
        self._owns_transport = transport is None
        self._transport = transport or HttpTransport(
            config=transport_config, base_url=connection.base_url
        )
        self._adapter = adapter or DocumentFormatAdapter()
        self.metadata_cache = MetadataCache(cache_config)
        self.auth_attempts: tuple[AuthAttempt, ...] = ()

        self._profile: ServerProfile | None = None
        self._connect_task: asyncio.Task[ServerProfile] | None = None
        self._connect_error: BaseException | None = None
        self._normalizer: TicketNormalizer | None = None
        self._fields: FieldMappingResolver | None = None

    async def __aenter__(self) -> TicketProvider:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def transport(self) -> HttpTransport:
        return self._transport

    @property
    def connected_profile(self) -> ServerProfile | None:
        """The negotiated profile, or None before a successful connection."""
        return self._profile

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def profile(self) -> ServerProfile:
        """Return the negotiated profile, connecting on first use.

        Raises:
            DetectionError: If the backend version could not be established
            NegotiationError: If no authentication method was accepted
        """
        if self._profile is not None:
            return self._profile
        if self._connect_error is not None:
            raise self._connect_error

        task = self._connect_task
        if task is None:
            task = asyncio.get_running_loop().create_task(self._connect())
            self._connect_task = task
            task.add_done_callback(self._settle_connection)
        return await asyncio.shield(task)

    def _resolve_credentials(self) -> CredentialSet:
        if self._credentials is not None:
            return self._credentials
        if self._credential_store is not None:
            return load_credentials(self._credential_store, self.connection.name)
        return CredentialSet()

    async def _connect(self) -> ServerProfile:
        credentials = self._resolve_credentials()
        self._transport.credentials = credentials

        detected = await VersionDetector(self._transport).detect(self.connection)
        negotiator = AuthNegotiator(self._transport)
        try:
            method = await negotiator.negotiate(detected, credentials)
        finally:
            self.auth_attempts = negotiator.attempts
        return detected.with_auth(method)

    def _settle_connection(self, task: asyncio.Task[ServerProfile]) -> None:
        # A task superseded by reconnect() must not touch the new state
        if self._connect_task is not task:
            return
        self._connect_task = None
        if task.cancelled():
            return

        error = task.exception()
        if error is not None:
            if isinstance(error, CONNECTION_ERRORS):
                self._connect_error = error
            logger.info("Connection '%s' failed: %s", self.connection.name, error)
            return

        profile = task.result()
        self._normalizer = normalizer_for(profile.family, profile.base_url)
        self._fields = FieldMappingResolver(self._client(profile), profile.capabilities)
        self._profile = profile
        logger.info(
            "Connected '%s': %s %s %s via %s",
            self.connection.name,
            profile.family.value,
            profile.deployment_kind.value,
            profile.version,
            profile.negotiated_auth.value,
        )

    async def reconnect(self) -> ServerProfile:
        """Forget the profile and every cache, then connect again."""
        self._profile = None
        self._connect_error = None
        self._connect_task = None
        self._normalizer = None
        if self._fields is not None:
            self._fields.invalidate_all()
        self._fields = None
        self.metadata_cache.clear()
        return await self.profile()

    async def close(self) -> None:
        """Release the transport if this provider created it."""
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
        if self._owns_transport:
            await self._transport.close()

    def _client(self, profile: ServerProfile) -> BackendClient:
        client_cls = CLIENT_REGISTRY[profile.client_kind]
        return client_cls(self._transport, profile, self._adapter)

    async def _connected(self) -> tuple[ServerProfile, BackendClient]:
        profile = await self.profile()
        return profile, self._client(profile)

    # ------------------------------------------------------------------
    # Field mapping
    # ------------------------------------------------------------------

    async def field_mapping(self, project_key: str) -> FieldMapping:
        """Resolve (once) the semantic field mapping of a project."""
        await self.profile()
        assert self._fields is not None
        return await self._fields.resolve(project_key)

    def invalidate_fields(self, project_key: str | None = None) -> None:
        """Drop cached field mappings so the next use rediscovers them."""
        if self._fields is None:
            return
        if project_key is None:
            self._fields.invalidate_all()
        else:
            self._fields.invalidate(project_key)

    def _backend_custom_fields(
        self, mapping: FieldMapping, values: Mapping[SemanticField, Any]
    ) -> dict[str, Any]:
        """Translate semantic field values to backend ids, skipping unmapped ones."""
        backend_values: dict[str, Any] = {}
        for semantic, value in values.items():
            backend_id = mapping.backend_id(semantic)
            if backend_id is None:
                message = (
                    f"{semantic.value} is not mapped in project {mapping.project_key}; "
                    "value not written"
                )
                logger.warning(message)
                warnings.warn(message, FieldUnmapped, stacklevel=3)
                continue
            backend_values[backend_id] = value
        return backend_values

    async def _normalize(self, client: BackendClient, raw: dict[str, Any]) -> Ticket:
        assert self._normalizer is not None
        project_key = self._normalizer.project_key_of(raw)
        mapping = await self.field_mapping(project_key) if project_key else None
        return self._normalizer.normalize(raw, client.decode, mapping)

    # ------------------------------------------------------------------
    # Ticket operations
    # ------------------------------------------------------------------

    async def get_ticket(self, ticket_id: str) -> Ticket:
        """Fetch one ticket by key (``PROJ-123``, ``ENG-42``) or backend id.

        Raises:
            TicketNotFoundError: If the ticket does not exist
        """
        _, client = await self._connected()
        raw = await client.get_ticket_raw(ticket_id)
        return await self._normalize(client, raw)

    async def search(self, query: SearchQuery | None = None) -> list[Ticket]:
        """Search tickets, most recently updated first."""
        query = query or SearchQuery()
        _, client = await self._connected()

        if query.project_keys:
            mappings = await asyncio.gather(*(self.field_mapping(k) for k in query.project_keys))
            extra_fields = [
                backend_id for mapping in mappings for backend_id in mapping.fields.values()
            ]
        else:
            # The result projects are unknown until the search returns
            assert self._fields is not None
            extra_fields = [*client.unscoped_search_fields, *self._fields.known_backend_ids()]
        raw_tickets = await client.search_raw(query, extra_fields)
        logger.debug("Search returned %d tickets", len(raw_tickets))
        return [await self._normalize(client, raw) for raw in raw_tickets]

    async def create(self, ticket: TicketInput) -> Ticket:
        """Create a ticket and return it as stored by the backend.

        Custom field values for semantic fields that are not mapped in the
        project are skipped with a FieldUnmapped warning.
        """
        _, client = await self._connected()
        mapping = await self.field_mapping(ticket.project_key)
        custom_fields = self._backend_custom_fields(mapping, ticket.custom_fields)
        description = client.encode(ticket.description)

        key = await client.create_raw(ticket, description, custom_fields)
        return await self.get_ticket(key)

    async def update(self, ticket_id: str, changes: TicketUpdate) -> Ticket:
        """Apply ``changes`` to an existing ticket and return the refreshed ticket.

        The description is encoded for the backend like on create. Custom
        field values for semantic fields not mapped in the ticket's project
        are skipped with a FieldUnmapped warning.
        """
        _, client = await self._connected()
        custom_fields: dict[str, Any] = {}
        if changes.custom_fields:
            assert self._normalizer is not None
            raw = await client.get_ticket_raw(ticket_id)
            project_key = self._normalizer.project_key_of(raw)
            mapping = (
                await self.field_mapping(project_key)
                if project_key
                else FieldMapping(project_key="")
            )
            custom_fields = self._backend_custom_fields(mapping, changes.custom_fields)

        if not changes.has_field_changes and not custom_fields:
            logger.info("Nothing to update on %s", ticket_id)
            return await self.get_ticket(ticket_id)

        description = (
            client.encode(changes.description) if changes.description is not None else None
        )
        await client.update_raw(ticket_id, changes, description, custom_fields)
        return await self.get_ticket(ticket_id)

    async def list_transitions(self, ticket_id: str) -> list[Transition]:
        """Workflow moves available from the ticket's current state."""
        _, client = await self._connected()
        return await client.list_transitions(ticket_id)

    async def update_status(self, ticket_id: str, target_state: str) -> Ticket:
        """Move a ticket to ``target_state`` through a declared transition.

        The target is matched case-insensitively against transition names,
        target state names and ids.

        Raises:
            InvalidTransition: If no available transition leads there; no
                write request is made
        """
        _, client = await self._connected()
        transitions = await client.list_transitions(ticket_id)
        chosen = next((t for t in transitions if t.matches(target_state)), None)
        if chosen is None:
            raise InvalidTransition(
                ticket_id,
                target_state,
                allowed=[t.target_state or t.name for t in transitions],
            )

        await client.apply_transition(ticket_id, chosen)
        return await self.get_ticket(ticket_id)

    async def add_comment(self, ticket_id: str, text: Document | str) -> Ticket:
        """Append a comment, encoded in the backend's document format."""
        _, client = await self._connected()
        doc = Document.from_text(text) if isinstance(text, str) else text
        await client.add_comment(ticket_id, client.encode(doc))
        logger.info("Commented on %s", ticket_id)
        return await self.get_ticket(ticket_id)

    async def list_metadata(
        self,
        kind: MetadataKind,
        *,
        project_key: str | None = None,
        board_id: str | None = None,
    ) -> list[MetadataItem]:
        """List lookup values, served from the metadata cache when fresh.

        Raises:
            UnsupportedOperationError: If the backend has no such list
        """
        _, client = await self._connected()
        key = MetadataCacheKey(kind, project_key, board_id)
        cached = self.metadata_cache.get(key)
        if cached is not None:
            return cached

        items = await client.list_metadata(kind, project_key, board_id)
        self.metadata_cache.set(key, items)
        return items


__all__ = ["CONNECTION_ERRORS", "TicketProvider"]
