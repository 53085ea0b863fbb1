"""Base class for backend payload normalizers.

A normalizer turns one raw backend ticket payload into the canonical
``Ticket``. It is the only place where backend field names are read, so
consumers never see backend-specific shapes.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any, ClassVar

from ticketbridge.integrations.capabilities import BackendFamily
from ticketbridge.integrations.documents import Document
from ticketbridge.integrations.models import FieldMapping, SemanticField, Ticket, TicketStatus

logger = logging.getLogger(__name__)

DocumentDecoder = Callable[[Any], Document]

_OFFSET_WITHOUT_COLON = re.compile(r"[+-]\d{4}$")


class TicketNormalizer(ABC):
    """Converts raw payloads of one backend family into Tickets.

    Attributes:
        base_url: Instance root used to build browser URLs
    """

    family: ClassVar[BackendFamily]

    def __init__(self, base_url: str = "") -> None:
        self.base_url = base_url.rstrip("/")

    @abstractmethod
    def normalize(
        self,
        raw: dict[str, Any],
        decode: DocumentDecoder,
        mapping: FieldMapping | None = None,
    ) -> Ticket:
        """Build a Ticket from a raw payload.

        Args:
            raw: Backend ticket payload
            decode: Converts the raw description value into a Document
            mapping: Field mapping for the ticket's project; custom fields
                are only read when one is given

        Raises:
            ValueError: If the payload has no ticket key
        """

    @abstractmethod
    def project_key_of(self, raw: dict[str, Any]) -> str:
        """Project (Jira) or team (Linear) key of a raw payload."""

    @abstractmethod
    def custom_value(self, raw: dict[str, Any], semantic: SemanticField, backend_id: str) -> Any:
        """Read a mapped custom field value, or None when absent."""

    @abstractmethod
    def map_status(self, raw: dict[str, Any]) -> TicketStatus:
        """Normalized status category of a raw payload."""

    def custom_fields(
        self, raw: dict[str, Any], mapping: FieldMapping | None
    ) -> dict[SemanticField, Any]:
        if mapping is None:
            return {}
        values: dict[SemanticField, Any] = {}
        for semantic, backend_id in mapping.fields.items():
            value = self.custom_value(raw, semantic, backend_id)
            if value is not None:
                values[semantic] = value
        return values

    @staticmethod
    def safe_nested_get(obj: Any, key: str, default: str = "") -> str:
        """Get a string value from an object that might not be a dict.

        Nested payload objects (status, assignee, project) may be None or
        of an unexpected type; this never raises.
        """
        if isinstance(obj, dict):
            value = obj.get(key, default)
            return str(value) if value is not None else default
        return default

    @staticmethod
    def parse_timestamp(timestamp_str: Any) -> datetime | None:
        """Parse an ISO 8601 timestamp, or None when absent or malformed.

        Accepts a ``Z`` suffix and offsets without a colon (``+0000``).
        """
        if not timestamp_str or not isinstance(timestamp_str, str):
            return None
        normalized = timestamp_str
        if normalized.endswith("Z"):
            normalized = normalized[:-1] + "+00:00"
        if _OFFSET_WITHOUT_COLON.search(normalized):
            normalized = normalized[:-2] + ":" + normalized[-2:]
        try:
            return datetime.fromisoformat(normalized)
        except ValueError:
            logger.debug("Ignoring unparseable timestamp %r", timestamp_str)
            return None

    @staticmethod
    def lookup_status(
        name: str, table: Mapping[str, TicketStatus], default: TicketStatus = TicketStatus.UNKNOWN
    ) -> TicketStatus:
        return table.get(name.strip().lower(), default)


__all__ = ["DocumentDecoder", "TicketNormalizer"]
