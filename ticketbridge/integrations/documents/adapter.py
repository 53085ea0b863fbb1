"""Translation between the semantic document model and backend wire formats.

The adapter is stateless and keyed purely on the capability profile: a
backend that declares ``rich_document_format`` receives ADF, every other
backend receives plain text unless the client asks for markdown.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ticketbridge.integrations.capabilities import CapabilitySet
from ticketbridge.integrations.documents.adf import from_adf, is_adf, to_adf
from ticketbridge.integrations.documents.markdown import from_markdown, to_markdown
from ticketbridge.integrations.documents.model import Document
from ticketbridge.integrations.documents.plain import from_plain_text, to_plain_text
from ticketbridge.integrations.errors import TranslationDegraded

logger = logging.getLogger(__name__)


class WireKind(Enum):
    """Serialized document formats understood by the supported backends."""

    ADF = "adf"
    PLAIN_TEXT = "plain_text"
    MARKDOWN = "markdown"


@dataclass(frozen=True)
class WireDocument:
    """A document in a backend's native encoding.

    Attributes:
        kind: Encoding of ``content``
        content: ADF node tree (dict) or a string for text formats
        notes: Lossy approximations made while encoding, empty when exact
    """

    kind: WireKind
    content: Any
    notes: tuple[str, ...] = ()

    @property
    def degraded(self) -> bool:
        return bool(self.notes)


class DocumentFormatAdapter:
    """Converts semantic documents to and from backend wire formats.

    Lossy writes never fail; they emit a ``TranslationDegraded`` warning
    describing what was approximated and return the best available encoding.
    """

    def to_wire(
        self,
        doc: Document,
        capabilities: CapabilitySet,
        target: WireKind | None = None,
    ) -> WireDocument:
        """Encode a document for a backend.

        Args:
            doc: Semantic document to encode
            capabilities: Capability set of the connected backend
            target: Text format to use when the backend has no rich format.
                Ignored when ``capabilities.rich_document_format`` is set.

        Returns:
            The encoded document with any degradation notes
        """
        kind = self.wire_kind_for(capabilities, target)
        if kind is WireKind.ADF:
            content: Any
            content, notes = to_adf(doc)
        elif kind is WireKind.MARKDOWN:
            content, notes = to_markdown(doc)
        else:
            content, notes = to_plain_text(doc)

        if notes:
            message = f"Document approximated for {kind.value}: {'; '.join(notes)}"
            logger.info(message)
            warnings.warn(message, TranslationDegraded, stacklevel=2)
        return WireDocument(kind, content, tuple(notes))

    def from_wire(self, wire: WireDocument) -> Document:
        """Decode a backend document into the semantic model."""
        if wire.content is None:
            return Document.empty()
        if wire.kind is WireKind.ADF:
            if not is_adf(wire.content):
                raise ValueError("ADF content must be a dict with type 'doc'")
            return from_adf(wire.content)
        if not isinstance(wire.content, str):
            raise ValueError(f"{wire.kind.value} content must be a string")
        if wire.kind is WireKind.MARKDOWN:
            return from_markdown(wire.content)
        return from_plain_text(wire.content)

    def decode(self, raw: Any, fallback: WireKind = WireKind.PLAIN_TEXT) -> Document:
        """Decode a raw field value whose format is only known at runtime.

        Jira fields can hold either ADF or a string depending on the API
        version and field type, so dict values are treated as ADF and
        strings use ``fallback``.
        """
        if raw is None:
            return Document.empty()
        if is_adf(raw):
            return from_adf(raw)
        if isinstance(raw, str):
            return self.from_wire(WireDocument(fallback, raw))
        logger.debug("Unexpected document value of type %s", type(raw).__name__)
        return Document.from_text(str(raw))

    @staticmethod
    def wire_kind_for(capabilities: CapabilitySet, target: WireKind | None = None) -> WireKind:
        if capabilities.rich_document_format:
            return WireKind.ADF
        if target is WireKind.MARKDOWN:
            return WireKind.MARKDOWN
        return WireKind.PLAIN_TEXT


__all__ = [
    "DocumentFormatAdapter",
    "WireDocument",
    "WireKind",
]
