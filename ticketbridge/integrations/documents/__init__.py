"""Semantic rich text and its backend encodings."""

from ticketbridge.integrations.documents.adapter import (
    DocumentFormatAdapter,
    WireDocument,
    WireKind,
)
from ticketbridge.integrations.documents.adf import from_adf, to_adf
from ticketbridge.integrations.documents.markdown import from_markdown, to_markdown
from ticketbridge.integrations.documents.model import (
    CODE,
    EMPHASIS,
    STRIKE,
    STRONG,
    UNDERLINE,
    Block,
    Blockquote,
    BulletList,
    CodeBlock,
    Document,
    HardBreak,
    Heading,
    Inline,
    ListItem,
    Mark,
    MarkKind,
    OrderedList,
    Paragraph,
    Rule,
    Table,
    TableCell,
    TableRow,
    TextRun,
    plain_text,
)
from ticketbridge.integrations.documents.plain import (
    from_plain_text,
    is_plain_representable,
    to_plain_text,
)

__all__ = [
    "Block",
    "Blockquote",
    "BulletList",
    "CODE",
    "CodeBlock",
    "Document",
    "DocumentFormatAdapter",
    "EMPHASIS",
    "HardBreak",
    "Heading",
    "Inline",
    "ListItem",
    "Mark",
    "MarkKind",
    "OrderedList",
    "Paragraph",
    "Rule",
    "STRIKE",
    "STRONG",
    "Table",
    "TableCell",
    "TableRow",
    "TextRun",
    "UNDERLINE",
    "WireDocument",
    "WireKind",
    "from_adf",
    "from_markdown",
    "from_plain_text",
    "is_plain_representable",
    "plain_text",
    "to_adf",
    "to_markdown",
    "to_plain_text",
]
