"""Plain-text codec for backends without a structured document format.

Jira Server and Data Center (REST API v2) take descriptions and comments
as plain strings. Writing flattens the semantic tree:
- every block starts on a new line
- list items become indented ``- `` / ``1. `` lines, nesting adds two spaces
- block quotes are prefixed with ``> ``, table rows joined with `` | ``
- all inline marks are dropped, only raw text survives

Reading wraps the whole string as a single paragraph, newlines becoming
hard breaks. The only documents that round-trip exactly are therefore empty
documents and a single paragraph of unmarked, non-empty text runs separated
by hard breaks; everything else is reported as degraded.
"""

from __future__ import annotations

from collections.abc import Callable

from ticketbridge.integrations.documents.model import (
    Block,
    Blockquote,
    BulletList,
    CodeBlock,
    Document,
    HardBreak,
    Heading,
    ListItem,
    OrderedList,
    Paragraph,
    Rule,
    Table,
    inline_text,
)

INDENT = "  "
RULE_TEXT = "----"


def is_plain_representable(doc: Document) -> bool:
    """Whether ``from_plain_text(to_plain_text(doc))`` reproduces ``doc`` exactly."""
    if not doc.blocks:
        return True
    if len(doc.blocks) != 1 or not isinstance(doc.blocks[0], Paragraph):
        return False
    inlines = doc.blocks[0].inlines
    if not inlines:
        return False
    previous_was_text = False
    for inline in inlines:
        if isinstance(inline, HardBreak):
            previous_was_text = False
            continue
        if inline.marks or not inline.text or "\n" in inline.text or "\r" in inline.text:
            return False
        if previous_was_text:
            return False
        previous_was_text = True
    return True


class PlainTextWriter:
    """Flattens a semantic Document to newline-delimited text.

    Attributes:
        notes: Descriptions of the structure or formatting that was lost
    """

    def __init__(self) -> None:
        self.notes: list[str] = []

    def write(self, doc: Document) -> str:
        if not is_plain_representable(doc):
            self.notes.append("structure and inline formatting flattened to plain text")
        lines: list[str] = []
        for block in doc.blocks:
            lines.extend(self._block(block, prefix=""))
        return "\n".join(lines)

    def _block(self, block: Block, prefix: str) -> list[str]:
        if isinstance(block, Paragraph | Heading):
            return [prefix + line for line in inline_text(block.inlines).split("\n")]
        if isinstance(block, CodeBlock):
            return [prefix + line for line in block.text.split("\n")]
        if isinstance(block, BulletList):
            return self._list(block.items, prefix, lambda _: "- ")
        if isinstance(block, OrderedList):
            start = block.start
            return self._list(block.items, prefix, lambda i: f"{start + i}. ")
        if isinstance(block, Blockquote):
            lines: list[str] = []
            for child in block.blocks:
                lines.extend(self._block(child, prefix + "> "))
            return lines
        if isinstance(block, Rule):
            return [prefix + RULE_TEXT]
        if isinstance(block, Table):
            return [prefix + row for row in _table_rows(block)]
        raise TypeError(f"Unknown block node: {type(block).__name__}")

    def _list(
        self, items: tuple[ListItem, ...], prefix: str, marker: Callable[[int], str]
    ) -> list[str]:
        lines: list[str] = []
        for index, item in enumerate(items):
            bullet = marker(index)
            first = True
            for child in item.blocks:
                if isinstance(child, BulletList | OrderedList):
                    lines.extend(self._block(child, prefix + INDENT))
                    continue
                child_lines = self._block(child, "")
                for line in child_lines:
                    if first:
                        lines.append(prefix + bullet + line)
                        first = False
                    else:
                        lines.append(prefix + INDENT + line)
            if first:
                lines.append(prefix + bullet.rstrip())
        return lines


def _table_rows(table: Table) -> list[str]:
    writer = PlainTextWriter()
    rows: list[str] = []
    for row in table.rows:
        cells = []
        for cell in row.cells:
            cell_lines: list[str] = []
            for block in cell.blocks:
                cell_lines.extend(writer._block(block, prefix=""))
            cells.append(" ".join(cell_lines))
        rows.append(" | ".join(cells))
    return rows


def to_plain_text(doc: Document) -> tuple[str, list[str]]:
    """Flatten a document, returning the text and any degradation notes."""
    writer = PlainTextWriter()
    return writer.write(doc), writer.notes


def from_plain_text(text: str) -> Document:
    """Wrap plain text as a single-paragraph document."""
    return Document.from_text(text)


__all__ = [
    "INDENT",
    "PlainTextWriter",
    "from_plain_text",
    "is_plain_representable",
    "to_plain_text",
]
