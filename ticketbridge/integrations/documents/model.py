"""Semantic rich-text model.

This is the canonical, backend-independent form of ticket descriptions and
comments. Every node is a frozen dataclass holding tuples, so two documents
are equal exactly when their trees are structurally identical.

Backend encodings (structured node trees, plain text, markdown) are derived
from or parsed into this model at the translation boundary only.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Union


class MarkKind(Enum):
    """Inline formatting applied to a text run."""

    STRONG = "strong"
    EMPHASIS = "em"
    CODE = "code"
    STRIKE = "strike"
    UNDERLINE = "underline"
    LINK = "link"


@dataclass(frozen=True)
class Mark:
    """One inline mark. ``href`` is only meaningful for LINK marks."""

    kind: MarkKind
    href: str | None = None

    @classmethod
    def link(cls, href: str) -> Mark:
        return cls(MarkKind.LINK, href)


STRONG = Mark(MarkKind.STRONG)
EMPHASIS = Mark(MarkKind.EMPHASIS)
CODE = Mark(MarkKind.CODE)
STRIKE = Mark(MarkKind.STRIKE)
UNDERLINE = Mark(MarkKind.UNDERLINE)


# ============================================================================
# Inline nodes
# ============================================================================


@dataclass(frozen=True)
class TextRun:
    """A run of text sharing the same marks."""

    text: str
    marks: tuple[Mark, ...] = ()


@dataclass(frozen=True)
class HardBreak:
    """A line break inside a paragraph or heading."""


Inline = Union[TextRun, HardBreak]


# ============================================================================
# Block nodes
# ============================================================================


@dataclass(frozen=True)
class Paragraph:
    inlines: tuple[Inline, ...] = ()


@dataclass(frozen=True)
class Heading:
    level: int
    inlines: tuple[Inline, ...] = ()


@dataclass(frozen=True)
class ListItem:
    blocks: tuple[Block, ...] = ()


@dataclass(frozen=True)
class BulletList:
    items: tuple[ListItem, ...] = ()


@dataclass(frozen=True)
class OrderedList:
    items: tuple[ListItem, ...] = ()
    start: int = 1


@dataclass(frozen=True)
class CodeBlock:
    text: str
    language: str | None = None


@dataclass(frozen=True)
class Blockquote:
    blocks: tuple[Block, ...] = ()


@dataclass(frozen=True)
class Rule:
    """A horizontal divider."""


@dataclass(frozen=True)
class TableCell:
    blocks: tuple[Block, ...] = ()
    header: bool = False


@dataclass(frozen=True)
class TableRow:
    cells: tuple[TableCell, ...] = ()


@dataclass(frozen=True)
class Table:
    rows: tuple[TableRow, ...] = ()


Block = Union[
    Paragraph,
    Heading,
    BulletList,
    OrderedList,
    CodeBlock,
    Blockquote,
    Rule,
    Table,
]


@dataclass(frozen=True)
class Document:
    """Root of a semantic rich-text tree."""

    blocks: tuple[Block, ...] = ()

    @classmethod
    def empty(cls) -> Document:
        return cls(())

    @classmethod
    def from_text(cls, text: str) -> Document:
        """Wrap raw text as a single paragraph, turning newlines into hard breaks.

        Empty text gives an empty document.
        """
        if not text:
            return cls(())
        inlines: list[Inline] = []
        for index, line in enumerate(text.replace("\r\n", "\n").split("\n")):
            if index:
                inlines.append(HardBreak())
            if line:
                inlines.append(TextRun(line))
        return cls((Paragraph(tuple(inlines)),))

    @classmethod
    def paragraphs(cls, *texts: str) -> Document:
        """Build a document of unmarked paragraphs, one per argument."""
        return cls(tuple(Paragraph((TextRun(t),)) if t else Paragraph() for t in texts))

    @property
    def is_empty(self) -> bool:
        return not self.blocks


# ============================================================================
# Traversal helpers
# ============================================================================


def child_blocks(block: Block) -> tuple[Block, ...]:
    """Direct block children of a block, flattening list items and table cells."""
    if isinstance(block, Blockquote):
        return block.blocks
    if isinstance(block, BulletList | OrderedList):
        return tuple(child for item in block.items for child in item.blocks)
    if isinstance(block, Table):
        return tuple(child for row in block.rows for cell in row.cells for child in cell.blocks)
    return ()


def iter_blocks(blocks: tuple[Block, ...]) -> Iterator[Block]:
    """Walk blocks depth-first, parents before children."""
    for block in blocks:
        yield block
        yield from iter_blocks(child_blocks(block))


def iter_text_runs(doc: Document) -> Iterator[TextRun]:
    """Yield every text run in document order."""
    for block in iter_blocks(doc.blocks):
        if isinstance(block, Paragraph | Heading):
            for inline in block.inlines:
                if isinstance(inline, TextRun):
                    yield inline


def inline_text(inlines: tuple[Inline, ...]) -> str:
    """Concatenate inline content, rendering hard breaks as newlines."""
    return "".join("\n" if isinstance(i, HardBreak) else i.text for i in inlines)


def plain_text(doc: Document) -> str:
    """Raw text of a document, one line per leaf block, without any markup."""
    lines: list[str] = []
    for block in iter_blocks(doc.blocks):
        if isinstance(block, Paragraph | Heading):
            lines.append(inline_text(block.inlines))
        elif isinstance(block, CodeBlock):
            lines.append(block.text)
    return "\n".join(lines)


def has_marks(doc: Document) -> bool:
    """Whether any text run in the document carries a mark."""
    return any(run.marks for run in iter_text_runs(doc))


__all__ = [
    "Block",
    "Blockquote",
    "BulletList",
    "CODE",
    "CodeBlock",
    "Document",
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
    "child_blocks",
    "has_marks",
    "inline_text",
    "iter_blocks",
    "iter_text_runs",
    "plain_text",
]
