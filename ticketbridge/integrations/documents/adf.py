"""Atlassian Document Format (ADF) codec.

Jira Cloud (REST API v3) stores descriptions and comments as an ADF node
tree::

    {"version": 1, "type": "doc", "content": [{"type": "paragraph", ...}]}

ADF restricts which nodes may appear inside which containers, and Jira
rejects a body that breaks those rules. The writer tracks the enclosing
container and rewrites anything out of place into the nearest allowed form:
- headings inside list items or quotes become bold paragraphs
- quotes inside list items or quotes are unwrapped into their children
- tables anywhere but the top level become one paragraph per row
- rules inside list items or quotes are dropped
- a ``code`` mark keeps only an accompanying ``link`` mark
- list items that do not open with a paragraph or code block get an empty
  leading paragraph
- heading levels outside 1-6 are clamped
- empty text runs are dropped (ADF forbids empty text nodes)

Each rewrite is recorded as a note. A document that needs no rewrite
survives ``read(write(doc)) == doc`` unchanged.

Reading is lenient: node types the semantic model does not know (panels,
mentions, emoji, status lozenges, cards, media) keep their text content.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from ticketbridge.integrations.documents.model import (
    STRONG,
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
    inline_text,
    plain_text,
)

logger = logging.getLogger(__name__)

ADF_VERSION = 1

# ADF mark type -> MarkKind (the values already line up, kept explicit for reading)
_MARK_TYPES: dict[str, MarkKind] = {kind.value: kind for kind in MarkKind}

# Inline ADF nodes whose display text lives in attrs
_ATTR_TEXT_NODES: dict[str, tuple[str, ...]] = {
    "mention": ("text", "id"),
    "emoji": ("text", "shortName"),
    "status": ("text",),
    "date": ("timestamp",),
    "placeholder": ("text",),
}

# Node types a listItem may open with
_LIST_ITEM_LEADERS = frozenset({"paragraph", "codeBlock"})


class Container(Enum):
    """ADF node that holds block content."""

    DOC = "document"
    LIST_ITEM = "list item"
    QUOTE = "quote"
    CELL = "table cell"


# Block node types each container accepts
_ALLOWED: dict[Container, frozenset[str]] = {
    Container.DOC: frozenset(
        {
            "paragraph",
            "heading",
            "bulletList",
            "orderedList",
            "codeBlock",
            "blockquote",
            "rule",
            "table",
        }
    ),
    Container.LIST_ITEM: frozenset({"paragraph", "bulletList", "orderedList", "codeBlock"}),
    Container.QUOTE: frozenset({"paragraph", "bulletList", "orderedList", "codeBlock"}),
    Container.CELL: frozenset(
        {
            "paragraph",
            "heading",
            "bulletList",
            "orderedList",
            "codeBlock",
            "blockquote",
            "rule",
        }
    ),
}


def is_adf(value: Any) -> bool:
    """Check whether a value looks like an ADF document root."""
    return isinstance(value, dict) and value.get("type") == "doc"


class AdfWriter:
    """Serializes a semantic Document into an ADF tree.

    Attributes:
        notes: Human-readable descriptions of every lossy approximation made
    """

    def __init__(self) -> None:
        self.notes: list[str] = []

    def write(self, doc: Document) -> dict[str, Any]:
        return {
            "version": ADF_VERSION,
            "type": "doc",
            "content": self._blocks(doc.blocks, Container.DOC),
        }

    def _note(self, note: str) -> None:
        if note not in self.notes:
            self.notes.append(note)

    def _blocks(self, blocks: tuple[Block, ...], container: Container) -> list[dict[str, Any]]:
        nodes: list[dict[str, Any]] = []
        for block in blocks:
            nodes.extend(self._block(block, container))
        return nodes

    def _block(self, block: Block, container: Container) -> list[dict[str, Any]]:
        allowed = _ALLOWED[container]
        if isinstance(block, Paragraph):
            return [{"type": "paragraph", "content": self._inlines(block.inlines)}]
        if isinstance(block, Heading):
            if "heading" not in allowed:
                self._note(f"heading inside a {container.value} rendered as a bold paragraph")
                return [{"type": "paragraph", "content": self._inlines(_emboldened(block.inlines))}]
            level = min(max(block.level, 1), 6)
            if level != block.level:
                self._note(f"heading level {block.level} clamped to {level}")
            return [
                {
                    "type": "heading",
                    "attrs": {"level": level},
                    "content": self._inlines(block.inlines),
                }
            ]
        if isinstance(block, BulletList):
            return [{"type": "bulletList", "content": self._items(block.items)}]
        if isinstance(block, OrderedList):
            node: dict[str, Any] = {"type": "orderedList", "content": self._items(block.items)}
            if block.start != 1:
                node["attrs"] = {"order": block.start}
            return [node]
        if isinstance(block, CodeBlock):
            code: dict[str, Any] = {
                "type": "codeBlock",
                "content": [{"type": "text", "text": block.text}] if block.text else [],
            }
            if block.language:
                code["attrs"] = {"language": block.language}
            return [code]
        if isinstance(block, Blockquote):
            if "blockquote" not in allowed:
                self._note(f"quote inside a {container.value} unwrapped")
                return self._blocks(block.blocks, container)
            return [{"type": "blockquote", "content": self._blocks(block.blocks, Container.QUOTE)}]
        if isinstance(block, Rule):
            if "rule" not in allowed:
                self._note(f"rule inside a {container.value} dropped")
                return []
            return [{"type": "rule"}]
        if isinstance(block, Table):
            if "table" not in allowed:
                self._note(f"table inside a {container.value} flattened to paragraphs")
                return [
                    {"type": "paragraph", "content": self._inlines((TextRun(text),))}
                    for text in _row_texts(block)
                    if text
                ]
            return [self._table(block)]
        raise TypeError(f"Unknown block node: {type(block).__name__}")

    def _table(self, table: Table) -> dict[str, Any]:
        rows = []
        for row in table.rows:
            cells = [
                {
                    "type": "tableHeader" if cell.header else "tableCell",
                    "content": self._blocks(cell.blocks, Container.CELL),
                }
                for cell in row.cells
            ]
            rows.append({"type": "tableRow", "content": cells})
        return {"type": "table", "content": rows}

    def _items(self, items: tuple[ListItem, ...]) -> list[dict[str, Any]]:
        nodes = []
        for item in items:
            content = self._blocks(item.blocks, Container.LIST_ITEM)
            if not content or content[0]["type"] not in _LIST_ITEM_LEADERS:
                self._note("list item padded with an empty leading paragraph")
                content.insert(0, {"type": "paragraph", "content": []})
            nodes.append({"type": "listItem", "content": content})
        return nodes

    def _inlines(self, inlines: tuple[Inline, ...]) -> list[dict[str, Any]]:
        nodes: list[dict[str, Any]] = []
        for inline in inlines:
            if isinstance(inline, HardBreak):
                nodes.append({"type": "hardBreak"})
                continue
            if not inline.text:
                self._note("empty text run dropped")
                continue
            node: dict[str, Any] = {"type": "text", "text": inline.text}
            marks = inline.marks
            if any(m.kind is MarkKind.CODE for m in marks):
                kept = tuple(m for m in marks if m.kind in (MarkKind.CODE, MarkKind.LINK))
                if len(kept) != len(marks):
                    self._note("formatting combined with code reduced to code")
                marks = kept
            if marks:
                node["marks"] = [_mark_to_adf(mark) for mark in marks]
            nodes.append(node)
        return nodes


def _emboldened(inlines: tuple[Inline, ...]) -> tuple[Inline, ...]:
    result: list[Inline] = []
    for inline in inlines:
        if isinstance(inline, TextRun) and not any(
            m.kind in (MarkKind.STRONG, MarkKind.CODE) for m in inline.marks
        ):
            inline = TextRun(inline.text, (STRONG,) + inline.marks)
        result.append(inline)
    return tuple(result)


def _mark_to_adf(mark: Mark) -> dict[str, Any]:
    if mark.kind is MarkKind.LINK:
        return {"type": "link", "attrs": {"href": mark.href or ""}}
    return {"type": mark.kind.value}


def _row_texts(table: Table) -> list[str]:
    return [
        " | ".join(plain_text(Document(cell.blocks)).replace("\n", " ") for cell in row.cells)
        for row in table.rows
    ]


class AdfReader:
    """Parses an ADF tree into a semantic Document, node by node."""

    def read(self, adf: dict[str, Any]) -> Document:
        content = adf.get("content")
        return Document(self._blocks(content if isinstance(content, list) else []))

    def _blocks(self, nodes: list[Any]) -> tuple[Block, ...]:
        blocks: list[Block] = []
        for node in nodes:
            if isinstance(node, dict):
                blocks.extend(self._block(node))
        return tuple(blocks)

    def _content(self, node: dict[str, Any]) -> list[Any]:
        content = node.get("content")
        return content if isinstance(content, list) else []

    def _attrs(self, node: dict[str, Any]) -> dict[str, Any]:
        attrs = node.get("attrs")
        return attrs if isinstance(attrs, dict) else {}

    def _block(self, node: dict[str, Any]) -> list[Block]:
        node_type = node.get("type")
        if node_type == "paragraph":
            return [Paragraph(self._inlines(self._content(node)))]
        if node_type == "heading":
            level = self._attrs(node).get("level", 1)
            if not isinstance(level, int):
                level = 1
            return [Heading(level, self._inlines(self._content(node)))]
        if node_type == "bulletList":
            return [BulletList(self._items(node))]
        if node_type == "orderedList":
            order = self._attrs(node).get("order", 1)
            return [OrderedList(self._items(node), start=order if isinstance(order, int) else 1)]
        if node_type == "codeBlock":
            text = inline_text(self._inlines(self._content(node)))
            language = self._attrs(node).get("language") or None
            return [CodeBlock(text, language)]
        if node_type == "blockquote":
            return [Blockquote(self._blocks(self._content(node)))]
        if node_type == "rule":
            return [Rule()]
        if node_type == "table":
            return [self._table(node)]
        if node_type in ("text", "hardBreak") or node_type in _ATTR_TEXT_NODES:
            # Inline content at block level: wrap it
            return [Paragraph(self._inlines([node]))]

        # Panels, expands, media groups, etc.: keep whatever is inside
        children = self._content(node)
        if children:
            logger.debug("Unwrapping unsupported ADF node '%s'", node_type)
            return list(self._blocks(children))
        logger.debug("Dropping empty unsupported ADF node '%s'", node_type)
        return []

    def _table(self, node: dict[str, Any]) -> Table:
        rows: list[TableRow] = []
        for row in self._content(node):
            if not isinstance(row, dict):
                continue
            cells = tuple(
                TableCell(
                    self._blocks(self._content(cell)),
                    header=cell.get("type") == "tableHeader",
                )
                for cell in self._content(row)
                if isinstance(cell, dict)
            )
            rows.append(TableRow(cells))
        return Table(tuple(rows))

    def _items(self, node: dict[str, Any]) -> tuple[ListItem, ...]:
        items: list[ListItem] = []
        for child in self._content(node):
            if isinstance(child, dict):
                items.append(ListItem(self._blocks(self._content(child))))
        return tuple(items)

    def _inlines(self, nodes: list[Any]) -> tuple[Inline, ...]:
        inlines: list[Inline] = []
        for node in nodes:
            if not isinstance(node, dict):
                continue
            node_type = node.get("type")
            if node_type == "hardBreak":
                inlines.append(HardBreak())
            elif node_type == "text":
                text = node.get("text")
                if isinstance(text, str):
                    inlines.append(TextRun(text, self._marks(node.get("marks"))))
            elif node_type == "inlineCard":
                url = self._attrs(node).get("url")
                if isinstance(url, str) and url:
                    inlines.append(TextRun(url, (Mark.link(url),)))
            elif node_type in _ATTR_TEXT_NODES:
                attrs = self._attrs(node)
                for key in _ATTR_TEXT_NODES[node_type]:
                    value = attrs.get(key)
                    if value:
                        inlines.append(TextRun(str(value)))
                        break
        return tuple(inlines)

    def _marks(self, raw: Any) -> tuple[Mark, ...]:
        if not isinstance(raw, list):
            return ()
        marks: list[Mark] = []
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            kind = _MARK_TYPES.get(str(entry.get("type")))
            if kind is None:
                # textColor, subsup and friends have no semantic counterpart
                continue
            if kind is MarkKind.LINK:
                attrs = entry.get("attrs")
                href = attrs.get("href") if isinstance(attrs, dict) else None
                marks.append(Mark.link(str(href or "")))
            else:
                marks.append(Mark(kind))
        return tuple(marks)


def to_adf(doc: Document) -> tuple[dict[str, Any], list[str]]:
    """Serialize a document to ADF, returning the tree and any degradation notes."""
    writer = AdfWriter()
    return writer.write(doc), writer.notes


def from_adf(adf: dict[str, Any]) -> Document:
    """Parse an ADF tree into a semantic document."""
    return AdfReader().read(adf)


__all__ = [
    "ADF_VERSION",
    "AdfReader",
    "AdfWriter",
    "Container",
    "from_adf",
    "is_adf",
    "to_adf",
]
