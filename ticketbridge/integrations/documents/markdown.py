"""Markdown codec for the GraphQL backend.

Linear stores descriptions and comments as markdown. The writer emits a
small, predictable dialect so that the reader can parse its own output back
exactly:
- blocks are separated by blank lines
- ``**strong**``, ``*em*``, ``~~strike~~``, `` `code` ``, ``[text](href)``
- hard breaks are a trailing backslash
- lists use ``- `` / ``1. `` markers, nested lists are indented by the width
  of the parent marker
- fenced code blocks with an optional language
- markdown punctuation inside text is backslash-escaped

Constructs markdown cannot express (underline, several marks on one run,
tables, headings or code inside list items) are approximated and reported.
"""

from __future__ import annotations

import re
import string
from collections.abc import Callable

from ticketbridge.integrations.documents.model import (
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
    TextRun,
    plain_text,
)

_ESCAPE_CHARS = frozenset("\\`*_[]~")
_LINE_START_BLOCK = re.compile(r"^(#|>|-|\+|=)")
_LINE_START_ORDERED = re.compile(r"^(\d+)\.")

_HEADING = re.compile(r"^(#{1,6}) (.*)$")
_LIST_MARKER = re.compile(r"^([-*+]|\d+\.) (.*)$")
_FENCE = "```"
_RULES = frozenset({"---", "***", "___"})

_DELIMITERS: dict[MarkKind, str] = {
    MarkKind.STRONG: "**",
    MarkKind.EMPHASIS: "*",
    MarkKind.STRIKE: "~~",
}


# ============================================================================
# Writer
# ============================================================================


class MarkdownWriter:
    """Serializes a semantic Document to markdown.

    Attributes:
        notes: Descriptions of every lossy approximation made
    """

    def __init__(self) -> None:
        self.notes: list[str] = []

    def write(self, doc: Document) -> str:
        return "\n\n".join("\n".join(self._block(block)) for block in doc.blocks)

    def _note(self, text: str) -> None:
        if text not in self.notes:
            self.notes.append(text)

    def _block(self, block: Block) -> list[str]:
        if isinstance(block, Paragraph):
            if not block.inlines:
                self._note("empty paragraph dropped")
            return self._inline_lines(block.inlines)
        if isinstance(block, Heading):
            level = min(max(block.level, 1), 6)
            if level != block.level:
                self._note(f"heading level {block.level} clamped to {level}")
            inlines = block.inlines
            if any(isinstance(i, HardBreak) for i in inlines):
                self._note("line break inside heading replaced by a space")
                inlines = tuple(TextRun(" ") if isinstance(i, HardBreak) else i for i in inlines)
            text = " ".join(self._inline_lines(inlines))
            return ["#" * level + " " + text]
        if isinstance(block, BulletList):
            return self._list(block.items, lambda _: "- ")
        if isinstance(block, OrderedList):
            start = block.start
            return self._list(block.items, lambda i: f"{start + i}. ")
        if isinstance(block, CodeBlock):
            return [_FENCE + (block.language or ""), *block.text.split("\n"), _FENCE]
        if isinstance(block, Blockquote):
            inner = "\n\n".join("\n".join(self._block(child)) for child in block.blocks)
            return [("> " + line) if line else ">" for line in inner.split("\n")]
        if isinstance(block, Rule):
            return ["---"]
        if isinstance(block, Table):
            self._note("table rendered as one paragraph per row")
            rows: list[str] = []
            for row in block.rows:
                cells = [
                    plain_text(Document(cell.blocks)).replace("\n", " ") for cell in row.cells
                ]
                rows.append(_escape_line(_escape_text(" | ".join(cells))))
            return "\n\n".join(rows).split("\n")
        raise TypeError(f"Unknown block node: {type(block).__name__}")

    def _list(self, items: tuple[ListItem, ...], marker: Callable[[int], str]) -> list[str]:
        lines: list[str] = []
        for index, item in enumerate(items):
            bullet = marker(index)
            indent = " " * len(bullet)
            children = list(item.blocks)
            first_lines: list[str] = []
            if children and isinstance(children[0], Paragraph):
                first_lines = self._block(children.pop(0))
            elif children:
                self._note("list item without a leading paragraph")
            lines.append(bullet + (first_lines[0] if first_lines else ""))
            lines.extend(indent + line for line in first_lines[1:])
            for child in children:
                if not isinstance(child, BulletList | OrderedList):
                    self._note("block inside list item flattened")
                lines.extend(indent + line if line else "" for line in self._block(child))
        return lines

    def _inline_lines(self, inlines: tuple[Inline, ...]) -> list[str]:
        """Render inlines, splitting on hard breaks; each line gets block escapes."""
        lines: list[str] = []
        current: list[str] = []
        for inline in inlines:
            if isinstance(inline, HardBreak):
                lines.append("".join(current))
                current = []
                continue
            text = inline.text
            if "\n" in text:
                self._note("newline inside text run written as a line break")
                parts = text.split("\n")
                for part in parts[:-1]:
                    current.append(self._run(TextRun(part, inline.marks)) if part else "")
                    lines.append("".join(current))
                    current = []
                text = parts[-1]
                if not text:
                    continue
                inline = TextRun(text, inline.marks)
            current.append(self._run(inline))
        lines.append("".join(current))
        escaped = [_escape_line(line) for line in lines]
        # Trailing backslash marks a hard break on every line but the last
        return [line + "\\" for line in escaped[:-1]] + escaped[-1:]

    def _run(self, run: TextRun) -> str:
        if not run.text:
            self._note("empty text run dropped")
            return ""
        marks = list(run.marks)
        if any(m.kind is MarkKind.UNDERLINE for m in marks):
            self._note("underline dropped")
            marks = [m for m in marks if m.kind is not MarkKind.UNDERLINE]
        if len(marks) > 1:
            self._note("combined marks reduced to one")
            marks = marks[:1]
        if not marks:
            return _escape_text(run.text)

        mark = marks[0]
        if mark.kind is MarkKind.CODE:
            if "`" in run.text:
                self._note("code span containing a backtick written as text")
                return _escape_text(run.text)
            return f"`{run.text}`"
        if mark.kind is MarkKind.LINK:
            href = mark.href or ""
            if not href or any(c in href for c in " ()\n"):
                self._note("unrepresentable link written as text")
                return _escape_text(run.text)
            return f"[{_escape_text(run.text)}]({href})"
        delimiter = _DELIMITERS[mark.kind]
        return f"{delimiter}{_escape_text(run.text)}{delimiter}"


def _escape_text(text: str) -> str:
    return "".join("\\" + c if c in _ESCAPE_CHARS else c for c in text)


def _escape_line(line: str) -> str:
    """Escape a leading character that would otherwise start a block."""
    ordered = _LINE_START_ORDERED.match(line)
    if ordered:
        digits = ordered.group(1)
        return digits + "\\." + line[len(digits) + 1 :]
    if _LINE_START_BLOCK.match(line):
        return "\\" + line
    return line


# ============================================================================
# Reader
# ============================================================================


class MarkdownReader:
    """Parses markdown into a semantic Document.

    Understands everything the writer emits plus common variants found in
    hand-written markdown (``_em_``, ``*`` / ``+`` bullets, soft line breaks).
    """

    def read(self, text: str) -> Document:
        return Document(self._blocks(text.replace("\r\n", "\n").split("\n")))

    def _blocks(self, lines: list[str]) -> tuple[Block, ...]:
        blocks: list[Block] = []
        i = 0
        while i < len(lines):
            line = lines[i]
            stripped = line.strip()
            if not stripped:
                i += 1
                continue

            if line.startswith(_FENCE):
                language = line[len(_FENCE) :].strip() or None
                body: list[str] = []
                i += 1
                while i < len(lines) and lines[i].rstrip() != _FENCE:
                    body.append(lines[i])
                    i += 1
                i += 1  # closing fence
                blocks.append(CodeBlock("\n".join(body), language))
                continue

            heading = _HEADING.match(line)
            if heading:
                level = len(heading.group(1))
                blocks.append(Heading(level, parse_inlines(heading.group(2).rstrip())))
                i += 1
                continue

            if stripped in _RULES and line == stripped:
                blocks.append(Rule())
                i += 1
                continue

            if line.startswith(">"):
                quoted: list[str] = []
                while i < len(lines) and lines[i].startswith(">"):
                    content = lines[i][1:]
                    quoted.append(content[1:] if content.startswith(" ") else content)
                    i += 1
                blocks.append(Blockquote(self._blocks(quoted)))
                continue

            marker = _LIST_MARKER.match(line)
            if marker:
                ordered = marker.group(1)[0].isdigit()
                collected: list[str] = []
                while i < len(lines):
                    current = lines[i]
                    if not current.strip():
                        break
                    current_marker = _LIST_MARKER.match(current)
                    if current_marker:
                        if current_marker.group(1)[0].isdigit() != ordered:
                            break
                    elif not current.startswith(" "):
                        break
                    collected.append(current)
                    i += 1
                blocks.append(self._list(collected, ordered))
                continue

            paragraph: list[str] = []
            while i < len(lines) and lines[i].strip() and not self._starts_block(lines[i]):
                paragraph.append(lines[i])
                i += 1
            if not paragraph:
                # A block starter we could not consume as a block; keep it as text
                paragraph.append(lines[i])
                i += 1
            blocks.append(Paragraph(parse_inlines("\n".join(paragraph))))
        return tuple(blocks)

    def _starts_block(self, line: str) -> bool:
        return (
            line.startswith(_FENCE)
            or line.startswith(">")
            or bool(_HEADING.match(line))
            or bool(_LIST_MARKER.match(line))
            or (line.strip() in _RULES and line == line.strip())
        )

    def _list(self, lines: list[str], ordered: bool) -> BulletList | OrderedList:
        items: list[list[str]] = []
        indents: list[int] = []
        start = 1
        for line in lines:
            marker = _LIST_MARKER.match(line)
            if marker:
                if not items and ordered:
                    start = int(marker.group(1)[:-1])
                items.append([marker.group(2)])
                indents.append(len(marker.group(1)) + 1)
            else:
                indent = indents[-1]
                leading = len(line) - len(line.lstrip(" "))
                items[-1].append(line[min(leading, indent) :])
        list_items = tuple(ListItem(self._blocks(body)) for body in items)
        if ordered:
            return OrderedList(list_items, start=start)
        return BulletList(list_items)


def _find_closing(text: str, start: int, delimiter: str) -> int:
    """Index of the first unescaped ``delimiter`` at or after ``start``, or -1."""
    i = start
    while i < len(text):
        if text[i] == "\\" and i + 1 < len(text):
            i += 2
            continue
        if text.startswith(delimiter, i):
            return i
        i += 1
    return -1


def _unescape(text: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(text):
        if text[i] == "\\" and i + 1 < len(text) and text[i + 1] in string.punctuation:
            out.append(text[i + 1])
            i += 2
            continue
        out.append(text[i])
        i += 1
    return "".join(out)


def parse_inlines(text: str) -> tuple[Inline, ...]:
    """Parse inline markdown into text runs and hard breaks."""
    inlines: list[Inline] = []
    buffer: list[str] = []

    def flush() -> None:
        if buffer:
            inlines.append(TextRun("".join(buffer)))
            buffer.clear()

    def marked(content: str, mark: Mark) -> None:
        flush()
        inlines.append(TextRun(content, (mark,)))

    i = 0
    while i < len(text):
        char = text[i]
        nxt = text[i + 1] if i + 1 < len(text) else ""

        if char == "\\" and nxt == "\n":
            flush()
            inlines.append(HardBreak())
            i += 2
            continue
        if char == "\\" and nxt and nxt in string.punctuation:
            buffer.append(nxt)
            i += 2
            continue
        if char == "\n":
            flush()
            inlines.append(HardBreak())
            i += 1
            continue

        if char == "`":
            end = text.find("`", i + 1)
            if end > i + 1:
                marked(text[i + 1 : end], Mark(MarkKind.CODE))
                i = end + 1
                continue
        elif text.startswith("**", i) or text.startswith("~~", i):
            delimiter = text[i : i + 2]
            end = _find_closing(text, i + 2, delimiter)
            if end > i + 2:
                kind = MarkKind.STRONG if delimiter == "**" else MarkKind.STRIKE
                marked(_unescape(text[i + 2 : end]), Mark(kind))
                i = end + 2
                continue
        elif char == "*" or (char == "_" and not (i and text[i - 1].isalnum())):
            end = _find_closing(text, i + 1, char)
            if end > i + 1:
                marked(_unescape(text[i + 1 : end]), Mark(MarkKind.EMPHASIS))
                i = end + 1
                continue
        elif char == "[":
            close = _find_closing(text, i + 1, "](")
            if close > i + 1:
                href_end = text.find(")", close + 2)
                if href_end > close + 2:
                    href = text[close + 2 : href_end]
                    marked(_unescape(text[i + 1 : close]), Mark.link(href))
                    i = href_end + 1
                    continue

        buffer.append(char)
        i += 1

    flush()
    return tuple(inlines)


def to_markdown(doc: Document) -> tuple[str, list[str]]:
    """Serialize a document to markdown, returning the text and degradation notes."""
    writer = MarkdownWriter()
    return writer.write(doc), writer.notes


def from_markdown(text: str) -> Document:
    """Parse markdown into a semantic document."""
    return MarkdownReader().read(text)


__all__ = [
    "MarkdownReader",
    "MarkdownWriter",
    "from_markdown",
    "parse_inlines",
    "to_markdown",
]
