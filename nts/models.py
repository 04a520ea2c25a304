"""Data models for the rich-text tree and the project record.

The rich-text editor stores each narrative field as a JSON document whose
``document.nodes`` array holds typed block nodes.  These dataclasses mirror
that tree so the renderer can work on attributes instead of raw dicts, while
staying lenient about the denormalised shapes older records contain.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Optional

logger = logging.getLogger(__name__)


class NodeType(str, Enum):
    HEADING_ONE = "heading-one"
    HEADING_TWO = "heading-two"
    QUOTE = "block-quote"
    PARAGRAPH = "paragraph"
    BLOCK = "block"
    BULLETED_LIST = "bulleted-list"
    NUMBERED_LIST = "numbered-list"
    LIST_ITEM = "list-item"
    TABLE = "table"
    TABLE_ROW = "table-row"
    TABLE_CELL = "table-cell"
    IMAGE = "image"


class Mark(str, Enum):
    BOLD = "bold"
    ITALIC = "italic"
    UNDERLINE = "underlined"
    SUBSCRIPT = "subscript"
    SUPERSCRIPT = "superscript"

    @classmethod
    def parse(cls, raw: Any) -> Optional[Mark]:
        """Return the mark named by *raw* (a string or ``{"type": ...}``)."""
        name = raw.get("type") if isinstance(raw, dict) else raw
        if name == "underline":
            return cls.UNDERLINE
        try:
            return cls(name)
        except ValueError:
            return None


def _parse_marks(raw: Any) -> frozenset[Mark]:
    marks = set()
    for item in raw or []:
        mark = Mark.parse(item)
        if mark is not None:
            marks.add(mark)
    return frozenset(marks)


def _parse_span(raw: Any) -> Optional[int]:
    """Parse a declared row/column span.

    ``None`` means unset.  ``0`` is kept as the "through the end" sentinel.
    Anything unparseable or negative counts as unset.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        digits = ""
        for char in raw.strip():
            if not char.isdigit():
                break
            digits += char
        if not digits:
            return None
        return int(digits)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None
    return value if value >= 0 else None


# ── Inline text ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Leaf:
    """A run of text sharing one set of character marks."""
    text: str
    marks: frozenset[Mark] = frozenset()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Leaf:
        return cls(text=str(data.get("text") or ""),
                   marks=_parse_marks(data.get("marks")))


# ── Tree nodes ──────────────────────────────────────────────────────


@dataclass
class Node:
    """A block, inline or text node of the rich-text tree.

    Block nodes carry ``nodes``; text nodes carry ``leaves`` or, in the
    flattened form, ``text`` and ``marks`` directly.
    """
    type: Optional[str] = None
    nodes: list[Node] = field(default_factory=list)
    leaves: Optional[list[Leaf]] = None
    text: Optional[str] = None
    marks: frozenset[Mark] = frozenset()
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Node:
        leaves = data.get("leaves")
        text = data.get("text")
        return cls(
            type=data.get("type"),
            nodes=[cls.from_dict(child) for child in data.get("nodes") or []
                   if isinstance(child, dict)],
            leaves=([Leaf.from_dict(leaf) for leaf in leaves if isinstance(leaf, dict)]
                    if isinstance(leaves, list) else None),
            text=text if isinstance(text, str) else None,
            marks=_parse_marks(data.get("marks")),
            data=dict(data.get("data") or {}),
        )

    @property
    def is_text(self) -> bool:
        return self.leaves is not None or self.text is not None

    @property
    def row_span(self) -> Optional[int]:
        return _parse_span(self.data.get("rowSpan"))

    @property
    def col_span(self) -> Optional[int]:
        return _parse_span(self.data.get("colSpan"))

    def iter_leaves(self) -> Iterator[Leaf]:
        """Yield the leaves of this node, descending through inline wrappers."""
        if self.leaves is not None:
            yield from self.leaves
        elif self.text is not None:
            yield Leaf(self.text, self.marks)
        else:
            for child in self.nodes:
                yield from child.iter_leaves()

    def first_text(self) -> str:
        """Return the text of the first leaf of the first child.

        Falls back to the first child's own ``text`` for denormalised data.
        """
        if not self.nodes:
            return ""
        first = self.nodes[0]
        if first.leaves:
            return first.leaves[0].text
        return first.text or ""


def parse_rich_text(value: Any) -> list[Node]:
    """Return the top-level nodes of a stored rich-text field.

    *value* is the serialised JSON string (or an already decoded mapping).
    Empty or undecodable values yield no nodes.
    """
    if not value:
        return []
    if isinstance(value, str):
        try:
            content = json.loads(value)
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring rich-text value that is not valid JSON: %s", exc)
            return []
    else:
        content = value
    if not isinstance(content, dict):
        logger.warning("Ignoring rich-text value of type %s", type(content).__name__)
        return []
    nodes = (content.get("document") or {}).get("nodes") or []
    return [Node.from_dict(node) for node in nodes if isinstance(node, dict)]


# ── Project record ──────────────────────────────────────────────────


@dataclass
class Duration:
    """Expected project duration."""
    years: int = 0
    months: int = 0

    @classmethod
    def from_value(cls, value: Any) -> Optional[Duration]:
        if not value or not isinstance(value, dict):
            return None
        return cls(years=int(value.get("years") or 0),
                   months=int(value.get("months") or 0))

    def label(self) -> str:
        years = "Year" if self.years == 1 else "Years"
        months = "Month" if self.months == 1 else "Months"
        return f"{self.years} {years} {self.months} {months}"


NARRATIVE_FIELDS = (
    "nts-objectives",
    "nts-benefits",
    "nts-numbers",
    "nts-adverse-effects",
    "nts-replacement",
    "nts-reduction",
    "nts-refinement",
)


@dataclass
class ProjectRecord:
    """The project fields rendered into the summary."""
    title: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ProjectRecord:
        project = raw.get("project") or {}
        title = project.get("title") or raw.get("title") or ""
        return cls(title=str(title), data=dict(raw.get("data") or {}))

    @property
    def duration(self) -> Optional[Duration]:
        return Duration.from_value(self.data.get("duration"))

    def has_purpose(self, letter: str) -> bool:
        """Whether purpose *letter* (``"a"`` .. ``"g"``) is selected.

        Purpose (b) is a free-text sub-choice and counts when non-empty.
        """
        if letter == "b":
            return bool(self.data.get("purpose-b"))
        return f"purpose-{letter}" in (self.data.get("purpose") or [])

    def narrative(self, key: str) -> list[Node]:
        return parse_rich_text(self.data.get(key))
