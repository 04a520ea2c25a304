"""On-demand list numbering definitions for an output document.

python-docx can reference numbering but cannot create it, so definitions are
written straight into the numbering part::

    <w:abstractNum w:abstractNumId="7">
      <w:multiLevelType w:val="hybridMultilevel"/>
      <w:lvl w:ilvl="0">
        <w:start w:val="1"/>
        <w:numFmt w:val="decimal"/>
        <w:lvlText w:val="%1."/>
        <w:lvlJc w:val="left"/>
        <w:pPr><w:ind w:left="720" w:hanging="360"/></w:pPr>
      </w:lvl>
    </w:abstractNum>
    <w:num w:numId="8"><w:abstractNumId w:val="7"/></w:num>

Paragraphs then point at a definition through ``w:numPr``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from lxml import etree

if TYPE_CHECKING:
    from docx.document import Document
    from docx.text.paragraph import Paragraph as DocxParagraph

logger = logging.getLogger(__name__)

MAX_LEVEL = 8


@dataclass(frozen=True)
class LevelSpec:
    """Formatting of one nesting depth of a list."""
    depth: int
    num_format: str
    text: str
    indent: int
    hanging: int
    start: int = 1
    justification: str = "left"


class NumberingDefinition:
    """Handle on one ``w:abstractNum`` / ``w:num`` pair.

    Created by :meth:`NumberingAllocator.create_definition`; paragraphs
    reference it through :attr:`num_id`.
    """

    def __init__(self, abstract_id: int, num_id: int, element: Any) -> None:
        self.abstract_id = abstract_id
        self.num_id = num_id
        self.levels: dict[int, LevelSpec] = {}
        self._element = element

    def add_level(self, level: LevelSpec) -> bool:
        """Register *level*; returns ``False`` if its depth already exists."""
        if level.depth in self.levels:
            return False

        lvl = OxmlElement("w:lvl")
        lvl.set(qn("w:ilvl"), str(level.depth))
        etree.SubElement(lvl, qn("w:start")).set(qn("w:val"), str(level.start))
        etree.SubElement(lvl, qn("w:numFmt")).set(qn("w:val"), level.num_format)
        etree.SubElement(lvl, qn("w:lvlText")).set(qn("w:val"), level.text)
        etree.SubElement(lvl, qn("w:lvlJc")).set(qn("w:val"), level.justification)
        p_pr = etree.SubElement(lvl, qn("w:pPr"))
        ind = etree.SubElement(p_pr, qn("w:ind"))
        ind.set(qn("w:left"), str(level.indent))
        ind.set(qn("w:hanging"), str(level.hanging))

        # Keep levels ordered by ilvl.
        following = [
            child for child in self._element.iterchildren(qn("w:lvl"))
            if int(child.get(qn("w:ilvl"))) > level.depth
        ]
        if following:
            following[0].addprevious(lvl)
        else:
            self._element.append(lvl)

        self.levels[level.depth] = level
        return True

    def __repr__(self) -> str:
        return (f"NumberingDefinition(num_id={self.num_id}, "
                f"levels={sorted(self.levels)})")


class NumberingAllocator:
    """Allocates numbering definitions inside one output document.

    Parameters
    ----------
    document:
        The python-docx document being built.
    list_config:
        The ``lists`` section of the design system.
    """

    def __init__(self, document: Document, list_config: dict[str, Any]) -> None:
        self._numbering = document.part.numbering_part.element
        self._indent = int(list_config.get("indent_per_level", 720))
        self._hanging = int(list_config.get("hanging", 360))
        self._num_format = list_config.get("number_format", "decimal")
        self._level_text = list_config.get("level_text", "%{level}.")
        self._justification = list_config.get("justification", "left")
        self._bullet_glyph = list_config.get("bullet_glyph", "•")
        self._bullet: Optional[NumberingDefinition] = None
        self.definitions: list[NumberingDefinition] = []

    def create_definition(self) -> NumberingDefinition:
        """Allocate a fresh, empty numbering definition."""
        abstract_id = self._next_abstract_id()
        abstract = OxmlElement("w:abstractNum")
        abstract.set(qn("w:abstractNumId"), str(abstract_id))
        etree.SubElement(abstract, qn("w:multiLevelType")).set(
            qn("w:val"), "hybridMultilevel"
        )

        # Every abstractNum must precede the first num.
        nums = self._numbering.num_lst
        if nums:
            nums[0].addprevious(abstract)
        else:
            self._numbering.append(abstract)

        num = self._numbering.add_num(abstract_id)
        definition = NumberingDefinition(abstract_id, num.numId, abstract)
        self.definitions.append(definition)
        logger.debug(
            "Allocated numbering definition abstractNumId=%d numId=%d",
            abstract_id, num.numId,
        )
        return definition

    def ordered_level(self, depth: int) -> LevelSpec:
        """Return the numbered-list level spec for *depth*."""
        depth = min(depth, MAX_LEVEL)
        return LevelSpec(
            depth=depth,
            num_format=self._num_format,
            text=self._level_text.format(level=depth + 1),
            indent=self._indent * (depth + 1),
            hanging=self._hanging,
            justification=self._justification,
        )

    def bullet_definition(self) -> NumberingDefinition:
        """Return the document's bullet definition, allocating it once."""
        if self._bullet is None:
            self._bullet = self.create_definition()
            for depth in range(MAX_LEVEL + 1):
                self._bullet.add_level(LevelSpec(
                    depth=depth,
                    num_format="bullet",
                    text=self._bullet_glyph,
                    indent=self._indent * (depth + 1),
                    hanging=self._hanging,
                    justification=self._justification,
                ))
        return self._bullet

    @staticmethod
    def attach(paragraph: DocxParagraph, definition: NumberingDefinition,
               depth: int) -> None:
        """Point *paragraph* at *definition* at nesting *depth*."""
        num_pr = paragraph._p.get_or_add_pPr().get_or_add_numPr()
        num_pr.get_or_add_ilvl().val = min(depth, MAX_LEVEL)
        num_pr.get_or_add_numId().val = definition.num_id

    def _next_abstract_id(self) -> int:
        ids = [int(v) for v in self._numbering.xpath("./w:abstractNum/@w:abstractNumId")]
        return max(ids, default=-1) + 1
