"""Recursive rendering of rich-text tree nodes into python-docx content.

The renderer writes into a *container*: the document body or a table cell.
Both expose ``add_paragraph`` and ``add_table``, so tables rendered inside a
cell get their own independent sub-render.

List items collect the inline content of several children into one output
paragraph.  That paragraph is passed down the recursion as a
:class:`ParagraphHandle`; it is inserted into its container on first flush
and only ever once.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional
from urllib.parse import unquote_to_bytes

from docx.image.exceptions import (
    InvalidImageStreamError,
    UnexpectedEndOfFileError,
    UnrecognizedImageError,
)
from docx.image.image import Image as DocxImage
from docx.shared import Emu, Twips
from docx.table import _Cell

from nts import tables
from nts.exceptions import MalformedNodeError
from nts.models import Leaf, Mark, Node, NodeType
from nts.numbering import NumberingAllocator, NumberingDefinition
from nts.sanitizer import strip_invalid_xml_chars
from nts.styles import ASIDE, BODY, HEADING_1, HEADING_2, DesignSystem, StyleRegistry

if TYPE_CHECKING:
    from docx.text.paragraph import Paragraph as DocxParagraph
    from docx.text.run import Run

logger = logging.getLogger(__name__)

ImageLoader = Callable[[str], Optional[bytes]]

# python-docx raises these independently; none subclasses another.
_IMAGE_ERRORS = (InvalidImageStreamError, UnexpectedEndOfFileError, UnrecognizedImageError)

_HEADING_STYLES = {
    NodeType.HEADING_ONE: HEADING_1,
    NodeType.HEADING_TWO: HEADING_2,
    NodeType.QUOTE: ASIDE,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def default_image_loader(src: str) -> Optional[bytes]:
    """Load image bytes from a ``data:`` URI or a local file path."""
    if not src:
        return None
    if src.startswith("data:"):
        header, _, payload = src.partition(",")
        try:
            if header.endswith(";base64"):
                return base64.b64decode(payload, validate=False)
            return unquote_to_bytes(payload)
        except (binascii.Error, ValueError) as exc:
            logger.warning("Could not decode image data URI: %s", exc)
            return None
    path = Path(src)
    if path.is_file():
        return path.read_bytes()
    logger.warning("Image source is not a data URI or local file: %.80s", src)
    return None


def new_paragraph(container: Any) -> DocxParagraph:
    """Return a fresh paragraph at the end of *container*.

    A table cell starts with one blank paragraph; the first paragraph
    written to an untouched cell reuses it instead of leaving it behind.
    """
    if isinstance(container, _Cell):
        paragraphs = container.paragraphs
        if (len(paragraphs) == 1 and not container.tables
                and paragraphs[0]._p.pPr is None and not paragraphs[0]._p.r_lst):
            return paragraphs[0]
    return container.add_paragraph()


def apply_marks(run: Run, marks: frozenset[Mark]) -> None:
    """Toggle every character mark in *marks* on *run*."""
    for mark in marks:
        match mark:
            case Mark.BOLD:
                run.bold = True
            case Mark.ITALIC:
                run.italic = True
            case Mark.UNDERLINE:
                run.underline = True
            case Mark.SUBSCRIPT:
                run.font.subscript = True
            case Mark.SUPERSCRIPT:
                run.font.superscript = True


class ParagraphHandle:
    """An output paragraph under construction.

    Runs are queued with :meth:`add_run` and written by
    :meth:`TreeRenderer.flush`, which creates the paragraph in
    :attr:`container` the first time and only appends afterwards.
    """

    def __init__(self, container: Any, style: str = BODY) -> None:
        self.container = container
        self.style = style
        self.numbering: Optional[tuple[NumberingDefinition, int]] = None
        self.paragraph: Optional[DocxParagraph] = None
        self._pending: list[Leaf] = []

    @property
    def inserted(self) -> bool:
        return self.paragraph is not None

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def add_run(self, leaf: Leaf) -> None:
        self._pending.append(leaf)

    def drain(self) -> list[Leaf]:
        pending, self._pending = self._pending, []
        return pending


# ---------------------------------------------------------------------------
# TreeRenderer
# ---------------------------------------------------------------------------


class TreeRenderer:
    """Renders rich-text nodes into a python-docx container.

    Parameters
    ----------
    styles : StyleRegistry
        Registry whose styles are already registered in the target document.
    numbering : NumberingAllocator
        Numbering allocator of the target document.
    design_system : DesignSystem
        Source of table and image settings.
    image_loader : callable, optional
        ``image_loader(src) -> bytes | None``.  Defaults to
        :func:`default_image_loader`.
    """

    def __init__(
        self,
        styles: StyleRegistry,
        numbering: NumberingAllocator,
        design_system: DesignSystem,
        image_loader: ImageLoader | None = None,
    ) -> None:
        self._styles = styles
        self._numbering = numbering
        self._design = design_system
        self._image_loader = image_loader or default_image_loader
        self._table_style = design_system.get_component_style("table")
        self._emu_per_pixel = int(
            design_system.get_component_style("image").get("emu_per_pixel", 9525)
        )

    # ── Public API ────────────────────────────────────────────────────

    def render_all(self, container: Any, nodes: list[Node]) -> None:
        for node in nodes:
            self.render(container, node)

    def render(
        self,
        container: Any,
        node: Node,
        depth: int = 0,
        paragraph: Optional[ParagraphHandle] = None,
    ) -> None:
        """Render *node* (and its subtree) into *container*.

        Parameters
        ----------
        container:
            A python-docx ``Document`` or table ``_Cell``.
        node:
            The node to render.
        depth:
            Current list nesting depth.
        paragraph:
            The in-progress paragraph of an enclosing list item, if any.
        """
        try:
            self._dispatch(container, node, depth, paragraph)
        except MalformedNodeError as exc:
            logger.debug("Skipping node: %s", exc)

    def _dispatch(
        self,
        container: Any,
        node: Node,
        depth: int,
        paragraph: Optional[ParagraphHandle],
    ) -> None:
        match node.type:
            case NodeType.HEADING_ONE | NodeType.HEADING_TWO | NodeType.QUOTE:
                self._render_heading(container, node)
            case NodeType.TABLE_CELL | NodeType.TABLE_ROW:
                for child in node.nodes:
                    self.render(container, child)
            case NodeType.TABLE:
                tables.render_table(
                    container, node, self.render,
                    width=self._container_width(container),
                    style=self._table_style,
                )
            case NodeType.NUMBERED_LIST:
                definition = self._numbering.create_definition()
                definition.add_level(self._numbering.ordered_level(depth))
                for item in node.nodes:
                    self._render_list_item(container, item, depth, definition)
            case NodeType.BULLETED_LIST:
                for item in node.nodes:
                    self._render_list_item(container, item, depth, None)
            case NodeType.PARAGRAPH | NodeType.BLOCK:
                self._render_paragraph(container, node, paragraph)
            case NodeType.IMAGE:
                self._render_image(container, node)
            case _:
                if node.is_text and not node.nodes:
                    # Denormalised text with no wrapping paragraph.
                    wrapper = Node(type=NodeType.PARAGRAPH.value, nodes=[node])
                    self._render_paragraph(container, wrapper, paragraph)
                else:
                    raise MalformedNodeError(
                        "No renderable content", details=f"type={node.type!r}",
                    )

    def flush(self, handle: ParagraphHandle) -> DocxParagraph:
        """Insert *handle*'s paragraph if needed and write its queued runs."""
        if handle.paragraph is None:
            handle.paragraph = new_paragraph(handle.container)
            self._styles.apply(handle.paragraph, handle.style)
            if handle.numbering is not None:
                definition, depth = handle.numbering
                self._numbering.attach(handle.paragraph, definition, depth)
        for leaf in handle.drain():
            run = handle.paragraph.add_run(leaf.text)
            apply_marks(run, leaf.marks)
        return handle.paragraph

    # ── Block renderers ───────────────────────────────────────────────

    def _render_heading(self, container: Any, node: Node) -> None:
        text = strip_invalid_xml_chars(node.first_text()).strip()
        para = new_paragraph(container)
        self._styles.apply(para, _HEADING_STYLES[NodeType(node.type)])
        if text:
            para.add_run(text)
        logger.debug("Rendered %s: '%s'", node.type, text[:60])

    def _render_paragraph(
        self,
        container: Any,
        node: Node,
        paragraph: Optional[ParagraphHandle],
    ) -> None:
        handle = paragraph or ParagraphHandle(container)
        for child in node.nodes:
            for leaf in child.iter_leaves():
                text = strip_invalid_xml_chars(leaf.text)
                if text:
                    handle.add_run(Leaf(text, leaf.marks))
        self.flush(handle)

    def _render_list_item(
        self,
        container: Any,
        item: Node,
        depth: int,
        definition: Optional[NumberingDefinition],
    ) -> None:
        if item.type != NodeType.LIST_ITEM:
            self.render(container, item, depth)
            return

        handle = ParagraphHandle(container)
        handle.numbering = (definition or self._numbering.bullet_definition(), depth)
        for child in item.nodes:
            self.render(container, child, depth + 1, handle)
        if handle.inserted or handle.has_pending:
            self.flush(handle)

    def _render_image(self, container: Any, node: Node) -> None:
        src = node.data.get("src") or ""
        blob = self._image_loader(src)
        if not blob:
            logger.warning("Skipping image with no data: %.80s", src)
            return
        try:
            DocxImage.from_blob(blob)
        except _IMAGE_ERRORS as exc:
            logger.warning("Skipping unreadable image %.80s: %r", src, exc)
            return

        width = self._pixels(node.data.get("width"))
        height = self._pixels(node.data.get("height"))
        run = new_paragraph(container).add_run()
        try:
            run.add_picture(io.BytesIO(blob), width=width, height=height)
        except _IMAGE_ERRORS as exc:
            run._r.getparent().remove(run._r)
            logger.warning("Skipping unreadable image %.80s: %r", src, exc)
            return
        logger.debug("Rendered image: %.80s", src)

    # ── Utilities ─────────────────────────────────────────────────────

    def _pixels(self, value: Any) -> Optional[Emu]:
        try:
            pixels = float(value)
        except (TypeError, ValueError):
            return None
        if pixels <= 0:
            return None
        return Emu(int(pixels * self._emu_per_pixel))

    def _container_width(self, container: Any) -> Emu:
        if isinstance(container, _Cell) and container.width:
            return Emu(container.width)
        return Emu(Twips(self._design.usable_width))
