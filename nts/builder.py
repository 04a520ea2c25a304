"""Assembly of the non-technical summary document.

The summary is a single 19 x 3 table: static labels in the first column and
project values, purpose check marks and rendered narrative fields in the
merged value column.

Usage::

    from nts.builder import SummaryBuilder

    builder = SummaryBuilder()
    content = builder.build(project)          # bytes of a .docx file
"""

from __future__ import annotations

import asyncio
import io
import logging
from typing import TYPE_CHECKING, Any

from docx import Document as new_docx
from docx.shared import Twips

from nts.exceptions import SerializationError
from nts.models import ProjectRecord
from nts.numbering import NumberingAllocator
from nts.renderer import ImageLoader, TreeRenderer, new_paragraph
from nts.sanitizer import strip_invalid_xml_chars
from nts.styles import BODY, HEADING_2, DesignSystem, StyleRegistry
from nts.tables import init_table

if TYPE_CHECKING:
    from docx.document import Document
    from docx.table import Table as DocxTable, _Cell

logger = logging.getLogger(__name__)

ROWS = 19
COLUMNS = 3

PURPOSE_ROWS = (
    ("a", "Basic research"),
    ("b", "Translational and applied research"),
    ("c", "Regulatory use and routine production"),
    ("d", "Protection of the natural environment in the interests of the "
          "health or welfare of humans or animals"),
    ("e", "Preservation of species"),
    ("f", "Higher education or training"),
    ("g", "Forensic enquiries"),
)

# (row, label, rich-text field)
NARRATIVE_ROWS = (
    (11, "Describe the objectives of the project (e.g. the scientific unknowns "
         "or scientific/clinical needs being addressed)", "nts-objectives"),
    (12, "What are the potential benefits likely to derive from this project "
         "(how science could be advanced or humans or animals could benefit "
         "from the project)?", "nts-benefits"),
    (13, "What species and approximate numbers of animals do you expect to use "
         "over what period of time?", "nts-numbers"),
    (14, "In the context of what you propose to do to the animals, what are the "
         "expected adverse effects and the likely/expected level of severity? "
         "What will happen to the animals at the end?", "nts-adverse-effects"),
)

# (row, heading, label, rich-text field)
THREE_RS_ROWS = (
    (16, "1. Replacement",
     "State why you need to use animals and why you cannot use non-animal "
     "alternatives", "nts-replacement"),
    (17, "2. Reduction",
     "Explain how you will assure the use of minimum numbers of animals",
     "nts-reduction"),
    (18, "3. Refinement",
     "Explain the choice of species and why the animal model(s) you will use "
     "are the most refined, having regard to the objectives. Explain the "
     "general measures you will take to minimise welfare costs (harms) to the "
     "animals.", "nts-refinement"),
)


class SummaryBuilder:
    """Builds the summary document of one project.

    A builder may be reused; every build gets its own document, style
    registry and numbering allocator.

    Parameters
    ----------
    design_system : DesignSystem or None, optional
        Loaded design system.  When ``None`` the packaged default is used
        (optionally with *theme_path* overlaid).
    theme_path : str or None, optional
        Theme overlay YAML, only used when *design_system* is ``None``.
    image_loader : callable, optional
        Resolves image ``src`` references to bytes.
    """

    def __init__(
        self,
        design_system: DesignSystem | None = None,
        theme_path: str | None = None,
        image_loader: ImageLoader | None = None,
    ) -> None:
        if design_system is not None:
            self._design = design_system
        else:
            self._design = DesignSystem(theme_path=theme_path)
        self._image_loader = image_loader

    # ── Public API ────────────────────────────────────────────────────

    def build(self, project: ProjectRecord | dict[str, Any]) -> bytes:
        """Render *project* and return the ``.docx`` file contents.

        Raises
        ------
        SerializationError
            If the finished document cannot be written.
        """
        document = self.compose(project)
        return self._serialize(document)

    async def build_async(self, project: ProjectRecord | dict[str, Any]) -> bytes:
        """Like :meth:`build`, serialising off the event loop."""
        document = self.compose(project)
        return await asyncio.to_thread(self._serialize, document)

    def compose(self, project: ProjectRecord | dict[str, Any]) -> Document:
        """Build the in-memory document for *project* without saving it."""
        if not isinstance(project, ProjectRecord):
            project = ProjectRecord.from_dict(project)

        logger.info("Building summary for project '%s'", project.title)

        document = new_docx()
        styles = StyleRegistry(self._design)
        styles.register_all(document)
        numbering = NumberingAllocator(document, self._design.get_list_config())
        renderer = TreeRenderer(styles, numbering, self._design, self._image_loader)

        self._setup_page(document)
        table = init_table(
            document, ROWS, COLUMNS,
            width=Twips(self._design.usable_width),
            style=self._design.get_component_style("table"),
        )
        self._merge_layout(table)
        self._fill(table, project, styles, renderer)

        logger.info(
            "Summary built: %d numbering definition(s)", len(numbering.definitions),
        )
        return document

    # ── Layout ────────────────────────────────────────────────────────

    def _setup_page(self, document: Document) -> None:
        """Apply the configured page size and margins to the only section."""
        page_cfg = self._design.get_page_config()
        section = document.sections[0]

        section.page_width = Twips(page_cfg.get("width", 12240))
        section.page_height = Twips(page_cfg.get("height", 15840))

        margins = page_cfg.get("margins", {})
        section.top_margin = Twips(margins.get("top", 1440))
        section.right_margin = Twips(margins.get("right", 1440))
        section.bottom_margin = Twips(margins.get("bottom", 1440))
        section.left_margin = Twips(margins.get("left", 1440))

        logger.debug(
            "Page: %dx%d DXA, margins T=%d R=%d B=%d L=%d",
            page_cfg.get("width", 12240),
            page_cfg.get("height", 15840),
            margins.get("top", 1440),
            margins.get("right", 1440),
            margins.get("bottom", 1440),
            margins.get("left", 1440),
        )

    @staticmethod
    def _merge_layout(table: DocxTable) -> None:
        for row in (0, 1, 2, *range(11, ROWS)):
            table.cell(row, 1).merge(table.cell(row, 2))
        table.cell(3, 0).merge(table.cell(10, 0))

    def _fill(
        self,
        table: DocxTable,
        project: ProjectRecord,
        styles: StyleRegistry,
        renderer: TreeRenderer,
    ) -> None:
        def label(cell: _Cell, text: str, style: str = BODY) -> None:
            para = new_paragraph(cell)
            styles.apply(para, style)
            para.add_run(strip_invalid_xml_chars(text))

        label(table.cell(0, 0), "Project", HEADING_2)
        label(table.cell(0, 1), project.title, HEADING_2)

        label(table.cell(1, 0), "Key Words (max. 5 words)")

        label(table.cell(2, 0), "Expected duration of the project (yrs)")
        duration = project.duration
        if duration is not None:
            label(table.cell(2, 1), duration.label())

        label(table.cell(3, 0), "Purpose of the project as in ASPA section 5C(3) "
                                "(Mark all boxes that apply)")
        for offset, (letter, text) in enumerate(PURPOSE_ROWS):
            row = 3 + offset
            label(table.cell(row, 1), "X" if project.has_purpose(letter) else " ")
            label(table.cell(row, 2), text)
        label(table.cell(10, 1), " ")
        label(table.cell(10, 2), "Maintenance of colonies of genetically altered animals")

        for row, text, key in NARRATIVE_ROWS:
            label(table.cell(row, 0), text)
            renderer.render_all(table.cell(row, 1), project.narrative(key))

        label(table.cell(15, 0), "Application of the 3Rs")

        for row, heading, text, key in THREE_RS_ROWS:
            label(table.cell(row, 0), heading, HEADING_2)
            label(table.cell(row, 0), text)
            renderer.render_all(table.cell(row, 1), project.narrative(key))

    # ── Serialisation ─────────────────────────────────────────────────

    @staticmethod
    def _serialize(document: Document) -> bytes:
        buffer = io.BytesIO()
        try:
            document.save(buffer)
        except Exception as exc:
            raise SerializationError(
                "Failed to serialise summary document", details=str(exc)
            ) from exc
        logger.debug("Serialised summary: %d byte(s)", buffer.tell())
        return buffer.getvalue()


def build_summary(project: ProjectRecord | dict[str, Any],
                  design_system: DesignSystem | None = None) -> bytes:
    """Build the summary of *project* with a one-off :class:`SummaryBuilder`."""
    return SummaryBuilder(design_system=design_system).build(project)


async def build_summary_async(project: ProjectRecord | dict[str, Any],
                              design_system: DesignSystem | None = None) -> bytes:
    return await SummaryBuilder(design_system=design_system).build_async(project)
