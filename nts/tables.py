"""Population and cell merging of output tables built from a :class:`Matrix`."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable

from docx.exceptions import InvalidSpanError
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Length, Twips

from nts.exceptions import MergeConflictError
from nts.matrix import Matrix, normalize_table

if TYPE_CHECKING:
    from docx.table import Table as DocxTable

    from nts.models import Node

logger = logging.getLogger(__name__)

# render(container, node) -- renders a source cell into an output cell.
CellRenderer = Callable[[Any, "Node"], None]

# tblPr children that must follow w:tblBorders.
_BORDER_SUCCESSORS = {
    qn(tag) for tag in (
        "w:shd", "w:tblLayout", "w:tblCellMar", "w:tblLook",
        "w:tblCaption", "w:tblDescription", "w:tblPrChange",
    )
}


def set_table_borders(table: DocxTable, color: str = "BFBFBF",
                      size: int = 4) -> None:
    """Apply uniform thin borders to all edges of a docx *table*.

    Parameters
    ----------
    table:
        A python-docx Table object.
    color:
        Hex colour string (with or without ``#``).
    size:
        Border width in eighth-points.
    """
    tbl_pr = table._tbl.tblPr
    borders = OxmlElement("w:tblBorders")
    for edge in ("top", "left", "bottom", "right", "insideH", "insideV"):
        el = OxmlElement(f"w:{edge}")
        el.set(qn("w:val"), "single")
        el.set(qn("w:sz"), str(size))
        el.set(qn("w:space"), "0")
        el.set(qn("w:color"), color.lstrip("#"))
        borders.append(el)

    successor = next(
        (child for child in tbl_pr.iterchildren() if child.tag in _BORDER_SUCCESSORS),
        None,
    )
    if successor is not None:
        successor.addprevious(borders)
    else:
        tbl_pr.append(borders)


def init_table(container: Any, rows: int, cols: int, width: Length,
               style: dict[str, Any] | None = None) -> DocxTable:
    """Append an empty ``rows x cols`` table with equal column widths."""
    style = style or {}
    table = container.add_table(rows=rows, cols=cols)
    table.autofit = False
    # Word stores widths in whole twips; round down so columns never overflow.
    column_width = Twips(int(width) // cols // Twips(1))
    for column in table.columns:
        column.width = column_width
        for cell in column.cells:
            cell.width = column_width
    set_table_borders(
        table,
        color=style.get("border_color", "BFBFBF"),
        size=int(style.get("border_size", 4)),
    )
    return table


def populate(matrix: Matrix, table: DocxTable, render: CellRenderer) -> None:
    """Render every placed cell into the output cell at its grid position."""
    for entry in matrix.cells():
        render(table.cell(entry.row, entry.col), entry.node)


def _check_ranges(matrix: Matrix, rows: int, cols: int) -> None:
    """Ensure every span fits in the table and no two spans overlap."""
    owner: dict[tuple[int, int], tuple[int, int]] = {}
    for entry in matrix.cells():
        if entry.bottom >= rows or entry.right >= cols:
            raise MergeConflictError(
                "Merge range out of bounds",
                details=(f"cell ({entry.row}, {entry.col}) spans to "
                         f"({entry.bottom}, {entry.right}) in a {rows}x{cols} table"),
            )
        for r in range(entry.row, entry.bottom + 1):
            for c in range(entry.col, entry.right + 1):
                if (r, c) in owner:
                    raise MergeConflictError(
                        "Overlapping merge ranges",
                        details=(f"({r}, {c}) is covered by cells at "
                                 f"{owner[(r, c)]} and ({entry.row}, {entry.col})"),
                    )
                owner[(r, c)] = (entry.row, entry.col)


def merge(matrix: Matrix, table: DocxTable) -> None:
    """Merge the output cells covered by every spanning matrix cell.

    All vertical merges are issued first, then the horizontal ones.  A
    horizontal merge takes the cell's full vertical extent with it so the
    merged region stays rectangular.

    Raises
    ------
    MergeConflictError
        If a range falls outside the table or overlaps another range.
    """
    rows, cols = len(table.rows), len(table.columns)
    _check_ranges(matrix, rows, cols)

    try:
        for entry in matrix.cells():
            if entry.row_span > 1:
                table.cell(entry.row, entry.col).merge(
                    table.cell(entry.bottom, entry.col)
                )
        for entry in matrix.cells():
            if entry.col_span > 1:
                table.cell(entry.row, entry.col).merge(
                    table.cell(entry.bottom, entry.right)
                )
    except InvalidSpanError as exc:
        raise MergeConflictError("Invalid cell merge", details=str(exc)) from exc


def _discard(table: DocxTable) -> None:
    tbl = table._tbl
    tbl.getparent().remove(tbl)


def render_table(container: Any, node: Node, render: CellRenderer,
                 width: Length, style: dict[str, Any] | None = None
                 ) -> DocxTable | None:
    """Render table *node* into *container* as a merged output table.

    Merge ranges are checked before any cell is rendered; a bad range
    yields an unmerged table straight away.  When python-docx still rejects
    a merge the table is thrown away and rebuilt without any merges,
    keeping all cell content.
    """
    matrix = normalize_table(node)
    if matrix.col_count == 0:
        logger.warning("Skipping empty table (no rows)")
        return None

    table = init_table(container, matrix.row_count, matrix.col_count, width, style)
    try:
        _check_ranges(matrix, matrix.row_count, matrix.col_count)
    except MergeConflictError as exc:
        logger.warning("Invalid merge ranges, rendering table unmerged: %s", exc)
        populate(matrix, table, render)
        return table

    populate(matrix, table, render)
    try:
        merge(matrix, table)
    except MergeConflictError as exc:
        logger.warning("Failed to merge cells, rendering table unmerged: %s", exc)
        _discard(table)
        table = init_table(container, matrix.row_count, matrix.col_count, width, style)
        populate(matrix, table, render)

    logger.debug(
        "Rendered table: %d row(s), %d col(s)", matrix.row_count, matrix.col_count,
    )
    return table
