"""Normalisation of a table node into a rectangular placement grid.

Editor tables only list the cells each row *starts*; a cell spanning rows
makes the rows below it shorter.  :func:`normalize_table` recovers the real
grid position of every source cell so that content and merges can be laid
onto a plain ``rows x cols`` output table.

A declared span of ``0`` means "through the last row/column".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional

from nts.models import Node

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatrixCell:
    """A source cell placed at its top-left grid position."""
    node: Node
    row: int
    col: int
    row_span: int = 1
    col_span: int = 1

    @property
    def bottom(self) -> int:
        return self.row + self.row_span - 1

    @property
    def right(self) -> int:
        return self.col + self.col_span - 1


@dataclass
class Matrix:
    """``rows x cols`` grid; ``None`` marks a covered or trailing empty slot."""
    grid: list[list[Optional[MatrixCell]]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.grid)

    @property
    def col_count(self) -> int:
        return len(self.grid[0]) if self.grid else 0

    def cells(self) -> Iterator[MatrixCell]:
        """Yield the placed cells in row-major order."""
        for row in self.grid:
            for entry in row:
                if entry is not None:
                    yield entry

    def __getitem__(self, index: int) -> list[Optional[MatrixCell]]:
        return self.grid[index]


def _declared(span: Optional[int]) -> int:
    return span or 1


def _resolve(span: Optional[int], remaining: int) -> int:
    """Resolve a declared span against the *remaining* room, clamped."""
    if span is None:
        return 1
    if span == 0:
        return max(remaining, 1)
    return max(1, min(span, remaining))


def _count_columns(rows: list[list[Node]]) -> int:
    """Discover the column count of a table.

    For each row: the spans of all cells but the last, plus one for the last
    cell, plus the number of vertical spans still open from rows above.
    """
    row_count = len(rows)
    pending: list[int] = []
    col_count = 0
    for row_index, cells in enumerate(rows):
        in_row = sum(_declared(cell.col_span) for cell in cells[:-1]) + 1
        col_count = max(col_count, in_row + len(pending))

        opened = [_resolve(cell.row_span, row_count - row_index) for cell in cells]
        pending = [span - 1 for span in pending + opened if span > 1]
    return col_count


def normalize_table(table: Node) -> Matrix:
    """Place every cell of *table* on a rectangular grid.

    The result is deterministic and has no side effects.  Spans are clamped
    to the table bounds and never reach into columns already covered by a
    vertical span, so placed rectangles never overlap.  A row that starts
    beyond the discovered column count widens the grid rather than dropping
    the cell.
    """
    rows = [row.nodes for row in table.nodes]
    row_count = len(rows)
    if not row_count:
        return Matrix()

    col_count = _count_columns(rows)
    grid: list[list[Optional[MatrixCell]]] = [
        [None] * col_count for _ in range(row_count)
    ]

    # column index -> rows still covered by a span from above, this row included
    pending: dict[int, int] = {}

    for row_index, cells in enumerate(rows):
        col = 0
        for cell in cells:
            while col in pending:
                col += 1

            if col >= col_count:
                logger.debug(
                    "Widening table from %d to %d column(s) at row %d",
                    col_count, col + 1, row_index,
                )
                for grid_row in grid:
                    grid_row.extend([None] * (col + 1 - col_count))
                col_count = col + 1

            row_span = _resolve(cell.row_span, row_count - row_index)
            col_span = _resolve(cell.col_span, col_count - col)
            for offset in range(1, col_span):
                if col + offset in pending:
                    col_span = offset
                    break

            grid[row_index][col] = MatrixCell(cell, row_index, col, row_span, col_span)

            for covered in range(col, col + col_span):
                pending[covered] = row_span
            col += col_span

        pending = {c: n - 1 for c, n in pending.items() if n > 1}

    logger.debug("Normalised table to %dx%d grid", row_count, col_count)
    return Matrix(grid)
