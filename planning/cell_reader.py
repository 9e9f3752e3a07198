"""
Cell reading utilities shared by the scanner, classifier and resolver.

Everything downstream of ``SheetGrid`` sees plain text: hyperlinks are
reduced to their target, rich text to the concatenation of its runs, and
``=HYPERLINK(...)`` formulas to their URL argument.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterator, Tuple

from openpyxl.cell.cell import Cell
from openpyxl.cell.rich_text import CellRichText, TextBlock
from openpyxl.utils import column_index_from_string
from openpyxl.worksheet.worksheet import Worksheet

logger = logging.getLogger(__name__)


_HYPERLINK_FORMULA = re.compile(
    r'^=\s*HYPERLINK\(\s*"([^"]*)"', re.IGNORECASE
)


# ------------------------------------------------------------------
# Coordinate helpers
# ------------------------------------------------------------------

def parse_coord(coordinate: str) -> Tuple[int, int]:
    """Parse 'AB12' → (row=12, col=28).  Both 1-based."""
    col_str = "".join(c for c in coordinate if c.isalpha())
    row_num = int("".join(c for c in coordinate if c.isdigit()) or "0")
    col_num = column_index_from_string(col_str) if col_str else 0
    return row_num, col_num


def find_actual_used_range(ws: Worksheet) -> Tuple[int, int, int, int]:
    """Return (min_row, min_col, max_row, max_col), all 1-based."""
    dim = ws.calculate_dimension()
    if dim and dim != "A1:A1":
        parts = dim.replace("$", "").split(":")
        if len(parts) == 2:
            tl_row, tl_col = parse_coord(parts[0])
            br_row, br_col = parse_coord(parts[1])
            return tl_row, tl_col, br_row, br_col
    return 1, 1, ws.max_row or 1, ws.max_column or 1


# ------------------------------------------------------------------
# Cell reading
# ------------------------------------------------------------------

def cell_text(cell: Cell) -> str:
    """
    Return the text a link scanner should look at for *cell*.

    Resolution order:
      1. Hyperlink target (the display text is ignored).
      2. Rich-text runs, concatenated.
      3. ``=HYPERLINK("url", ...)`` formula URL.
      4. ``str(value)``.
    """
    hyperlink = cell.hyperlink
    if hyperlink is not None and hyperlink.target:
        return str(hyperlink.target)

    value = cell.value
    if value is None:
        return ""
    if isinstance(value, CellRichText):
        return "".join(
            run.text if isinstance(run, TextBlock) else str(run) for run in value
        )
    if isinstance(value, str):
        m = _HYPERLINK_FORMULA.match(value)
        if m:
            return m.group(1)
        return value
    return str(value)


def looks_numeric(val: str) -> bool:
    """Return True if the string looks like a number (int, float, grouped)."""
    cleaned = val.strip().replace(",", "").replace(" ", "")
    if not cleaned:
        return False
    try:
        float(cleaned)
        return True
    except ValueError:
        return False


class SheetGrid:
    """
    Read-only ``(row, col) -> text`` view of a worksheet.

    Only non-empty cells are stored; any other coordinate reads as ``""``.
    """

    def __init__(self, cells: Dict[Tuple[int, int], str]):
        self._cells = cells

    @classmethod
    def from_worksheet(cls, ws: Worksheet) -> "SheetGrid":
        min_row, min_col, max_row, max_col = find_actual_used_range(ws)
        cells: Dict[Tuple[int, int], str] = {}
        for row in ws.iter_rows(
            min_row=min_row, max_row=max_row, min_col=min_col, max_col=max_col
        ):
            for cell in row:
                text = cell_text(cell)
                if text.strip():
                    cells[(cell.row, cell.column)] = text
        logger.debug(
            "  [Grid] %d non-empty cell(s) in %s", len(cells), ws.title
        )
        return cls(cells)

    def text_at(self, row: int, col: int) -> str:
        if row < 1 or col < 1:
            return ""
        return self._cells.get((row, col), "")

    def is_empty(self, row: int, col: int) -> bool:
        return not self.text_at(row, col).strip()

    def is_numeric(self, row: int, col: int) -> bool:
        return looks_numeric(self.text_at(row, col))

    def iter_cells(self) -> Iterator[Tuple[int, int, str]]:
        """Yield ``(row, col, text)`` in row-major order."""
        for (row, col) in sorted(self._cells):
            yield row, col, self._cells[(row, col)]

    def __len__(self) -> int:
        return len(self._cells)
