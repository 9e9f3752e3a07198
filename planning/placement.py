"""
Cell placement resolver — assigns every link a target cell for its metric.

Candidates per layout (tried in order):
  horizontal_below       : (r+1, c)  (r+2, c)
  vertical / alternating : (r, c+1)  (r, c+2)  (r+1, c)

A candidate is unsafe when it holds link text, is itself a link cell, or
is already claimed by another link.  Resolution runs over the whole link
set in two passes: every link first reserves its primary candidate (when
safe), then links whose primary was unsafe walk their fallbacks.  A
fallback can therefore never take a slot that is some other link's
natural target.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Set, Tuple

from dto.link import LayoutFormat, LinkRecord, ResolutionStatus
from errors import PlacementConflict
from planning.cell_reader import SheetGrid
from planning.scanner import is_link_text

logger = logging.getLogger(__name__)

Cell = Tuple[int, int]


def candidate_cells(link: LinkRecord, layout: LayoutFormat) -> List[Cell]:
    r, c = link.row, link.col
    if layout == LayoutFormat.HORIZONTAL_BELOW:
        return [(r + 1, c), (r + 2, c)]
    return [(r, c + 1), (r, c + 2), (r + 1, c)]


class PlacementResolver:
    """Resolves target cells for one document's links."""

    def __init__(self, grid: SheetGrid, links: List[LinkRecord]):
        self._grid = grid
        self._links = links
        self._link_cells: Set[Cell] = {(l.row, l.col) for l in links}
        self._claimed: Dict[Cell, LinkRecord] = {}

    def _is_safe(self, cell: Cell) -> bool:
        if cell in self._link_cells or cell in self._claimed:
            return False
        return not is_link_text(self._grid.text_at(*cell))

    def _claim(self, link: LinkRecord, cell: Cell) -> None:
        self._claimed[cell] = link
        link.views_row, link.views_col = cell
        link.status = ResolutionStatus.PLACED

    def _resolve_fallback(self, link: LinkRecord, layout: LayoutFormat) -> Cell:
        for cell in candidate_cells(link, layout)[1:]:
            if self._is_safe(cell):
                return cell
        raise PlacementConflict(
            f"no safe target for link at ({link.row}, {link.col})"
        )

    def resolve(self, layout: LayoutFormat) -> List[LinkRecord]:
        # Pass 1: primary candidates
        deferred: List[LinkRecord] = []
        for link in self._links:
            primary = candidate_cells(link, layout)[0]
            if self._is_safe(primary):
                self._claim(link, primary)
            else:
                deferred.append(link)

        # Pass 2: fallbacks
        for link in deferred:
            try:
                self._claim(link, self._resolve_fallback(link, layout))
            except PlacementConflict as exc:
                link.status = ResolutionStatus.SKIPPED
                link.views_row = link.views_col = None
                logger.warning("  [Placement] Skipping link: %s", exc)

        logger.info(
            "  [Placement] %d placed, %d via fallback, %d skipped",
            sum(1 for l in self._links if l.status == ResolutionStatus.PLACED),
            sum(1 for l in deferred if l.status == ResolutionStatus.PLACED),
            sum(1 for l in self._links if l.status == ResolutionStatus.SKIPPED),
        )
        return self._links


def resolve_placements(
    grid: SheetGrid,
    links: List[LinkRecord],
    layout: LayoutFormat,
) -> List[LinkRecord]:
    """Set ``views_row``/``views_col``/``status`` on every link in place."""
    return PlacementResolver(grid, links).resolve(layout)
