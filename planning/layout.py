"""
Layout classifier — picks one ``LayoutFormat`` for the whole document.

Decision procedure (first match wins):
  1. Fewer than 2 links                                  → vertical
  2. Distinct link columns are evenly spaced 2 apart      → alternating
     (Link | Views | Link | Views ...), even if links share rows
  3. Some row holds more than one link → majority vote over each link's
     right and below neighbours; "below" majority          → horizontal_below
  4. Otherwise                                            → vertical

Headers are optional and localized, so the vote only looks at cell
geometry and whether neighbours are empty, numeric, links or text.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import List

from dto.link import LayoutFormat, LinkRecord
from errors import LayoutAmbiguity
from planning.cell_reader import SheetGrid
from planning.scanner import is_link_text

logger = logging.getLogger(__name__)

_RIGHT = "right"
_BELOW = "below"

_ALTERNATING_GAP = 2


def _is_alternating(links: List[LinkRecord]) -> bool:
    cols = sorted({l.col for l in links})
    if len(cols) < 2:
        return False
    return all(b - a == _ALTERNATING_GAP for a, b in zip(cols, cols[1:]))


def _has_shared_row(links: List[LinkRecord]) -> bool:
    per_row = Counter(l.row for l in links)
    return any(n > 1 for n in per_row.values())


def _vote(grid: SheetGrid, link: LinkRecord) -> str:
    """Which neighbour of *link* looks like its metric cell."""
    right = grid.text_at(link.row, link.col + 1)
    below = grid.text_at(link.row + 1, link.col)

    right_is_link = is_link_text(right)
    below_is_link = is_link_text(below)
    if right_is_link and not below_is_link:
        return _BELOW
    if below_is_link and not right_is_link:
        return _RIGHT
    if right_is_link and below_is_link:
        return _RIGHT

    right_free = grid.is_empty(link.row, link.col + 1) or grid.is_numeric(
        link.row, link.col + 1
    )
    below_free = grid.is_empty(link.row + 1, link.col) or grid.is_numeric(
        link.row + 1, link.col
    )

    # A free slot on one side and real content on the other.
    if right_free and not below_free:
        return _RIGHT
    if below_free and not right_free:
        return _BELOW
    return _RIGHT


def _majority_vote(grid: SheetGrid, links: List[LinkRecord]) -> LayoutFormat:
    votes = Counter(_vote(grid, l) for l in links)
    logger.debug(
        "  [Layout] Votes: right=%d below=%d", votes[_RIGHT], votes[_BELOW]
    )
    if votes[_BELOW] == votes[_RIGHT]:
        raise LayoutAmbiguity(
            f"tied vote ({votes[_RIGHT]} right / {votes[_BELOW]} below)"
        )
    if votes[_BELOW] > votes[_RIGHT]:
        return LayoutFormat.HORIZONTAL_BELOW
    return LayoutFormat.VERTICAL


def classify_layout(grid: SheetGrid, links: List[LinkRecord]) -> LayoutFormat:
    """Infer the document's layout from link positions and neighbours."""
    if len(links) < 2:
        return LayoutFormat.VERTICAL

    if _is_alternating(links):
        return LayoutFormat.ALTERNATING

    if _has_shared_row(links):
        try:
            return _majority_vote(grid, links)
        except LayoutAmbiguity as exc:
            logger.info("  [Layout] Ambiguous layout (%s) — using vertical", exc)
            return LayoutFormat.VERTICAL

    return LayoutFormat.VERTICAL
