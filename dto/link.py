"""
DTOs produced by the planning phase.

    PlacementPlan
      ├─ layout: LayoutFormat
      └─ links: List[LinkRecord]
           row/col            -> where the link was found
           views_row/views_col -> where its metric will be written
"""

from __future__ import annotations

import enum
from typing import List, Optional, Set, Tuple

from pydantic import BaseModel

from dto.coordinate import CellRef


class LayoutFormat(str, enum.Enum):
    VERTICAL = "vertical"
    HORIZONTAL_BELOW = "horizontal_below"
    ALTERNATING = "alternating"


class ResolutionStatus(str, enum.Enum):
    UNRESOLVED = "unresolved"
    PLACED = "placed"
    SKIPPED = "skipped"


class LinkRecord(BaseModel):
    """A discovered link cell and (once resolved) its metric target."""

    row: int
    col: int
    raw_text: str
    canonical_id: Optional[str] = None
    views_row: Optional[int] = None
    views_col: Optional[int] = None
    status: ResolutionStatus = ResolutionStatus.UNRESOLVED

    @property
    def cell(self) -> CellRef:
        return CellRef(row=self.row, col=self.col)

    @property
    def views_cell(self) -> Optional[CellRef]:
        if self.views_row is None or self.views_col is None:
            return None
        return CellRef(row=self.views_row, col=self.views_col)


class PlacementPlan(BaseModel):
    """Fully resolved output of the planning phase for one document."""

    layout: LayoutFormat
    links: List[LinkRecord] = []

    @property
    def placed(self) -> List[LinkRecord]:
        return [l for l in self.links if l.status == ResolutionStatus.PLACED]

    @property
    def skipped(self) -> List[LinkRecord]:
        return [l for l in self.links if l.status == ResolutionStatus.SKIPPED]

    @property
    def link_cells(self) -> Set[Tuple[int, int]]:
        return {(l.row, l.col) for l in self.links}
