"""
Planning phase: Scanner → Classifier → Resolver.

Pure with respect to the outside world: takes document bytes (or a
worksheet), returns a ``PlacementPlan``.  Only the first worksheet is
considered.
"""

from __future__ import annotations

import io
import logging
from zipfile import BadZipFile

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.worksheet.worksheet import Worksheet

from dto.link import PlacementPlan
from errors import ScanError
from planning.cell_reader import SheetGrid
from planning.layout import classify_layout
from planning.placement import resolve_placements
from planning.scanner import scan_links

logger = logging.getLogger(__name__)


def plan_worksheet(ws: Worksheet) -> PlacementPlan:
    grid = SheetGrid.from_worksheet(ws)
    links = scan_links(grid)
    if not links:
        raise ScanError(f"No post links found in worksheet '{ws.title}'")

    layout = classify_layout(grid, links)
    logger.info("  [Planning] Detected layout: %s", layout.value)

    resolve_placements(grid, links, layout)
    return PlacementPlan(layout=layout, links=links)


def build_plan(document: bytes) -> PlacementPlan:
    """Load *document* (xlsx bytes) and plan its first worksheet."""
    try:
        workbook = openpyxl.load_workbook(
            io.BytesIO(document),
            data_only=False,
            rich_text=True,
        )
    except (BadZipFile, InvalidFileException, KeyError) as exc:
        raise ScanError(f"Could not read spreadsheet: {exc}") from exc

    try:
        if not workbook.worksheets:
            raise ScanError("No worksheets found")
        return plan_worksheet(workbook.worksheets[0])
    finally:
        workbook.close()


__all__ = ["build_plan", "plan_worksheet"]
