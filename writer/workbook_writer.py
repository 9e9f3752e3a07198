"""
Spreadsheet writer — materializes metric outcomes into the document.

Only the resolved target cells are assigned; every other cell, and the
style of the target cells themselves, is left as loaded.  Each target is
checked once more right before writing so a link cell is never
overwritten, whatever the planning phase decided.
"""

from __future__ import annotations

import io
import logging
from typing import Dict, Iterable, Optional, Set, Tuple

import openpyxl

from dto.link import LinkRecord, ResolutionStatus
from dto.outcome import MetricOutcome, display_value
from planning.cell_reader import cell_text
from planning.scanner import is_link_text

logger = logging.getLogger(__name__)


def write_outcomes(
    document: bytes,
    links: Iterable[LinkRecord],
    outcomes: Dict[str, MetricOutcome],
    protected_cells: Optional[Set[Tuple[int, int]]] = None,
) -> bytes:
    """
    Write the outcome of each placed link into its target cell of the
    first worksheet and return the serialized workbook.

    Links that are skipped, unresolved, or have no outcome are ignored.
    *protected_cells* are coordinates that must never be written (normally
    every link cell of the plan).
    """
    links = list(links)
    protected = set(protected_cells or ())
    protected.update((l.row, l.col) for l in links)

    workbook = openpyxl.load_workbook(
        io.BytesIO(document),
        data_only=False,
        keep_links=True,
        rich_text=True,
    )
    ws = workbook.worksheets[0]

    written = refused = missing = 0
    for link in links:
        if link.status != ResolutionStatus.PLACED or link.views_cell is None:
            continue
        outcome = outcomes.get(link.canonical_id or "")
        if outcome is None:
            missing += 1
            continue

        target = link.views_cell
        cell = ws.cell(row=target.row, column=target.col)
        if target.key in protected or is_link_text(cell_text(cell)):
            refused += 1
            logger.warning(
                "  [Writer] Refusing to overwrite link cell %s (from %s)",
                target.a1, link.cell.a1,
            )
            continue

        cell.value = display_value(outcome)
        written += 1

    logger.info(
        "  [Writer] %d cell(s) written, %d refused, %d without outcome",
        written, refused, missing,
    )

    buf = io.BytesIO()
    workbook.save(buf)
    workbook.close()
    return buf.getvalue()
