"""
Link scanner — finds every cell holding a post link and extracts the
post's shortcode (the canonical id used to join provider results).

Two recognizers:
  - ``LINK_PATTERN``   domain + /reel|reels|p|tv/ + shortcode  → usable
  - ``DOMAIN_PATTERN`` bare domain match                       → no id

Domain-only matches are never returned as link records (they cannot be
joined to any provider result), but ``is_link_text`` still treats them as
links so the placement resolver and the writer never overwrite them.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from dto.link import LinkRecord
from planning.cell_reader import SheetGrid

logger = logging.getLogger(__name__)


LINK_PATTERN = re.compile(
    r"(?:https?://)?(?:www\.)?(?:instagram\.com|instagr\.am)/"
    r"(?:reel|reels|p|tv)/([A-Za-z0-9_-]+)",
    re.IGNORECASE,
)
DOMAIN_PATTERN = re.compile(
    r"(?:https?://)?(?:www\.)?(?:instagram\.com|instagr\.am)",
    re.IGNORECASE,
)

_SURROUNDING_QUOTES = re.compile(r"^[\"']|[\"']$")


def clean_link_text(text: str) -> str:
    """Trim whitespace and one pair of surrounding quote characters."""
    return _SURROUNDING_QUOTES.sub("", text.strip())


def is_link_text(text: Optional[str]) -> bool:
    """True if *text* matches either recognizer."""
    if not text:
        return False
    cleaned = clean_link_text(text)
    return bool(LINK_PATTERN.search(cleaned) or DOMAIN_PATTERN.search(cleaned))


def extract_canonical_id(text: Optional[str]) -> Optional[str]:
    """Return the shortcode captured by ``LINK_PATTERN`` or ``None``."""
    if not text:
        return None
    m = LINK_PATTERN.search(clean_link_text(text))
    return m.group(1) if m else None


def scan_links(grid: SheetGrid) -> List[LinkRecord]:
    """
    Return a row-major list of ``LinkRecord`` for every cell whose text
    carries an extractable canonical id.
    """
    links: List[LinkRecord] = []
    domain_only = 0

    for row, col, text in grid.iter_cells():
        if not is_link_text(text):
            continue
        cleaned = clean_link_text(text)
        canonical_id = extract_canonical_id(cleaned)
        if canonical_id is None:
            domain_only += 1
            logger.debug(
                "  [Scanner] Ignoring link without shortcode at (%d, %d): %s",
                row, col, cleaned[:80],
            )
            continue
        links.append(
            LinkRecord(
                row=row,
                col=col,
                raw_text=cleaned,
                canonical_id=canonical_id,
            )
        )

    if domain_only:
        logger.info(
            "  [Scanner] %d domain-only link(s) skipped (no shortcode)",
            domain_only,
        )
    logger.info("  [Scanner] Found %d link(s)", len(links))
    return links
