"""
Helpers for digging a view count out of provider payloads whose shape
varies between endpoints and API versions.
"""

import logging
import math
from typing import Any, Iterable, Optional

logger = logging.getLogger(__name__)

# Field names that carry a view count in per-item media payloads.
MEDIA_VIEW_FIELDS = ("view_count", "play_count", "video_play_count", "video_view_count")

# Field names that carry a view count in bulk dataset items.
DATASET_VIEW_FIELDS = ("videoPlayCount", "playCount", "videoViewCount")

# Sub-objects of a media object that may hold the counters instead.
_NESTED_STATS_KEYS = ("metrics", "insights")

# Envelopes the media object itself may be wrapped in.
_ENVELOPE_KEYS = ("media_or_ad", "data", "media")


def as_count(value: Any) -> Optional[int]:
    """Coerce a numeric field into a non-negative int, or ``None``."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float):
        return int(value) if math.isfinite(value) and value >= 0 else None
    if isinstance(value, str):
        trimmed = value.strip().replace(",", "")
        if trimmed.isdigit():
            return int(trimmed)
    return None


def first_count(obj: Any, fields: Iterable[str]) -> Optional[int]:
    """Return the first field of *fields* in *obj* holding a count."""
    if not isinstance(obj, dict):
        return None
    for field in fields:
        count = as_count(obj.get(field))
        if count is not None:
            return count
    return None


def _views_in_media(obj: Any) -> Optional[int]:
    count = first_count(obj, MEDIA_VIEW_FIELDS)
    if count is not None:
        return count
    if isinstance(obj, dict):
        for key in _NESTED_STATS_KEYS:
            count = first_count(obj.get(key), MEDIA_VIEW_FIELDS)
            if count is not None:
                return count
    return None


def extract_view_count(payload: Any) -> Optional[int]:
    """
    Find the view count in a per-item media payload.

    Looks, in order, at the top level, under each known envelope key, and
    at the first element of an ``items`` list.
    """
    count = _views_in_media(payload)
    if count is not None or not isinstance(payload, dict):
        return count

    for key in _ENVELOPE_KEYS:
        count = _views_in_media(payload.get(key))
        if count is not None:
            return count

    items = payload.get("items")
    if isinstance(items, list) and items:
        return _views_in_media(items[0])
    return None


def extract_dataset_views(item: Any) -> Optional[int]:
    return first_count(item, DATASET_VIEW_FIELDS)
