"""
MetricsProvider backed by the HikerAPI media-info endpoint (one request
per post).

For each link the original URL is tried first, then canonical
``/reel/<id>/`` and ``/p/<id>/`` reconstructions, since the endpoint
answers 404 for some URL spellings of an existing post.

Outcome per post:
  - 2xx with a view count     → Success
  - 2xx without a view count  → NotAvailable
  - every URL variant failed  → Error
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from dto.link import LinkRecord
from dto.outcome import Error, MetricOutcome, NotAvailable, Success
from providers.response_parser import extract_view_count
from providers.service import MetricsProvider

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://api.hikerapi.com"
_MEDIA_INFO_PATH = "/v2/media/info/by/url"

_MAX_RETRIES = 3
_MIN_WAIT_SECONDS = 1
_MAX_WAIT_SECONDS = 10

_RETRYABLE_EXCEPTIONS = (httpx.TransportError,)

_retry_decorator = retry(
    retry=retry_if_exception_type(_RETRYABLE_EXCEPTIONS),
    stop=stop_after_attempt(_MAX_RETRIES),
    wait=wait_exponential(multiplier=1, min=_MIN_WAIT_SECONDS, max=_MAX_WAIT_SECONDS),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


def candidate_urls(link: LinkRecord, try_alternates: bool = True) -> List[str]:
    urls = [link.raw_text]
    if try_alternates and link.canonical_id:
        urls += [
            f"https://www.instagram.com/reel/{link.canonical_id}/",
            f"https://www.instagram.com/p/{link.canonical_id}/",
        ]
    # Preserve order, drop duplicates
    return list(dict.fromkeys(urls))


class HikerProvider(MetricsProvider):
    """MetricsProvider that queries one post at a time."""

    batch_size = 1

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = _DEFAULT_BASE_URL,
        try_alternate_urls: bool = True,
        timeout_seconds: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        super().__init__()
        self._try_alternates = try_alternate_urls
        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=base_url,
            timeout=timeout_seconds,
        )
        self._headers = {"accept": "application/json", "x-access-key": api_key}
        self._debug_logged = 0

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    @_retry_decorator
    def _get(self, target_url: str) -> httpx.Response:
        self.api_calls_made += 1
        return self._client.get(
            _MEDIA_INFO_PATH, params={"url": target_url}, headers=self._headers
        )

    def _media_info(self, target_url: str) -> Optional[dict]:
        """Return the decoded payload, or ``None`` if this URL variant failed."""
        try:
            response = self._get(target_url)
        except httpx.HTTPError as exc:
            logger.warning("  [Hiker] Request for %s failed: %s", target_url, exc)
            return None
        if response.is_error:
            logger.debug(
                "  [Hiker] HTTP %d for %s", response.status_code, target_url
            )
            return None
        try:
            payload = response.json()
        except ValueError:
            logger.warning("  [Hiker] Non-JSON response for %s", target_url)
            return None
        return payload if isinstance(payload, dict) else {"items": payload}

    def _fetch_one(self, link: LinkRecord) -> MetricOutcome:
        for target_url in candidate_urls(link, self._try_alternates):
            payload = self._media_info(target_url)
            if payload is None:
                continue

            # Log the shape of the first few payloads to diagnose field drift
            if self._debug_logged < 3:
                self._debug_logged += 1
                logger.debug(
                    "  [Hiker] id=%s top-level keys=%s",
                    link.canonical_id, sorted(payload)[:15],
                )

            views = extract_view_count(payload)
            if views is None:
                logger.info("  [Hiker] id=%s: no view field in response", link.canonical_id)
                return NotAvailable()
            return Success(views=views)

        logger.info("  [Hiker] id=%s: all URL variants failed", link.canonical_id)
        return Error(reason="all URL variants failed")

    def fetch(self, links: List[LinkRecord]) -> Dict[str, MetricOutcome]:
        return {link.canonical_id: self._fetch_one(link) for link in links}
