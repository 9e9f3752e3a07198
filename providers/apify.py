"""
MetricsProvider backed by an Apify actor run (bulk, asynchronous).

One ``fetch`` call = one actor run:
  1. POST  /acts/{actor}/runs             → {id, defaultDatasetId}
  2. GET   /actor-runs/{id}                 polled until a terminal status
  3. GET   /datasets/{datasetId}/items     → result items

Items are joined back to the request by the shortcode of their
``inputUrl`` (or ``url``).  A requested shortcode with no item is an
``Error``; an item without any view-count field is ``NotAvailable``.

Reads APIFY_API_KEY through ``config.Settings``.  Transient transport
errors on each HTTP call are retried with exponential backoff via
tenacity.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

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
from errors import ProviderError, ProviderTimeout
from planning.scanner import extract_canonical_id
from providers.response_parser import extract_dataset_views
from providers.service import MetricsProvider

logger = logging.getLogger(__name__)

_DEFAULT_ACTOR = "apify~instagram-reel-scraper"
_DEFAULT_BASE_URL = "https://api.apify.com/v2"

# Retry configuration
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

RUN_SUCCEEDED = "SUCCEEDED"
RUN_FAILED_STATUSES = frozenset({"FAILED", "ABORTED", "TIMED-OUT"})


class ApifyProvider(MetricsProvider):
    """MetricsProvider backed by the Apify actor-run API."""

    def __init__(
        self,
        api_key: str,
        *,
        actor_id: str = _DEFAULT_ACTOR,
        base_url: str = _DEFAULT_BASE_URL,
        poll_interval_seconds: float = 5.0,
        max_poll_attempts: int = 24,
        batch_size: int = 10,
        timeout_seconds: float = 30.0,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__()
        self.batch_size = batch_size
        self._actor_id = actor_id
        self._poll_interval = poll_interval_seconds
        self._max_poll_attempts = max_poll_attempts
        self._sleep = sleep
        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=base_url,
            timeout=timeout_seconds,
        )
        self._headers = {"Authorization": f"Bearer {api_key}"}

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    @_retry_decorator
    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        self.api_calls_made += 1
        return self._client.request(method, path, headers=self._headers, **kwargs)

    def _json(self, method: str, path: str, what: str, **kwargs) -> Any:
        response = self._request(method, path, **kwargs)
        if response.is_error:
            logger.error(
                "  [Apify] %s failed: HTTP %d %s",
                what, response.status_code, response.text[:200],
            )
            raise ProviderError(f"Apify {what} failed: HTTP {response.status_code}")
        return response.json()

    @staticmethod
    def _data(body: Any, what: str) -> dict:
        """Return the ``data`` object of an API envelope."""
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise ProviderError(f"Apify {what} returned an unexpected payload")
        return data

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def _start_run(self, urls: List[str]) -> Tuple[str, str]:
        payload = {"username": urls, "resultsLimit": len(urls) * 5}
        body = self._json(
            "POST", f"/acts/{self._actor_id}/runs", "run start", json=payload
        )
        data = self._data(body, "run start")
        run_id, dataset_id = data.get("id"), data.get("defaultDatasetId")
        if not run_id or not dataset_id:
            raise ProviderError("Apify run start returned no run/dataset id")
        return run_id, dataset_id

    def _wait_for_run(self, run_id: str) -> None:
        for attempt in range(1, self._max_poll_attempts + 1):
            body = self._json("GET", f"/actor-runs/{run_id}", "status poll")
            status = self._data(body, "status poll").get("status")
            if status == RUN_SUCCEEDED:
                logger.info("  [Apify] Run %s succeeded", run_id)
                return
            if status in RUN_FAILED_STATUSES:
                raise ProviderError(f"Apify run {run_id} ended with status {status}")
            logger.debug(
                "  [Apify] Run %s status %s (poll %d/%d)",
                run_id, status, attempt, self._max_poll_attempts,
            )
            self._sleep(self._poll_interval)

        raise ProviderTimeout(
            f"Apify run {run_id} did not finish after "
            f"{self._max_poll_attempts} status checks"
        )

    def _fetch_items(self, dataset_id: str) -> List[dict]:
        body = self._json("GET", f"/datasets/{dataset_id}/items", "dataset fetch")
        if not isinstance(body, list):
            raise ProviderError("Apify dataset response is not a list")
        return [item for item in body if isinstance(item, dict)]

    # ------------------------------------------------------------------
    # MetricsProvider
    # ------------------------------------------------------------------

    def fetch(self, links: List[LinkRecord]) -> Dict[str, MetricOutcome]:
        urls = [link.raw_text for link in links]
        logger.info("  [Apify] Starting actor run with %d URL(s)", len(urls))
        try:
            run_id, dataset_id = self._start_run(urls)
            self._wait_for_run(run_id)
            items = self._fetch_items(dataset_id)
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(f"Apify request failed: {exc}") from exc

        logger.info("  [Apify] Received %d item(s)", len(items))

        by_id: Dict[str, MetricOutcome] = {}
        for item in items:
            source_url = item.get("inputUrl") or item.get("url")
            if not isinstance(source_url, str):
                continue
            canonical_id = extract_canonical_id(source_url)
            if not canonical_id:
                continue
            views = extract_dataset_views(item)
            by_id[canonical_id] = (
                Success(views=views) if views is not None else NotAvailable()
            )

        outcomes: Dict[str, MetricOutcome] = {}
        for link in links:
            outcomes[link.canonical_id] = by_id.get(
                link.canonical_id, Error(reason="missing from run results")
            )
        return outcomes
