from typing import Optional

import httpx

from config import ProviderMode, Settings
from errors import ConfigurationError
from providers.apify import ApifyProvider
from providers.hiker import HikerProvider
from providers.service import MetricsProvider
from providers.synthetic import SyntheticProvider


def make_provider(
    mode: ProviderMode,
    settings: Settings,
    client: Optional[httpx.Client] = None,
) -> MetricsProvider:
    """
    Instantiate the MetricsProvider for *mode*.

    The mode is always passed in by the caller:
      - "synthetic" → SyntheticProvider (no credentials)
      - "apify"     → ApifyProvider     (needs APIFY_API_KEY)
      - "hiker"     → HikerProvider     (needs HIKER_API_KEY)

    *client* overrides the HTTP client of network-backed providers.
    """
    try:
        mode = ProviderMode(mode)
    except ValueError as exc:
        raise ConfigurationError(f"Unknown provider mode: {mode!r}") from exc

    if mode == ProviderMode.SYNTHETIC:
        return SyntheticProvider(
            batch_size=settings.batch_size,
            delay_seconds=settings.synthetic_delay_seconds,
        )
    if mode == ProviderMode.APIFY:
        if not settings.apify_api_key:
            raise ConfigurationError("APIFY_API_KEY not configured")
        return ApifyProvider(
            settings.apify_api_key,
            actor_id=settings.apify_actor_id,
            base_url=settings.apify_base_url,
            poll_interval_seconds=settings.apify_poll_interval_seconds,
            max_poll_attempts=settings.apify_max_poll_attempts,
            batch_size=settings.batch_size,
            timeout_seconds=settings.http_timeout_seconds,
            client=client,
        )
    if mode == ProviderMode.HIKER:
        if not settings.hiker_api_key:
            raise ConfigurationError("HIKER_API_KEY not configured")
        return HikerProvider(
            settings.hiker_api_key,
            base_url=settings.hiker_base_url,
            try_alternate_urls=settings.hiker_try_alternate_urls,
            timeout_seconds=settings.http_timeout_seconds,
            client=client,
        )
    raise ConfigurationError(f"Unsupported provider mode: {mode.value}")
