"""
Runtime configuration.

Values come from the environment (a ``.env`` file is honoured via
python-dotenv).  The active provider mode is NOT part of the settings: it is
handed to the orchestrator explicitly on every invocation.
"""

from __future__ import annotations

import enum
import os
from typing import Optional

import dotenv
from pydantic import BaseModel

dotenv.load_dotenv()


class ProviderMode(str, enum.Enum):
    SYNTHETIC = "synthetic"
    APIFY = "apify"
    HIKER = "hiker"


class Settings(BaseModel):
    apify_api_key: Optional[str] = None
    apify_actor_id: str = "apify~instagram-reel-scraper"
    apify_base_url: str = "https://api.apify.com/v2"
    apify_poll_interval_seconds: float = 5.0
    apify_max_poll_attempts: int = 24

    hiker_api_key: Optional[str] = None
    hiker_base_url: str = "https://api.hikerapi.com"
    hiker_try_alternate_urls: bool = True

    http_timeout_seconds: float = 30.0
    batch_size: int = 10
    synthetic_delay_seconds: float = 0.05


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


def load_settings() -> Settings:
    """Build a ``Settings`` instance from the current environment."""
    defaults = Settings()
    return Settings(
        apify_api_key=os.getenv("APIFY_API_KEY") or None,
        apify_actor_id=os.getenv("APIFY_ACTOR_ID", defaults.apify_actor_id),
        apify_base_url=os.getenv("APIFY_BASE_URL", defaults.apify_base_url),
        apify_poll_interval_seconds=_env_float(
            "APIFY_POLL_INTERVAL_SECONDS", defaults.apify_poll_interval_seconds
        ),
        apify_max_poll_attempts=_env_int(
            "APIFY_MAX_POLL_ATTEMPTS", defaults.apify_max_poll_attempts
        ),
        hiker_api_key=os.getenv("HIKER_API_KEY") or None,
        hiker_base_url=os.getenv("HIKER_BASE_URL", defaults.hiker_base_url),
        hiker_try_alternate_urls=os.getenv(
            "HIKER_TRY_ALTERNATE_URLS", "true"
        ).lower() not in ("0", "false", "no"),
        http_timeout_seconds=_env_float(
            "HTTP_TIMEOUT_SECONDS", defaults.http_timeout_seconds
        ),
        batch_size=_env_int("FETCH_BATCH_SIZE", defaults.batch_size),
        synthetic_delay_seconds=_env_float(
            "SYNTHETIC_DELAY_SECONDS", defaults.synthetic_delay_seconds
        ),
    )
