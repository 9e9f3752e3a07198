"""
Synthetic provider — invents plausible view counts locally.

Used for demos and for exercising the job machinery without network
access or API spend.  Counts follow a skewed distribution: most posts get
thousands of views, very few get millions.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, Dict, List, Optional

from dto.link import LinkRecord
from dto.outcome import MetricOutcome, Success
from providers.service import MetricsProvider

logger = logging.getLogger(__name__)

# (low inclusive, high exclusive, probability)
VIEW_BUCKETS = (
    (1_000, 10_000, 0.40),
    (10_000, 100_000, 0.35),
    (100_000, 1_000_000, 0.20),
    (1_000_000, 10_000_000, 0.05),
)


def generate_views(rng: random.Random) -> int:
    roll = rng.random()
    cumulative = 0.0
    for low, high, weight in VIEW_BUCKETS:
        cumulative += weight
        if roll <= cumulative:
            return rng.randrange(low, high)
    # Only reachable through float rounding of the cumulative weights.
    return rng.randrange(5_000, 55_000)


class SyntheticProvider(MetricsProvider):
    """MetricsProvider that never leaves the process."""

    def __init__(
        self,
        batch_size: int = 10,
        delay_seconds: float = 0.0,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__()
        self.batch_size = batch_size
        self._delay = delay_seconds
        self._rng = rng or random.Random()
        self._sleep = sleep

    def fetch(self, links: List[LinkRecord]) -> Dict[str, MetricOutcome]:
        outcomes: Dict[str, MetricOutcome] = {}
        for link in links:
            outcomes[link.canonical_id] = Success(views=generate_views(self._rng))
            if self._delay:
                self._sleep(self._delay)
        logger.debug("  [Synthetic] Generated %d value(s)", len(outcomes))
        return outcomes
