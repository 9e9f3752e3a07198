from abc import ABC, abstractmethod
from typing import Dict, List

from dto.link import LinkRecord
from dto.outcome import MetricOutcome


class MetricsProvider(ABC):
    """
    Base class for view-count sources.

    The orchestrator hands a provider ``batch_size`` links at a time and
    checkpoints after every call to ``fetch``, so ``batch_size`` also sets
    the checkpoint granularity of a fetch mode.
    """

    batch_size: int = 10

    def __init__(self) -> None:
        self.api_calls_made = 0

    @abstractmethod
    def fetch(self, links: List[LinkRecord]) -> Dict[str, MetricOutcome]:
        """
        Return an outcome for every canonical id in *links*.

        Raises ``ProviderError`` when the whole call failed (the caller
        marks every link of the call as ``Error``) and ``ProviderTimeout``
        when the job must be aborted.
        """
        ...

    def close(self) -> None:
        """Release network resources, if any."""

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
