"""
Retrying job-record writes.

Every write made while a job runs goes through ``checkpoint`` (or
``transition`` for conditional status changes) so that a briefly
unavailable record store does not kill an otherwise healthy job.  Only
``InfrastructureError`` is retried; when the attempts are exhausted it
propagates and the job fails.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from tenacity import (
    Retrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from dto.job import Job
from errors import InfrastructureError
from jobs.store import JobStore

logger = logging.getLogger(__name__)

# Retry configuration
_MAX_ATTEMPTS = 4
_WAIT_MULTIPLIER = 0.5
_MIN_WAIT_SECONDS = 0.5
_MAX_WAIT_SECONDS = 8


def _retrying() -> Retrying:
    return Retrying(
        retry=retry_if_exception_type(InfrastructureError),
        stop=stop_after_attempt(_MAX_ATTEMPTS),
        wait=wait_exponential(
            multiplier=_WAIT_MULTIPLIER,
            min=_MIN_WAIT_SECONDS,
            max=_MAX_WAIT_SECONDS,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def checkpoint(store: JobStore, job_id: str, **fields: Any) -> Job:
    """Persist *fields* on the job and return the stored record."""
    for attempt in _retrying():
        with attempt:
            return store.update(job_id, **fields)
    raise AssertionError("unreachable")  # pragma: no cover


def transition(
    store: JobStore, job_id: str, expected: Mapping[str, Any], **fields: Any
) -> bool:
    """``compare_and_set`` with the same retries as ``checkpoint``."""
    for attempt in _retrying():
        with attempt:
            return store.compare_and_set(job_id, expected, **fields)
    raise AssertionError("unreachable")  # pragma: no cover
