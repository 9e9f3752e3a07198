"""
Batch fetch job machinery.

  - BatchFetchOrchestrator — runs one job: plan, fetch, checkpoint, write
  - JobController          — create / start / pause / resume / cancel
  - stores                 — blob and job-record storage interfaces
"""

from jobs.controller import JobController
from jobs.orchestrator import BatchFetchOrchestrator
from jobs.store import (
    BlobStore,
    InMemoryBlobStore,
    InMemoryJobStore,
    JobStore,
    LocalBlobStore,
)

__all__ = [
    "BatchFetchOrchestrator",
    "JobController",
    "BlobStore",
    "JobStore",
    "InMemoryBlobStore",
    "InMemoryJobStore",
    "LocalBlobStore",
]
