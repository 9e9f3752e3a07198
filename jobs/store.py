"""
Storage interfaces used by the orchestrator, plus in-process
implementations.

  BlobStore  — opaque documents addressed by path
  JobStore   — mutable job records addressed by id, with a
               compare-and-set primitive for status transitions

Every implementation reports storage failures as ``InfrastructureError``.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Mapping

from pydantic import ValidationError

from dto.job import Job, utcnow
from errors import InfrastructureError

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Blob stores
# ------------------------------------------------------------------

class BlobStore(ABC):

    @abstractmethod
    def download(self, path: str) -> bytes:
        ...

    @abstractmethod
    def upload(self, path: str, data: bytes) -> None:
        """Create or replace the blob at *path*."""
        ...


class InMemoryBlobStore(BlobStore):

    def __init__(self) -> None:
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def download(self, path: str) -> bytes:
        with self._lock:
            try:
                return self._blobs[path]
            except KeyError:
                raise InfrastructureError(f"Blob not found: {path}") from None

    def upload(self, path: str, data: bytes) -> None:
        with self._lock:
            self._blobs[path] = bytes(data)

    def __contains__(self, path: str) -> bool:
        return path in self._blobs


class LocalBlobStore(BlobStore):
    """Blobs stored as files below a root directory."""

    def __init__(self, root: str | Path):
        self._root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self._root / path).resolve()
        if self._root != target and self._root not in target.parents:
            raise InfrastructureError(f"Blob path escapes store root: {path}")
        return target

    def download(self, path: str) -> bytes:
        try:
            return self._resolve(path).read_bytes()
        except OSError as exc:
            raise InfrastructureError(f"Failed to download {path}: {exc}") from exc

    def upload(self, path: str, data: bytes) -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise InfrastructureError(f"Failed to upload {path}: {exc}") from exc


# ------------------------------------------------------------------
# Job stores
# ------------------------------------------------------------------

class JobStore(ABC):

    @abstractmethod
    def create(self, job: Job) -> Job:
        ...

    @abstractmethod
    def get(self, job_id: str) -> Job:
        ...

    @abstractmethod
    def update(self, job_id: str, **fields: Any) -> Job:
        """Unconditionally set *fields*; returns the updated record."""
        ...

    @abstractmethod
    def compare_and_set(
        self, job_id: str, expected: Mapping[str, Any], **fields: Any
    ) -> bool:
        """
        Atomically set *fields* only if every ``expected`` field currently
        has the given value.  Returns whether the update was applied.
        """
        ...


class InMemoryJobStore(JobStore):
    """Thread-safe dict-backed JobStore; callers always get copies."""

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.RLock()

    def _current(self, job_id: str) -> Job:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise InfrastructureError(f"Job not found: {job_id}") from None

    @staticmethod
    def _apply(job: Job, fields: Mapping[str, Any]) -> Job:
        unknown = set(fields) - set(Job.model_fields)
        if unknown:
            raise ValueError(f"Unknown job field(s): {sorted(unknown)}")
        data = job.model_dump()
        data.update(fields)
        data["updated_at"] = utcnow()
        try:
            return Job.model_validate(data)
        except ValidationError as exc:
            raise ValueError(f"Invalid job update: {exc}") from exc

    def create(self, job: Job) -> Job:
        with self._lock:
            if job.id in self._jobs:
                raise InfrastructureError(f"Job already exists: {job.id}")
            self._jobs[job.id] = job.model_copy(deep=True)
            return job.model_copy(deep=True)

    def get(self, job_id: str) -> Job:
        with self._lock:
            return self._current(job_id).model_copy(deep=True)

    def update(self, job_id: str, **fields: Any) -> Job:
        with self._lock:
            updated = self._apply(self._current(job_id), fields)
            self._jobs[job_id] = updated
            return updated.model_copy(deep=True)

    def compare_and_set(
        self, job_id: str, expected: Mapping[str, Any], **fields: Any
    ) -> bool:
        with self._lock:
            current = self._current(job_id)
            for name, value in expected.items():
                if getattr(current, name) != value:
                    return False
            self._jobs[job_id] = self._apply(current, fields)
            return True
