"""Job record DTO — the externally observed contract of a processing job."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class Job(BaseModel):
    """One user submission: a source document plus its processing progress."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    status: JobStatus = JobStatus.PENDING
    file_name: str = ""
    source_document_ref: str

    total_links: int = 0
    processed_links: int = 0
    failed_links: int = 0
    resume_from_index: int = 0

    paused_at: Optional[datetime] = None
    result_document_ref: Optional[str] = None
    partial_result_ref: Optional[str] = None
    error_message: Optional[str] = None

    provider_mode: Optional[str] = None
    worker_token: Optional[str] = None

    # Usage accounting
    api_calls_made: int = 0
    views_fetched: int = 0

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def progress(self) -> float:
        """Fraction of links processed, 0.0 – 1.0."""
        if self.total_links <= 0:
            return 0.0
        return self.processed_links / self.total_links
