"""
Job control surface: create, start (in the background), pause, resume,
cancel.

Status transitions requested here are applied with the store's
compare-and-set so that concurrent requests cannot both win.  Pause and
cancel only change the record; the running worker notices at its next
checkpoint.
"""

from __future__ import annotations

import logging
import threading
from pathlib import PurePosixPath
from typing import Optional

from config import ProviderMode
from dto.job import Job, JobStatus, utcnow
from errors import InvalidTransition
from jobs.orchestrator import BatchFetchOrchestrator
from jobs.store import JobStore

logger = logging.getLogger(__name__)


class JobController:

    def __init__(self, orchestrator: BatchFetchOrchestrator, jobs: JobStore):
        self._orchestrator = orchestrator
        self._jobs = jobs

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_job(self, source_document_ref: str, file_name: Optional[str] = None) -> Job:
        job = Job(
            source_document_ref=source_document_ref,
            file_name=file_name or PurePosixPath(source_document_ref).name,
        )
        created = self._jobs.create(job)
        logger.info("[Jobs] Created job %s for %s", created.id, source_document_ref)
        return created

    def get(self, job_id: str) -> Job:
        return self._jobs.get(job_id)

    def run(self, job_id: str, mode: ProviderMode) -> Job:
        """Process *job_id* in the calling thread."""
        return self._orchestrator.run(job_id, mode)

    def start(self, job_id: str, mode: ProviderMode) -> threading.Thread:
        """
        Start or resume *job_id* on a background thread and return at once.

        Progress is observed through the job record.
        """
        thread = threading.Thread(
            target=self._orchestrator.run,
            args=(job_id, ProviderMode(mode)),
            name=f"job-{job_id}",
            daemon=True,
        )
        thread.start()
        logger.info("[Jobs] Dispatched job %s", job_id)
        return thread

    # ------------------------------------------------------------------
    # Control requests
    # ------------------------------------------------------------------

    def pause(self, job_id: str) -> Job:
        applied = self._jobs.compare_and_set(
            job_id,
            {"status": JobStatus.PROCESSING},
            status=JobStatus.PAUSED,
            paused_at=utcnow(),
        )
        if not applied:
            raise self._illegal(job_id, "pause")
        logger.info("[Jobs] Pause requested for job %s", job_id)
        return self._jobs.get(job_id)

    def resume(
        self,
        job_id: str,
        mode: ProviderMode,
        background: bool = True,
    ):
        """
        Re-invoke the orchestrator for a paused job.

        Returns the worker thread when *background* is true, else the job
        record after the run.  The worker that was paused must have
        released the job (written its partial result) first.
        """
        job = self._jobs.get(job_id)
        if job.status != JobStatus.PAUSED:
            raise self._illegal(job_id, "resume", job)
        if job.worker_token is not None:
            raise InvalidTransition(
                f"Job {job_id} is still being paused; retry shortly"
            )
        if background:
            return self.start(job_id, mode)
        return self.run(job_id, mode)

    def cancel(self, job_id: str, reason: str = "Cancelled by user") -> Job:
        for status in (JobStatus.PROCESSING, JobStatus.PAUSED):
            if self._jobs.compare_and_set(
                job_id,
                {"status": status},
                status=JobStatus.FAILED,
                error_message=reason,
            ):
                logger.info("[Jobs] Job %s cancelled: %s", job_id, reason)
                return self._jobs.get(job_id)
        raise self._illegal(job_id, "cancel")

    def _illegal(
        self, job_id: str, action: str, job: Optional[Job] = None
    ) -> InvalidTransition:
        job = job or self._jobs.get(job_id)
        return InvalidTransition(
            f"Cannot {action} job {job_id} while it is {job.status.value}"
        )
