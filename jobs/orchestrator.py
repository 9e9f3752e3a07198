"""
Batch fetch orchestrator — drives one job from its claim to a terminal
(or paused) state.

    claim ──► plan ──► fetch in provider-sized chunks ──► write ──► completed
                          │  checkpoint after every chunk
                          ├─ paused    → upload partial, release, return
                          ├─ cancelled → upload partial, release, return
                          └─ superseded by another worker → return

A run owns the job while ``worker_token`` holds its token.  Per-link
provider failures become ``Error`` outcomes; anything else that escapes
the run marks the job failed (after a best-effort partial upload).
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional

from config import ProviderMode, Settings, load_settings
from dto.job import Job, JobStatus, utcnow
from dto.link import LinkRecord, PlacementPlan
from dto.outcome import Error, MetricOutcome, Success, is_failure
from errors import InfrastructureError, ProviderError
from jobs.checkpoint import checkpoint, transition
from jobs.store import BlobStore, JobStore
from planning import build_plan
from providers.factory import make_provider
from providers.service import MetricsProvider
from writer import write_outcomes

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[ProviderMode, Settings], MetricsProvider]

_XLSX_SUFFIX = re.compile(r"\.xlsx?$", re.IGNORECASE)


def result_path(source_path: str) -> str:
    return _XLSX_SUFFIX.sub("", source_path) + "_processed.xlsx"


def partial_path(source_path: str) -> str:
    return _XLSX_SUFFIX.sub("", source_path) + "_partial.xlsx"


def _chunks(items: List[LinkRecord], size: int) -> Iterator[List[LinkRecord]]:
    size = max(1, size)
    for i in range(0, len(items), size):
        yield items[i : i + size]


@dataclass
class _RunState:
    """Everything a run needs to materialize partial output at any point."""

    job_id: str
    token: str
    source_ref: str
    resuming: bool
    plan: Optional[PlacementPlan] = None
    base_document: Optional[bytes] = None
    start_index: int = 0
    index: int = 0
    processed: int = 0
    failed: int = 0
    api_calls_before: int = 0
    views_fetched: int = 0
    outcomes: Dict[str, MetricOutcome] = field(default_factory=dict)

    @property
    def done_links(self) -> List[LinkRecord]:
        if self.plan is None:
            return []
        return self.plan.placed[self.start_index : self.index]


class BatchFetchOrchestrator:
    """Runs jobs against a blob store and a job record store."""

    def __init__(
        self,
        blobs: BlobStore,
        jobs: JobStore,
        settings: Optional[Settings] = None,
        provider_factory: ProviderFactory = make_provider,
    ):
        self._blobs = blobs
        self._jobs = jobs
        self._settings = settings or load_settings()
        self._provider_factory = provider_factory

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, job_id: str, mode: ProviderMode) -> Job:
        """
        Start (pending) or resume (paused) *job_id* using provider *mode*
        and process it until it completes, pauses, fails or is cancelled.

        Returns the job record as left by this run.  If the job cannot be
        claimed (wrong status, or another worker still holds it) nothing
        is done and the current record is returned.
        """
        mode = ProviderMode(mode)
        job = self._jobs.get(job_id)
        state = self._claim(job, mode)
        if state is None:
            return self._jobs.get(job_id)

        logger.info(
            "[Orchestrator] %s job %s with mode=%s",
            "Resuming" if state.resuming else "Starting", job_id, mode.value,
        )
        try:
            return self._process(state, job, mode)
        except Exception as exc:
            logger.exception("[Orchestrator] Job %s failed", job_id)
            return self._fail(state, str(exc) or exc.__class__.__name__)

    # ------------------------------------------------------------------
    # Claiming
    # ------------------------------------------------------------------

    def _claim(self, job: Job, mode: ProviderMode) -> Optional[_RunState]:
        if job.status == JobStatus.PENDING:
            expected = {"status": JobStatus.PENDING}
        elif job.status == JobStatus.PAUSED:
            # The previous worker must have released the job first.
            expected = {"status": JobStatus.PAUSED, "worker_token": None}
        else:
            logger.warning(
                "[Orchestrator] Job %s is %s — nothing to do",
                job.id, job.status.value,
            )
            return None

        token = uuid.uuid4().hex
        claimed = transition(
            self._jobs,
            job.id,
            expected,
            status=JobStatus.PROCESSING,
            worker_token=token,
            provider_mode=mode.value,
            paused_at=None,
        )
        if not claimed:
            logger.warning(
                "[Orchestrator] Job %s was claimed concurrently — skipping", job.id
            )
            return None

        return _RunState(
            job_id=job.id,
            token=token,
            source_ref=job.source_document_ref,
            resuming=job.status == JobStatus.PAUSED,
        )

    def _owns(self, job: Job, state: _RunState) -> bool:
        return job.status == JobStatus.PROCESSING and job.worker_token == state.token

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def _process(self, state: _RunState, job: Job, mode: ProviderMode) -> Job:
        source = self._blobs.download(job.source_document_ref)
        state.plan = build_plan(source)
        placed = state.plan.placed
        logger.info(
            "[Orchestrator] Plan: layout=%s, %d link(s) placed, %d skipped",
            state.plan.layout.value, len(placed), len(state.plan.skipped),
        )

        if state.resuming:
            state.start_index = min(job.resume_from_index, len(placed))
            state.processed = state.start_index
            state.failed = min(job.failed_links, state.start_index)
            state.api_calls_before = job.api_calls_made
            state.views_fetched = job.views_fetched
            state.base_document = (
                self._blobs.download(job.partial_result_ref)
                if job.partial_result_ref
                else source
            )
        else:
            state.base_document = source
        state.index = state.start_index

        current = checkpoint(
            self._jobs,
            state.job_id,
            total_links=len(placed),
            processed_links=state.processed,
            failed_links=state.failed,
            resume_from_index=state.index,
        )
        if not self._owns(current, state):
            return self._stop(state, current)

        provider = self._provider_factory(mode, self._settings)
        with provider:
            for chunk in _chunks(placed[state.start_index :], provider.batch_size):
                self._fetch_chunk(provider, chunk, state)
                current = checkpoint(
                    self._jobs,
                    state.job_id,
                    processed_links=state.processed,
                    failed_links=state.failed,
                    resume_from_index=state.index,
                    api_calls_made=state.api_calls_before + provider.api_calls_made,
                    views_fetched=state.views_fetched,
                )
                if not self._owns(current, state):
                    return self._stop(state, current)

        return self._complete(state)

    def _fetch_chunk(
        self,
        provider: MetricsProvider,
        chunk: List[LinkRecord],
        state: _RunState,
    ) -> None:
        # One request per canonical id, even when several cells share it.
        pending: Dict[str, LinkRecord] = {}
        for link in chunk:
            if link.canonical_id not in state.outcomes:
                pending.setdefault(link.canonical_id, link)

        if pending:
            try:
                fetched = provider.fetch(list(pending.values()))
            except ProviderError as exc:
                logger.warning(
                    "[Orchestrator] Batch of %d failed: %s", len(pending), exc
                )
                fetched = {}
            for canonical_id in pending:
                state.outcomes[canonical_id] = fetched.get(
                    canonical_id, Error(reason="no result from provider")
                )

        for link in chunk:
            outcome = state.outcomes[link.canonical_id]
            state.processed += 1
            if is_failure(outcome):
                state.failed += 1
            elif isinstance(outcome, Success):
                state.views_fetched += outcome.views
        state.index += len(chunk)

        logger.info(
            "[Orchestrator] Progress %d/%d (%d failed)",
            state.processed, len(state.plan.placed), state.failed,
        )

    # ------------------------------------------------------------------
    # Exits
    # ------------------------------------------------------------------

    def _materialize(self, state: _RunState, path: str) -> bytes:
        document = write_outcomes(
            state.base_document,
            state.done_links,
            state.outcomes,
            protected_cells=state.plan.link_cells,
        )
        self._blobs.upload(path, document)
        return document

    def _complete(self, state: _RunState) -> Job:
        path = result_path(state.source_ref)
        self._materialize(state, path)

        finished = transition(
            self._jobs,
            state.job_id,
            {"status": JobStatus.PROCESSING, "worker_token": state.token},
            status=JobStatus.COMPLETED,
            result_document_ref=path,
            processed_links=state.processed,
            failed_links=state.failed,
            resume_from_index=state.index,
            worker_token=None,
            completed_at=utcnow(),
        )
        if not finished:
            # Paused or cancelled while the result was being written.
            return self._stop(state, self._jobs.get(state.job_id))

        logger.info(
            "[Orchestrator] Job %s completed: %d processed, %d failed -> %s",
            state.job_id, state.processed, state.failed, path,
        )
        return self._jobs.get(state.job_id)

    def _stop(self, state: _RunState, current: Job) -> Job:
        """Leave the job because someone else changed its status or owner."""
        if current.worker_token != state.token:
            logger.warning(
                "[Orchestrator] Job %s was taken over by another worker — stopping",
                state.job_id,
            )
            return current

        path = partial_path(state.source_ref)
        self._materialize(state, path)
        logger.info(
            "[Orchestrator] Job %s %s at %d/%d — partial result at %s",
            state.job_id,
            "paused" if current.status == JobStatus.PAUSED else "stopped",
            state.index, len(state.plan.placed), path,
        )
        return checkpoint(
            self._jobs,
            state.job_id,
            partial_result_ref=path,
            worker_token=None,
        )

    def _fail(self, state: _RunState, message: str) -> Job:
        try:
            current = self._jobs.get(state.job_id)
        except InfrastructureError:
            current = None
        if current is not None and current.worker_token != state.token:
            logger.warning(
                "[Orchestrator] Job %s no longer owned by this worker — "
                "not recording failure: %s",
                state.job_id, message,
            )
            return current

        fields = {
            "status": JobStatus.FAILED,
            "error_message": message,
            "worker_token": None,
        }
        if current is not None and current.status == JobStatus.FAILED:
            # Cancelled before the error: the cancel reason stays.
            del fields["error_message"]
        if state.plan is not None and state.base_document is not None:
            path = partial_path(state.source_ref)
            try:
                self._materialize(state, path)
                fields["partial_result_ref"] = path
            except Exception:
                logger.warning(
                    "[Orchestrator] Could not save partial result for job %s",
                    state.job_id,
                    exc_info=True,
                )

        try:
            return checkpoint(self._jobs, state.job_id, **fields)
        except Exception:
            logger.exception(
                "[Orchestrator] Could not record failure of job %s", state.job_id
            )
            raise
