from __future__ import annotations

import io
from typing import Any, Dict, List, Optional, Tuple

import openpyxl
import pytest

import jobs.checkpoint as checkpoint_module
from config import Settings
from dto.outcome import Error, Success
from jobs import BatchFetchOrchestrator, InMemoryBlobStore, InMemoryJobStore, JobController
from planning.cell_reader import SheetGrid
from providers.service import MetricsProvider

Cells = Dict[Tuple[int, int], Any]


def reel(shortcode: str) -> str:
    return f"https://www.instagram.com/reel/{shortcode}/"


def build_xlsx(cells: Cells) -> bytes:
    wb = openpyxl.Workbook()
    ws = wb.active
    for (row, col), value in cells.items():
        ws.cell(row=row, column=col, value=value)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def load_values(document: bytes) -> Cells:
    wb = openpyxl.load_workbook(io.BytesIO(document))
    ws = wb.worksheets[0]
    return {
        (cell.row, cell.column): cell.value
        for row in ws.iter_rows()
        for cell in row
        if cell.value is not None
    }


def grid_of(cells: Cells) -> SheetGrid:
    return SheetGrid({k: str(v) for k, v in cells.items() if v not in (None, "")})


class RecordingProvider(MetricsProvider):
    """Deterministic provider that records every call."""

    def __init__(
        self,
        batch_size: int = 2,
        views: int = 100,
        fail_ids: Tuple[str, ...] = (),
        on_fetch=None,
    ):
        super().__init__()
        self.batch_size = batch_size
        self.views = views
        self.fail_ids = set(fail_ids)
        self.on_fetch = on_fetch
        self.calls: List[List[str]] = []

    def fetch(self, links):
        ids = [link.canonical_id for link in links]
        self.calls.append(ids)
        self.api_calls_made += 1
        if self.on_fetch is not None:
            self.on_fetch(len(self.calls), ids)
        return {
            i: Error(reason="boom") if i in self.fail_ids else Success(views=self.views)
            for i in ids
        }


class HistoryJobStore(InMemoryJobStore):
    """InMemoryJobStore that remembers the counters after every write."""

    def __init__(self) -> None:
        super().__init__()
        self.failed_history: List[int] = []
        self.processed_history: List[int] = []

    def update(self, job_id, **fields):
        job = super().update(job_id, **fields)
        self.failed_history.append(job.failed_links)
        self.processed_history.append(job.processed_links)
        return job


@pytest.fixture()
def no_backoff(monkeypatch):
    monkeypatch.setattr(checkpoint_module, "_WAIT_MULTIPLIER", 0)
    monkeypatch.setattr(checkpoint_module, "_MIN_WAIT_SECONDS", 0)
    monkeypatch.setattr(checkpoint_module, "_MAX_WAIT_SECONDS", 0)


@pytest.fixture()
def make_xlsx():
    return build_xlsx


@pytest.fixture()
def blobs() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture()
def jobs() -> HistoryJobStore:
    return HistoryJobStore()


@pytest.fixture()
def settings() -> Settings:
    return Settings(synthetic_delay_seconds=0.0, batch_size=10)


class Harness:
    def __init__(self, blobs, jobs, settings, provider: Optional[MetricsProvider] = None):
        self.blobs = blobs
        self.jobs = jobs
        self.provider = provider
        factory = (lambda mode, s: self.provider) if provider is not None else None
        kwargs = {"provider_factory": factory} if factory else {}
        self.orchestrator = BatchFetchOrchestrator(blobs, jobs, settings=settings, **kwargs)
        self.controller = JobController(self.orchestrator, jobs)

    def submit(self, cells: Cells, path: str = "uploads/links.xlsx"):
        self.blobs.upload(path, build_xlsx(cells))
        return self.controller.create_job(path)


@pytest.fixture()
def harness_factory(blobs, jobs, settings):
    def _make(provider: Optional[MetricsProvider] = None) -> Harness:
        return Harness(blobs, jobs, settings, provider)

    return _make
