import httpx
import pytest

from config import ProviderMode
from dto.job import JobStatus
from errors import InfrastructureError, InvalidTransition, ProviderError, ProviderTimeout
from jobs import InMemoryBlobStore
from jobs.orchestrator import partial_path, result_path
from providers.apify import ApifyProvider

from conftest import Harness, HistoryJobStore, RecordingProvider, load_values, reel

SOURCE = "uploads/links.xlsx"
RESULT = "uploads/links_processed.xlsx"
PARTIAL = "uploads/links_partial.xlsx"


def _column_sheet(count):
    """Header row plus *count* links in column A (targets land in column B)."""
    cells = {(1, 1): "Link", (1, 2): "Views"}
    for i in range(1, count + 1):
        cells[(i + 1, 1)] = reel(f"R{i}")
    return cells


def _views_column(document, count):
    values = load_values(document)
    return [values.get((i + 1, 2)) for i in range(1, count + 1)]


def test_output_paths():
    assert result_path("uploads/a.xlsx") == "uploads/a_processed.xlsx"
    assert partial_path("uploads/a.XLSX") == "uploads/a_partial.xlsx"


def test_synthetic_job_completes(harness_factory):
    h = harness_factory()
    job = h.submit({(2, 1): reel("ABC123")})

    done = h.controller.run(job.id, ProviderMode.SYNTHETIC)

    assert done.status == JobStatus.COMPLETED
    assert (done.total_links, done.processed_links, done.failed_links) == (1, 1, 0)
    assert done.result_document_ref == RESULT
    assert done.provider_mode == "synthetic"
    assert done.worker_token is None
    assert done.completed_at is not None
    assert done.is_terminal
    assert done.progress == 1.0
    views = load_values(h.blobs.download(RESULT))[(2, 2)]
    assert 1_000 <= views < 10_000_000
    assert done.views_fetched == views


def test_background_start_completes(harness_factory):
    h = harness_factory()
    job = h.submit(_column_sheet(3))

    thread = h.controller.start(job.id, "synthetic")
    thread.join(timeout=10)

    assert not thread.is_alive()
    assert h.controller.get(job.id).status == JobStatus.COMPLETED


def test_duplicate_links_are_fetched_once(harness_factory):
    provider = RecordingProvider(batch_size=2)
    h = harness_factory(provider)
    job = h.submit({(2, 1): reel("DUP"), (3, 1): reel("DUP")})

    done = h.controller.run(job.id, ProviderMode.SYNTHETIC)

    assert provider.calls == [["DUP"]]
    assert done.processed_links == 2
    assert _views_column(h.blobs.download(RESULT), 2) == [100, 100]


def test_per_link_errors_are_counted_not_fatal(harness_factory):
    provider = RecordingProvider(batch_size=2, fail_ids=("R2",))
    h = harness_factory(provider)
    job = h.submit(_column_sheet(3))

    done = h.controller.run(job.id, ProviderMode.APIFY)

    assert done.status == JobStatus.COMPLETED
    assert done.failed_links == 1
    assert done.api_calls_made == 2
    assert _views_column(h.blobs.download(RESULT), 3) == [100, "Error", 100]


def test_failed_batch_marks_every_link_error(harness_factory):
    def explode(call, ids):
        if call == 1:
            raise ProviderError("upstream 502")

    provider = RecordingProvider(batch_size=2, on_fetch=explode)
    h = harness_factory(provider)
    job = h.submit(_column_sheet(3))

    done = h.controller.run(job.id, ProviderMode.APIFY)

    assert done.status == JobStatus.COMPLETED
    assert done.failed_links == 2
    assert _views_column(h.blobs.download(RESULT), 3) == ["Error", "Error", 100]


def test_provider_timeout_fails_job_with_partial(harness_factory):
    def stall(call, ids):
        if call == 2:
            raise ProviderTimeout("run did not finish")

    provider = RecordingProvider(batch_size=2, on_fetch=stall)
    h = harness_factory(provider)
    job = h.submit(_column_sheet(4))

    done = h.controller.run(job.id, ProviderMode.APIFY)

    assert done.status == JobStatus.FAILED
    assert "did not finish" in done.error_message
    assert done.processed_links == 2
    assert done.partial_result_ref == PARTIAL
    assert done.worker_token is None
    assert _views_column(h.blobs.download(PARTIAL), 4) == [100, 100, None, None]


def test_document_without_links_fails(harness_factory):
    h = harness_factory()
    job = h.submit({(1, 1): "nothing here", (2, 2): 5})

    done = h.controller.run(job.id, ProviderMode.SYNTHETIC)

    assert done.status == JobStatus.FAILED
    assert "No post links" in done.error_message
    assert done.partial_result_ref is None


def test_unreadable_document_fails(harness_factory):
    h = harness_factory()
    h.blobs.upload(SOURCE, b"definitely not a zip")
    job = h.controller.create_job(SOURCE)

    done = h.controller.run(job.id, ProviderMode.SYNTHETIC)

    assert done.status == JobStatus.FAILED
    assert "Could not read spreadsheet" in done.error_message


def test_missing_credentials_fail_job(harness_factory):
    h = harness_factory()
    job = h.submit(_column_sheet(1))

    done = h.controller.run(job.id, ProviderMode.APIFY)

    assert done.status == JobStatus.FAILED
    assert done.error_message == "APIFY_API_KEY not configured"


def test_pause_then_resume_finishes_remaining_links(harness_factory, jobs):
    holder = {}

    def pause_on_second(call, ids):
        if call == 2:
            holder["controller"].pause(holder["job_id"])

    provider = RecordingProvider(
        batch_size=2, fail_ids=("R2", "R5"), on_fetch=pause_on_second
    )
    h = harness_factory(provider)
    job = h.submit(_column_sheet(6))
    holder.update(controller=h.controller, job_id=job.id)

    paused = h.controller.run(job.id, ProviderMode.APIFY)

    assert paused.status == JobStatus.PAUSED
    assert paused.paused_at is not None
    assert paused.processed_links == 4
    assert paused.resume_from_index == 4
    assert paused.failed_links == 1
    assert paused.partial_result_ref == PARTIAL
    assert paused.worker_token is None
    assert _views_column(h.blobs.download(PARTIAL), 6) == [100, "Error", 100, 100, None, None]

    # Each run normally gets a fresh provider with its own call counter.
    provider.api_calls_made = 0
    done = h.controller.resume(job.id, ProviderMode.APIFY, background=False)

    assert done.status == JobStatus.COMPLETED
    assert done.processed_links == done.total_links == 6
    assert done.failed_links == 2
    assert done.api_calls_made == 3
    assert provider.calls == [["R1", "R2"], ["R3", "R4"], ["R5", "R6"]]
    assert _views_column(h.blobs.download(RESULT), 6) == [100, "Error", 100, 100, "Error", 100]
    assert jobs.failed_history == sorted(jobs.failed_history)


def test_cancel_while_processing_keeps_partial(harness_factory):
    holder = {}

    def cancel_on_first(call, ids):
        if call == 1:
            holder["controller"].cancel(holder["job_id"], "stopped by user")

    provider = RecordingProvider(batch_size=2, on_fetch=cancel_on_first)
    h = harness_factory(provider)
    job = h.submit(_column_sheet(4))
    holder.update(controller=h.controller, job_id=job.id)

    done = h.controller.run(job.id, ProviderMode.APIFY)

    assert done.status == JobStatus.FAILED
    assert done.error_message == "stopped by user"
    assert done.partial_result_ref == PARTIAL
    assert done.worker_token is None
    assert len(provider.calls) == 1
    assert RESULT not in h.blobs


def test_cancel_paused_job(harness_factory):
    holder = {}

    def pause_on_first(call, ids):
        if call == 1:
            holder["controller"].pause(holder["job_id"])

    h = harness_factory(RecordingProvider(batch_size=1, on_fetch=pause_on_first))
    job = h.submit(_column_sheet(2))
    holder.update(controller=h.controller, job_id=job.id)
    h.controller.run(job.id, ProviderMode.APIFY)

    cancelled = h.controller.cancel(job.id)

    assert cancelled.status == JobStatus.FAILED
    assert cancelled.error_message == "Cancelled by user"
    assert cancelled.partial_result_ref == PARTIAL
    with pytest.raises(InvalidTransition):
        h.controller.resume(job.id, ProviderMode.APIFY, background=False)


def test_superseded_worker_stops_quietly(harness_factory, jobs):
    holder = {}

    def steal(call, ids):
        if call == 1:
            jobs.update(holder["job_id"], worker_token="another-worker")

    provider = RecordingProvider(batch_size=1, on_fetch=steal)
    h = harness_factory(provider)
    job = h.submit(_column_sheet(3))
    holder["job_id"] = job.id

    left = h.controller.run(job.id, ProviderMode.APIFY)

    assert left.status == JobStatus.PROCESSING
    assert left.worker_token == "another-worker"
    assert len(provider.calls) == 1
    assert PARTIAL not in h.blobs


def test_finished_job_is_not_claimed_again(harness_factory):
    provider = RecordingProvider(batch_size=5)
    h = harness_factory(provider)
    job = h.submit(_column_sheet(2))
    first = h.controller.run(job.id, ProviderMode.APIFY)

    again = h.controller.run(job.id, ProviderMode.APIFY)

    assert again.status == JobStatus.COMPLETED
    assert again.completed_at == first.completed_at
    assert len(provider.calls) == 1


def test_processing_job_is_not_claimed_twice(harness_factory, jobs):
    provider = RecordingProvider()
    h = harness_factory(provider)
    job = h.submit(_column_sheet(2))
    jobs.update(job.id, status=JobStatus.PROCESSING, worker_token="busy")

    left = h.controller.run(job.id, ProviderMode.APIFY)

    assert left.worker_token == "busy"
    assert provider.calls == []


def test_illegal_transitions(harness_factory, jobs):
    h = harness_factory(RecordingProvider())
    job = h.submit(_column_sheet(1))

    with pytest.raises(InvalidTransition):
        h.controller.pause(job.id)
    with pytest.raises(InvalidTransition):
        h.controller.resume(job.id, ProviderMode.APIFY)

    jobs.update(job.id, status=JobStatus.PAUSED, worker_token="still-writing")
    with pytest.raises(InvalidTransition):
        h.controller.resume(job.id, ProviderMode.APIFY)

    jobs.update(job.id, status=JobStatus.COMPLETED, worker_token=None)
    with pytest.raises(InvalidTransition):
        h.controller.cancel(job.id)


def test_synthetic_checkpoints_every_ten_links(harness_factory, jobs):
    h = harness_factory()
    job = h.submit(_column_sheet(25))

    done = h.controller.run(job.id, ProviderMode.SYNTHETIC)

    assert done.status == JobStatus.COMPLETED
    assert jobs.processed_history == [0, 10, 20, 25]


# ---------------------------------------------------------------------------
# Odd provider payloads
# ---------------------------------------------------------------------------

def _apify_provider(run_start, items):
    def handler(request):
        if request.method == "POST":
            return httpx.Response(201, json=run_start)
        if request.url.path.endswith("/actor-runs/run1"):
            return httpx.Response(200, json={"data": {"status": "SUCCEEDED"}})
        return httpx.Response(200, json=items)

    client = httpx.Client(
        transport=httpx.MockTransport(handler), base_url="https://api.apify.com/v2"
    )
    return ApifyProvider("key", client=client, sleep=lambda s: None)


def test_dataset_item_with_numeric_url_only_costs_that_link(harness_factory):
    provider = _apify_provider(
        {"data": {"id": "run1", "defaultDatasetId": "ds1"}},
        [
            {"inputUrl": 12345, "videoPlayCount": 3},
            {"inputUrl": reel("R2"), "videoPlayCount": 9},
        ],
    )
    h = harness_factory(provider)
    job = h.submit(_column_sheet(2))

    done = h.controller.run(job.id, ProviderMode.APIFY)

    assert done.status == JobStatus.COMPLETED
    assert done.failed_links == 1
    assert _views_column(h.blobs.download(RESULT), 2) == ["Error", 9]


def test_unexpected_run_start_payload_marks_batch_error(harness_factory):
    h = harness_factory(_apify_provider({"data": "unexpected-shape"}, []))
    job = h.submit(_column_sheet(2))

    done = h.controller.run(job.id, ProviderMode.APIFY)

    assert done.status == JobStatus.COMPLETED
    assert done.failed_links == 2
    assert _views_column(h.blobs.download(RESULT), 2) == ["Error", "Error"]


# ---------------------------------------------------------------------------
# Store hiccups
# ---------------------------------------------------------------------------

class FlakyTransitionStore(HistoryJobStore):
    """Fails the first few status changes to each target status."""

    def __init__(self, failures):
        super().__init__()
        self.failures = dict(failures)

    def compare_and_set(self, job_id, expected, **fields):
        status = fields.get("status")
        if self.failures.get(status, 0) > 0:
            self.failures[status] -= 1
            raise InfrastructureError("record store unavailable")
        return super().compare_and_set(job_id, expected, **fields)


class NoPartialBlobStore(InMemoryBlobStore):
    def upload(self, path, data):
        if path.endswith("_partial.xlsx"):
            raise InfrastructureError("blob store unavailable")
        super().upload(path, data)


def test_claim_and_completion_survive_store_hiccups(blobs, settings, no_backoff):
    store = FlakyTransitionStore(
        {JobStatus.PROCESSING: 2, JobStatus.COMPLETED: 2}
    )
    h = Harness(blobs, store, settings, RecordingProvider())
    job = h.submit(_column_sheet(3))

    done = h.controller.run(job.id, ProviderMode.APIFY)

    assert done.status == JobStatus.COMPLETED
    assert done.result_document_ref == RESULT
    assert store.failures == {JobStatus.PROCESSING: 0, JobStatus.COMPLETED: 0}


def test_error_after_cancel_keeps_cancel_reason(jobs, settings, no_backoff):
    holder = {}

    def cancel_on_first(call, ids):
        if call == 1:
            holder["controller"].cancel(holder["job_id"], "stopped by user")

    h = Harness(
        NoPartialBlobStore(), jobs, settings,
        RecordingProvider(batch_size=1, on_fetch=cancel_on_first),
    )
    job = h.submit(_column_sheet(2))
    holder.update(controller=h.controller, job_id=job.id)

    done = h.controller.run(job.id, ProviderMode.APIFY)

    assert done.status == JobStatus.FAILED
    assert done.error_message == "stopped by user"
    assert done.worker_token is None
    assert done.partial_result_ref is None
