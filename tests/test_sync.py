"""
File: tests/test_sync.py
Purpose: Corpus sync pipeline: eligibility, retry accounting, failure isolation, metrics.
"""

import json

import pytest

from conftest import FakeObjectStore, RecordingMetrics, make_incident_input
from incident_server.corpus import NOT_SPECIFIED, FileObjectStore, build_corpus_document
from incident_server.instrumentation import SYNC_REGISTRY, PrometheusMetricsSink
from incident_server.models import SyncStatus, resolution_time_minutes
from incident_server.sync import SyncPipeline


async def _closed(lifecycle, external_id, **resolve_overrides):
    incident = await lifecycle.create(make_incident_input(external_id=external_id))
    request = {
        "incident_id": incident.incident_id,
        "resolved_by": "dev1",
        "resolution_type": "FIXED",
        "description": "Rolled back release",
        "root_cause": "bad config push",
    }
    request.update(resolve_overrides)
    await lifecycle.resolve(request)
    return await lifecycle.close({"incident_id": incident.incident_id})


class FlakyStore:
    """Wraps a store and fails sync_status writes."""

    def __init__(self, inner):
        self.inner = inner

    async def query_by_status(self, *args, **kwargs):
        return await self.inner.query_by_status(*args, **kwargs)

    async def update_sync_status(self, incident_id, sync_status):
        raise ConnectionError("store unavailable")


class BrokenStore:
    async def query_by_status(self, *args, **kwargs):
        raise ConnectionError("cannot reach store")


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_only_closed_unsynced_records_are_fetched(lifecycle, pipeline, store, object_store):
    closed = await _closed(lifecycle, "C-1")
    await lifecycle.create(make_incident_input(external_id="open"))
    incident = await lifecycle.create(make_incident_input(external_id="resolved-only"))
    await lifecycle.resolve({
        "incident_id": incident.incident_id, "resolved_by": "d", "resolution_type": "FIXED", "description": "x",
    })

    result = await pipeline.run()
    assert result.total_found == 1
    assert list(object_store.documents) == [f"incidents/closed/{closed.incident_id}.json"]

    again = await pipeline.run()
    assert again.total_found == 0


@pytest.mark.asyncio
async def test_batch_size_bounds_the_fetch(lifecycle, store, object_store, clock):
    for i in range(4):
        await _closed(lifecycle, f"B-{i}")
    pipeline = SyncPipeline(store, object_store, None, batch_size=3, clock=clock)

    first = await pipeline.run()
    second = await pipeline.run()
    assert (first.total_found, second.total_found) == (3, 1)


# ---------------------------------------------------------------------------
# Retry accounting
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_exhausted_record_is_skipped_and_untouched(lifecycle, pipeline, store, object_store):
    incident = await _closed(lifecycle, "X-1")
    exhausted = SyncStatus(synced=False, attempts=3, last_error="timeout", last_attempt="2024-01-01T00:00:00.000000Z")
    await store.update_sync_status(incident.incident_id, exhausted)

    result = await pipeline.run()

    assert result.total_found == 1
    assert result.skipped == 1
    assert result.successfully_synced == 0
    assert object_store.documents == {}
    assert (await store.get(incident.incident_id)).sync_status == exhausted


@pytest.mark.asyncio
async def test_failure_is_isolated_and_counted(lifecycle, store, metrics, clock):
    bad = await _closed(lifecycle, "F-1")
    good = await _closed(lifecycle, "F-2")
    skipped = await _closed(lifecycle, "F-3")
    await store.update_sync_status(skipped.incident_id, SyncStatus(attempts=5))
    object_store = FakeObjectStore(fail_ids={bad.incident_id})
    pipeline = SyncPipeline(store, object_store, metrics, clock=clock)

    result = await pipeline.run()

    assert result.total_found == 3
    assert result.total_found == result.successfully_synced + result.failed + result.skipped
    assert (result.successfully_synced, result.failed, result.skipped) == (1, 1, 1)
    assert result.errors == [{"incident_id": bad.incident_id, "error": f"upload rejected for {bad.incident_id}"}]

    failed_status = (await store.get(bad.incident_id)).sync_status
    assert failed_status.synced is False
    assert failed_status.attempts == 1
    assert "upload rejected" in failed_status.last_error
    assert failed_status.last_attempt is not None

    good_status = (await store.get(good.incident_id)).sync_status
    assert good_status.synced is True
    assert good_status.attempts == 0
    assert good_status.synced_at is not None


@pytest.mark.asyncio
async def test_failed_record_is_retried_until_max_attempts(lifecycle, store, clock):
    bad = await _closed(lifecycle, "R-1")
    pipeline = SyncPipeline(store, FakeObjectStore(fail_ids={bad.incident_id}), None, max_attempts=2, clock=clock)

    outcomes = [await pipeline.run() for _ in range(3)]

    assert [r.failed for r in outcomes] == [1, 1, 0]
    assert [r.skipped for r in outcomes] == [0, 0, 1]
    assert (await store.get(bad.incident_id)).sync_status.attempts == 2


@pytest.mark.asyncio
async def test_status_write_failure_does_not_abort(lifecycle, store, object_store, clock):
    await _closed(lifecycle, "W-1")
    await _closed(lifecycle, "W-2")
    pipeline = SyncPipeline(FlakyStore(store), object_store, None, clock=clock)

    result = await pipeline.run()
    assert result.successfully_synced == 2
    assert len(object_store.documents) == 2


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_metrics_emitted_once_per_pass(lifecycle, pipeline, metrics):
    await _closed(lifecycle, "M-1")
    result = await pipeline.run()
    assert len(metrics.emitted) == 1
    emitted = metrics.emitted[0]
    assert emitted["found"] == 1
    assert emitted["synced"] == 1
    assert emitted["duration_ms"] == result.duration_ms


@pytest.mark.asyncio
async def test_metrics_failure_does_not_mask_result(lifecycle, store, object_store, clock):
    await _closed(lifecycle, "M-2")
    sink = RecordingMetrics(fail=True)
    pipeline = SyncPipeline(store, object_store, sink, clock=clock)

    result = await pipeline.run()
    assert result.successfully_synced == 1
    assert len(sink.emitted) == 1


@pytest.mark.asyncio
async def test_fetch_failure_propagates_after_metrics(object_store, metrics, clock):
    pipeline = SyncPipeline(BrokenStore(), object_store, metrics, clock=clock)
    with pytest.raises(ConnectionError):
        await pipeline.run()
    assert len(metrics.emitted) == 1
    assert metrics.emitted[0]["found"] == 0


# ---------------------------------------------------------------------------
# Document transform
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_document_uses_structured_resolution(lifecycle):
    incident = await _closed(lifecycle, "D-1")
    doc = build_corpus_document(incident, synced_at="2024-03-01T10:00:00.000000Z")
    assert doc["root_cause"] == "bad config push"
    assert doc["resolution"] == "Rolled back release"
    assert doc["resolution_type"] == "FIXED"
    assert doc["resolved_by"] == "dev1"
    assert doc["resolution_time_minutes"] == 0
    assert doc["synced_at"] == "2024-03-01T10:00:00.000000Z"


@pytest.mark.asyncio
async def test_document_falls_back_to_work_log_then_placeholder(lifecycle):
    incident = await lifecycle.create(make_incident_input())
    incident = await lifecycle.update(incident.incident_id, {
        "developer": "dev9",
        "analysis": {"root_cause": "disk full"},
    })
    incident.resolution = None

    doc = build_corpus_document(incident, synced_at="now")
    assert doc["root_cause"] == "disk full"
    assert doc["resolution"] == NOT_SPECIFIED
    assert doc["resolved_by"] == "dev9"
    assert doc["resolution_time_minutes"] is None


def test_resolution_time_tolerates_bad_timestamps():
    assert resolution_time_minutes("2024-03-01T09:00:00.000000Z", "2024-03-01T11:30:00.000000Z") == 150
    assert resolution_time_minutes("garbage", "2024-03-01T11:30:00.000000Z") is None
    assert resolution_time_minutes(None, None) is None


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_prometheus_sink_sets_gauges():
    await PrometheusMetricsSink().emit({"found": 3, "synced": 2, "failed": 1, "skipped": 0, "duration_ms": 1500})
    assert SYNC_REGISTRY.get_sample_value("incident_sync_synced") == 2
    assert SYNC_REGISTRY.get_sample_value("incident_sync_duration_seconds") == 1.5


@pytest.mark.asyncio
async def test_file_object_store_writes_document_and_metadata(lifecycle, store, metrics, clock, tmp_path):
    incident = await _closed(lifecycle, "FS-1")
    pipeline = SyncPipeline(store, FileObjectStore(str(tmp_path)), metrics, clock=clock)

    result = await pipeline.run()

    assert result.successfully_synced == 1
    path = tmp_path / "incidents" / "closed" / f"{incident.incident_id}.json"
    assert json.loads(path.read_text())["incident_id"] == incident.incident_id
    meta = json.loads((tmp_path / "incidents" / "closed" / f"{incident.incident_id}.json.metadata").read_text())
    assert meta["status"] == "closed"
