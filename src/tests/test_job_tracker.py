import pytest
from fakes import entries

from mobsf_proxy.engine.job_tracker import JobTracker
from mobsf_proxy.engine.poller import PollerState
from mobsf_proxy.engine.report_service import ReportService
from mobsf_proxy.errors import GatewayError


@pytest.fixture
def tracker(engine, store):
    return JobTracker(engine, ReportService(engine, store), base_interval_ms=10)


@pytest.mark.anyio
async def test_ready_scan_saves_json_report(engine, store, tracker):
    engine.logs = entries("Extracting APK", "Report Generated")
    engine.reports[("abc123", "json")] = {"app_name": "Demo"}

    tracker.watch("abc123")
    job = await tracker.get("abc123").wait()

    assert job.status.value == "ready"
    assert store.read("abc123", "json") == {"app_name": "Demo"}
    assert tracker.get_status("abc123")["poller_state"] == "ready"


@pytest.mark.anyio
async def test_rewatch_replaces_previous_poller(engine, tracker):
    engine.logs = entries("Extracting APK")

    tracker.watch("abc123")
    first = tracker.get("abc123")
    tracker.watch("abc123")
    second = tracker.get("abc123")

    assert first is not second
    assert first.state == PollerState.STOPPED
    assert second.state == PollerState.POLLING
    tracker.shutdown()
    await second.wait()
    assert second.state == PollerState.STOPPED


@pytest.mark.anyio
async def test_unknown_job(tracker):
    assert tracker.get_status("nope") == {"job_id": "nope", "status": "not_found"}
    assert tracker.stop("nope") is False
    assert tracker.list_jobs() == []


@pytest.mark.anyio
async def test_finished_watches_are_evicted_and_bounded(engine, store):
    tracker = JobTracker(engine, ReportService(engine, store), max_finished=10, base_interval_ms=10)
    engine.logs = entries("Extracting APK", "Saving to Database")
    job_ids = [f"job{i:02d}" for i in range(50)]
    for job_id in job_ids:
        engine.reports[(job_id, "json")] = {"app_name": job_id}

    for job_id in job_ids:
        tracker.watch(job_id)
        await tracker.get(job_id).wait()

    assert tracker.pollers == {}
    assert list(tracker.finished) == job_ids[-10:]
    assert tracker.get_status("job49")["status"] == "ready"
    assert tracker.get_status("job00") == {"job_id": "job00", "status": "not_found"}
    assert len(tracker.list_jobs()) == 10


@pytest.mark.anyio
async def test_stopped_watch_leaves_a_snapshot(engine, tracker):
    engine.logs = entries("Extracting APK")
    tracker.watch("abc123")

    assert tracker.stop("abc123") is True
    assert tracker.get("abc123") is None
    assert tracker.get_status("abc123")["poller_state"] == "stopped"
    assert tracker.stop("abc123") is True


@pytest.mark.anyio
async def test_report_found_while_logs_fail_is_fetched_once(engine, store, tracker):
    engine.logs_error = GatewayError(503, {"message": "Service Unavailable"})
    engine.reports[("abc123", "json")] = {"app_name": "Demo"}

    tracker.watch("abc123")
    await tracker.get("abc123").wait()

    assert tracker.get_status("abc123")["status"] == "ready"
    assert store.read("abc123", "json") == {"app_name": "Demo"}
    assert engine.calls["fetch_report"] == 1
