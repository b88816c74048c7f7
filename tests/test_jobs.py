from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass

import pytest

from playbook_review.orchestration.windows import ProgressUpdate
from playbook_review.server.instrumentation import EventFactory
from playbook_review.server.jobs import JobStore
from playbook_review.server.sse import EventBus


@dataclass
class _FakeRequest:
    disconnected: bool = False

    async def is_disconnected(self) -> bool:
        return self.disconnected


def _decode(sse):
    data = sse.data
    if isinstance(data, str):
        data = json.loads(data)
    return sse.event, data


def test_step_tracker_emits_matching_ids():
    factory = EventFactory(job_id="job-test")
    tracker = factory.step(index=2, total=5, name="Generating amendments")

    start_event = tracker.start_event()
    end_event = tracker.end_event()
    error_event = tracker.error_event("boom", {"exc_type": "RuntimeError"})

    assert start_event["step_id"] == end_event["step_id"] == error_event["step_id"]
    assert start_event["name"] == "workflow.step.2"
    assert start_event["detail"] == {"current_step": 2, "total_steps": 5, "step_name": "Generating amendments"}
    assert end_event["metrics"]["latency_ms"] >= 0
    assert error_event["severity"] == "error"
    assert error_event["detail"]["exc_type"] == "RuntimeError"


def test_progress_event_carries_counts():
    factory = EventFactory(job_id="job-test")
    event = factory.progress(ProgressUpdate("mapping", 2, 3, "batch 2 of 3 complete"), step_id="step-1")

    assert event["type"] == "progress"
    assert event["name"] == "review.mapping"
    assert event["metrics"] == {"completed": 2, "total": 3}
    assert event["job_id"] == "job-test"
    assert event["step_id"] == "step-1"


@pytest.mark.asyncio
async def test_job_store_lifecycle():
    store = JobStore(ttl_seconds=60)
    job = await store.create("job-1")

    with pytest.raises(ValueError):
        await store.create("job-1")
    with pytest.raises(KeyError):
        await store.get("missing")

    await store.update_progress("job-1", 1, 5, "Mapping rules to sections")
    await store.record_event("job-1", "event", {"name": "workflow.step.1"})
    await store.complete("job-1", {"failedSections": 0})

    snapshot = job.to_public_dict()
    assert snapshot["status"] == "done"
    assert snapshot["progress"] == {"currentStep": 1, "totalSteps": 5, "stepName": "Mapping rules to sections"}
    assert snapshot["events"] == [{"name": "workflow.step.1"}]
    assert snapshot["result"] == {"failedSections": 0}
    assert job.finished


@pytest.mark.asyncio
async def test_cleanup_drops_expired_jobs():
    store = JobStore(ttl_seconds=10)
    old = await store.create("old")
    fresh = await store.create("fresh")
    old.started = fresh.started - 30

    removed = await store.cleanup(now=fresh.started + 1)

    assert removed == 1
    assert len(store) == 1
    assert old.bus.closed
    with pytest.raises(KeyError):
        await store.get("old")


@pytest.mark.asyncio
async def test_cleanup_disabled_without_ttl():
    store = JobStore(ttl_seconds=None)
    await store.create("job")
    assert await store.cleanup(now=10**9) == 0


@pytest.mark.asyncio
async def test_event_bus_replays_history_to_late_subscribers():
    bus = EventBus()
    await bus.send("event", {"n": 1})
    await bus.send("done", {"status": "done"})
    await bus.close()

    events = [_decode(item) async for item in bus.subscribe(_FakeRequest())]

    assert events == [("event", {"n": 1}), ("done", {"status": "done"})]


@pytest.mark.asyncio
async def test_event_bus_heartbeat_and_live_events():
    bus = EventBus(heartbeat_interval=0.01)
    received = []

    async def consume():
        async for item in bus.subscribe(_FakeRequest()):
            received.append(_decode(item))

    consumer = asyncio.create_task(consume())
    await asyncio.sleep(0.05)
    await bus.send("event", {"n": 2})
    await bus.close()
    await asyncio.wait_for(consumer, timeout=1)

    names = [name for name, _ in received]
    assert "heartbeat" in names
    assert received[-1] == ("event", {"n": 2})


@pytest.mark.asyncio
async def test_set_ttl_applies_to_existing_jobs():
    store = JobStore(ttl_seconds=None)
    job = await store.create("job")

    store.set_ttl(10)
    assert store.ttl_seconds == 10
    assert await store.cleanup(now=job.started + 5) == 0
    assert await store.cleanup(now=job.started + 11) == 1

    store.set_ttl(0)
    assert store.ttl_seconds is None
