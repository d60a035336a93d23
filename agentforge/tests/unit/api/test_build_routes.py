"""Tests for the build API routes."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from agentforge.api import main
from agentforge.api.event_log import BuildEventLog
from agentforge.api.routes import builds as builds_routes
from agentforge.api.routes import internal as internal_routes
from agentforge.api.schemas import BuildCreate, BuildEventRelay
from agentforge.builder.events import ProgressEmitter
from agentforge.builder.progress import StepProgress


class StubTask:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls = []

    def apply_async(self, args, queue):
        if self.fail:
            raise ConnectionError("broker down")
        self.calls.append((args, queue))
        return SimpleNamespace(id="job-1")


def _relay(events: BuildEventLog, event, *, job_id: str = "job-1"):
    return internal_routes.relay_build_event(BuildEventRelay(job_id=job_id, event=event), events=events)


def test_enqueue_build_returns_job_and_document(monkeypatch: pytest.MonkeyPatch, store) -> None:
    task = StubTask()
    monkeypatch.setattr(builds_routes, "run_build", task)

    accepted = builds_routes.enqueue_build(BuildCreate(command="bakery agent"), store=store)

    assert accepted.job_id == "job-1"
    assert accepted.document_id
    args, queue = task.calls[0]
    assert args[0] == accepted.document_id
    assert args[1]["command"] == "bakery agent"
    assert args[1]["documentId"] == accepted.document_id
    assert queue == "builds"


def test_enqueue_build_requires_a_target_for_updates(monkeypatch: pytest.MonkeyPatch, store) -> None:
    monkeypatch.setattr(builds_routes, "run_build", StubTask())

    with pytest.raises(HTTPException) as excinfo:
        builds_routes.enqueue_build(BuildCreate(command="more", operation="update"), store=store)

    assert excinfo.value.status_code == 400


def test_enqueue_build_accepts_malformed_context(monkeypatch: pytest.MonkeyPatch, store) -> None:
    task = StubTask()
    monkeypatch.setattr(builds_routes, "run_build", task)

    accepted = builds_routes.enqueue_build(
        BuildCreate(command="more", operation="update", context="{oops", document_id="doc-1"),
        store=store,
    )

    assert accepted.document_id == "doc-1"
    assert task.calls[0][1]["context"] == "{oops"


def test_enqueue_build_targets_the_context_document(monkeypatch: pytest.MonkeyPatch, store) -> None:
    task = StubTask()
    monkeypatch.setattr(builds_routes, "run_build", task)

    accepted = builds_routes.enqueue_build(
        BuildCreate(command="more", operation="extend", context='{"id": "ctx-1", "name": "Shop"}'),
        store=store,
    )

    assert accepted.document_id == "ctx-1"


def test_enqueue_build_rejects_a_document_with_a_running_build(monkeypatch: pytest.MonkeyPatch, store) -> None:
    task = StubTask()
    monkeypatch.setattr(builds_routes, "run_build", task)
    progress = StepProgress.begin("bakery", "create")
    progress.start("overview")
    store.save_document("doc-1", "Bakery", {"id": "doc-1"}, {"progress": progress.snapshot()})

    with pytest.raises(HTTPException) as excinfo:
        builds_routes.enqueue_build(BuildCreate(command="bakery", document_id="doc-1"), store=store)

    assert excinfo.value.status_code == 409
    assert task.calls == []


def test_enqueue_build_ignores_abandoned_progress(monkeypatch: pytest.MonkeyPatch, store) -> None:
    task = StubTask()
    monkeypatch.setattr(builds_routes, "run_build", task)
    progress = StepProgress.begin("bakery", "create")
    progress.start("overview")
    progress.updated_at = (datetime.now(timezone.utc) - timedelta(hours=2)).isoformat()
    store.save_document("doc-1", "Bakery", {"id": "doc-1"}, {"progress": progress.snapshot()})

    accepted = builds_routes.enqueue_build(BuildCreate(command="bakery", document_id="doc-1"), store=store)

    assert accepted.document_id == "doc-1"
    assert len(task.calls) == 1


def test_enqueue_build_reports_broker_failures(monkeypatch: pytest.MonkeyPatch, store) -> None:
    monkeypatch.setattr(builds_routes, "run_build", StubTask(fail=True))

    with pytest.raises(HTTPException) as excinfo:
        builds_routes.enqueue_build(BuildCreate(command="bakery"), store=store)

    assert excinfo.value.status_code == 503


def test_get_build_reports_progress(store) -> None:
    progress = StepProgress.begin("bakery", "create")
    progress.complete("prompt-understanding")
    progress.start("decision-analysis")
    store.save_document("doc-1", "Bakery", {"id": "doc-1", "models": [{"name": "Order"}]}, {"progress": progress.snapshot()})

    response = builds_routes.get_build("doc-1", store=store)

    assert response.title == "Bakery"
    assert response.status == "active"
    assert response.running is True
    assert response.current_step == "decision-analysis"
    assert response.last_complete_phase == "prompt-understanding"
    assert response.counts["models"] == 1


def test_get_build_unknown_document(store) -> None:
    with pytest.raises(HTTPException) as excinfo:
        builds_routes.get_build("missing", store=store)

    assert excinfo.value.status_code == 404


def test_relayed_events_are_deduplicated_and_listed() -> None:
    events = BuildEventLog()
    event = {"type": "agent-step", "sequence": 1, "documentId": "doc-1", "runId": "job-1", "phase": "overview", "status": "processing"}

    first = _relay(events, event)
    second = _relay(events, event)
    listed = builds_routes.list_build_events("doc-1", after=0, run_id=None, events=events)

    assert first.accepted is True
    assert first.cursor == 1
    assert second.accepted is False
    assert [item["sequence"] for item in listed.events] == [1]
    assert builds_routes.list_build_events("doc-1", after=1, run_id=None, events=events).events == []


def test_every_build_of_a_document_is_listed() -> None:
    events = BuildEventLog()
    for job_id in ("job-1", "job-2"):
        emitter = ProgressEmitter("doc-1", run_id=job_id)
        emitter.step("overview", "complete", "Overview drafted", {})
        emitter.finish("complete", {"status": "complete"})
        for event in emitter.history:
            assert _relay(events, event.to_wire(), job_id=job_id).accepted is True

    listed = builds_routes.list_build_events("doc-1", after=0, run_id=None, events=events).events
    assert [(item["runId"], item["sequence"], item["cursor"]) for item in listed] == [
        ("job-1", 1, 1),
        ("job-1", 2, 2),
        ("job-2", 1, 3),
        ("job-2", 2, 4),
    ]
    later = builds_routes.list_build_events("doc-1", after=2, run_id=None, events=events).events
    assert [item["runId"] for item in later] == ["job-2", "job-2"]
    only_first = builds_routes.list_build_events("doc-1", after=0, run_id="job-1", events=events).events
    assert len(only_first) == 2


def test_relayed_event_without_run_takes_the_job_id() -> None:
    events = BuildEventLog()
    event = {"type": "finish", "sequence": 3, "documentId": "doc-1", "status": "complete"}

    ack = _relay(events, event, job_id="job-7")

    assert ack.run_id == "job-7"
    assert events.list("doc-1")[0]["runId"] == "job-7"


def test_invalid_relayed_event_is_rejected() -> None:
    with pytest.raises(HTTPException) as excinfo:
        internal_routes.relay_build_event(BuildEventRelay(event={"type": "bogus"}), events=BuildEventLog())

    assert excinfo.value.status_code == 400


def test_healthcheck() -> None:
    assert main.healthcheck() == {"status": "ok"}
    paths = {route.path for route in main.app.routes}
    assert "/v1/builds" in paths
    assert "/v1/internal/build-events" in paths
