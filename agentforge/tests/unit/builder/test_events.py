"""Tests for progress events and sinks."""

from __future__ import annotations

import asyncio
import logging
import time
from types import SimpleNamespace

import pytest
import requests

from agentforge.builder import events as events_module
from agentforge.builder.events import CallbackSink, CollectingSink, HttpRelaySink, ProgressEmitter
from agentforge.config import reload_config


class DummyResponse:
    status_code = 200
    text = ""


def test_emitter_numbers_events_in_order() -> None:
    sink = CollectingSink()
    emitter = ProgressEmitter("doc-1", [sink])

    emitter.step("overview", "processing", "Drafting", {})
    emitter.step("overview", "complete", "Done", {})
    emitter.finish("complete", {"status": "complete"})

    assert [event.sequence for event in sink.events] == [1, 2, 3]
    assert [event.type for event in sink.events] == ["agent-step", "agent-step", "finish"]


def test_sinks_ignore_replayed_events() -> None:
    sink = CollectingSink()
    emitter = ProgressEmitter("doc-1", [sink])
    emitter.step("overview", "processing", "Drafting", {})

    emitter.step("overview", "processing", "Drafting again", {})
    emitter.attach(sink, replay=True)

    assert len(sink.events) == 1


def test_late_sinks_receive_history() -> None:
    emitter = ProgressEmitter("doc-1")
    emitter.warning("first", phase="overview")
    late = CollectingSink()

    emitter.attach(late)
    emitter.warning("second", phase="overview")

    assert [event.message for event in late.events] == ["first", "second"]


def test_failing_sink_does_not_stop_delivery(caplog) -> None:
    def explode(event):
        raise RuntimeError("sink down")

    good = CollectingSink()
    emitter = ProgressEmitter("doc-1", [CallbackSink(explode), good])
    caplog.set_level(logging.ERROR)

    emitter.step("overview", "processing", "Drafting", {})

    assert len(good.events) == 1
    assert any("failed" in message for message in caplog.messages)


def test_http_relay_posts_to_internal_endpoint(monkeypatch: pytest.MonkeyPatch) -> None:
    recorded = {}

    def fake_post(url, json, timeout):
        recorded["url"] = url
        recorded["payload"] = json
        return DummyResponse()

    monkeypatch.setenv("API_BASE_URL", "http://api.test/v1")
    reload_config()
    monkeypatch.setattr(events_module, "requests", SimpleNamespace(post=fake_post, RequestException=Exception))
    emitter = ProgressEmitter("doc-1", [HttpRelaySink(job_id="job-1")], run_id="job-1")

    emitter.step("overview", "processing", "Drafting", {})

    assert recorded["url"] == "http://api.test/v1/internal/build-events"
    assert recorded["payload"]["jobId"] == "job-1"
    assert recorded["payload"]["event"]["documentId"] == "doc-1"
    assert recorded["payload"]["event"]["runId"] == "job-1"


def test_http_relay_posts_off_the_event_loop_in_order(monkeypatch: pytest.MonkeyPatch) -> None:
    posted = []

    def slow_post(url, json, timeout):
        time.sleep(0.05)
        posted.append(json["event"]["sequence"])
        return DummyResponse()

    monkeypatch.setattr(events_module, "requests", SimpleNamespace(post=slow_post, RequestException=Exception))

    async def go():
        emitter = ProgressEmitter("doc-1", [HttpRelaySink(job_id="job-1")])
        started = time.monotonic()
        emitter.step("overview", "processing", "Drafting", {})
        emitter.step("overview", "complete", "Done", {})
        emitter.finish("complete", {"status": "complete"})
        emitted_in = time.monotonic() - started
        assert posted == []
        await emitter.drain()
        return emitted_in

    emitted_in = asyncio.run(go())

    assert emitted_in < 0.1
    assert posted == [1, 2, 3]


def test_http_relay_logs_connection_errors(monkeypatch: pytest.MonkeyPatch, caplog) -> None:
    def fake_post(url, json, timeout):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(events_module.requests, "post", fake_post)
    caplog.set_level(logging.WARNING)

    HttpRelaySink(job_id="job-1").emit(ProgressEmitter("doc-1").warning("x"))

    assert any("Unable to relay build event" in message for message in caplog.messages)


def test_events_from_separate_runs_are_not_duplicates() -> None:
    sink = CollectingSink()
    for run_id in ("run-1", "run-2"):
        emitter = ProgressEmitter("doc-1", [sink], run_id=run_id)
        emitter.step("overview", "complete", "Done", {})
        emitter.finish("complete", {})

    assert [(event.run_id, event.type) for event in sink.events] == [
        ("run-1", "agent-step"),
        ("run-1", "finish"),
        ("run-2", "agent-step"),
        ("run-2", "finish"),
    ]
