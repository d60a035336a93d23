"""Tests for the phase pipeline."""

from __future__ import annotations

import asyncio
from typing import Any, Dict

from agentforge.builder.events import CollectingSink, ProgressEmitter
from agentforge.builder.orchestrator import (
    BuildRun,
    Orchestrator,
    combine_deletions,
    expects_new_items,
    success_message,
)
from agentforge.builder.resume import Deadline
from agentforge.documents.models import AgentDocument, DeletionOperations
from agentforge.generation.base import FixtureGenerator
from agentforge.persistence import CheckpointWriter, InMemoryDocumentStore


class SlowGenerator(FixtureGenerator):
    """Stalls on one phase so the deadline fires."""

    def __init__(self, outputs: Dict[str, Any], *, stall_on: str) -> None:
        super().__init__(outputs)
        self.stall_on = stall_on

    async def __call__(self, phase, context, existing):
        if phase == self.stall_on:
            await asyncio.sleep(10)
        return await super().__call__(phase, context, existing)


def _run(generator, build: BuildRun, *, store=None, deadline=None, max_retries=3):
    store = store or InMemoryDocumentStore()
    sink = CollectingSink()

    async def go():
        orchestrator = Orchestrator(
            generator,
            CheckpointWriter(store, retry_delay=0),
            ProgressEmitter(build.document_id, [sink]),
            deadline=deadline or Deadline(60),
            max_retries=max_retries,
            backoff_seconds=0,
        )
        return await orchestrator.run(build)

    return asyncio.run(go()), sink, store


def test_first_build_runs_every_phase(outputs) -> None:
    generator = FixtureGenerator(outputs)

    outcome, sink, store = _run(generator, BuildRun(document_id="doc-1", command="bakery agent"))

    assert outcome.status == "complete"
    assert outcome.errors == []
    document = outcome.document
    assert document.name == "Bakery Manager"
    assert [model.name for model in document.models] == ["Customer", "Order"]
    assert all(model.fields[0].name == "id" and model.fields[0].is_id for model in document.models)
    assert document.models[0].records[0].data == {"name": "Ada"}
    assert document.models[1].fields[2].type == "Customer"
    assert [action.execute.type for action in document.actions] == ["code", "prompt"]
    assert len(document.schedules) == 1
    assert outcome.validation.valid
    assert outcome.quality_score == 100

    assert outcome.progress.status == "complete"
    assert outcome.progress.step_progress["change-analysis"] == "skipped"
    assert outcome.progress.all_done()

    stored = store.get_document("doc-1")
    assert stored.title == "Bakery Manager"
    assert stored.metadata["progress"]["status"] == "complete"
    assert stored.content["models"][0]["name"] == "Customer"


def test_step_events_are_strictly_ordered(outputs) -> None:
    outcome, sink, _ = _run(FixtureGenerator(outputs), BuildRun(document_id="doc-1", command="bakery"))

    sequences = [event.sequence for event in sink.events]
    assert sequences == sorted(sequences)
    assert len(set(sequences)) == len(sequences)
    steps = [(event.phase, event.status) for event in sink.of_type("agent-step")]
    assert steps[0] == ("prompt-understanding", "processing")
    assert steps[-1] == ("integration", "complete")
    assert sink.of_type("agent-data")


def test_execution_detail_calls_once_per_action(outputs) -> None:
    generator = FixtureGenerator(outputs)

    outcome, _, _ = _run(generator, BuildRun(document_id="doc-1", command="bakery"))

    detailed = [context["action"]["name"] for phase, context in generator.calls if phase == "execution-detail"]
    assert sorted(detailed) == ["Create order", "Summarize day"]
    ids = {action.id for action in outcome.document.actions}
    assert len(ids) == 2


def test_transient_generator_failures_are_retried(outputs) -> None:
    outputs["database-generation"] = [RuntimeError("rate limited"), outputs["database-generation"]]

    outcome, sink, _ = _run(FixtureGenerator(outputs), BuildRun(document_id="doc-1", command="bakery"))

    assert outcome.status == "complete"
    assert outcome.retry_count == 1
    assert len(outcome.document.models) == 2
    retries = [event for event in sink.of_type("warning") if event.phase == "database-generation"]
    assert len(retries) == 1
    assert outcome.quality_score == 95


def test_exhausted_retries_end_in_error(outputs) -> None:
    outputs["action-generation"] = [RuntimeError("still down")]
    generator = FixtureGenerator(outputs)

    outcome, sink, store = _run(generator, BuildRun(document_id="doc-1", command="bakery"), max_retries=2)

    assert outcome.status == "error"
    assert outcome.can_resume is False
    assert outcome.progress.step_progress["action-generation"] == "failed"
    assert len([call for call in generator.calls if call[0] == "action-generation"]) == 3
    assert "action-generation" in outcome.message
    assert store.get_document("doc-1").metadata["progress"]["status"] == "error"


def test_malformed_output_counts_as_a_failed_attempt(outputs) -> None:
    outputs["overview"] = ["not json at all", outputs["overview"]]

    outcome, _, _ = _run(FixtureGenerator(outputs), BuildRun(document_id="doc-1", command="bakery"))

    assert outcome.status == "complete"
    assert outcome.retry_count == 1
    assert outcome.document.name == "Bakery Manager"


def test_deadline_marks_build_resumable(outputs) -> None:
    generator = SlowGenerator(outputs, stall_on="action-generation")

    outcome, sink, store = _run(
        generator,
        BuildRun(document_id="doc-1", command="bakery"),
        deadline=Deadline(0.5),
    )

    assert outcome.status == "timeout"
    assert outcome.can_resume is True
    assert outcome.last_complete_phase == "example-records"
    assert outcome.progress.step_progress["action-generation"] == "timeout"
    stored = store.get_document("doc-1")
    progress = stored.metadata["progress"]
    assert progress["status"] == "timeout"
    assert progress["canResume"] is True
    assert progress["timedOutAt"]
    assert progress["requestText"] == "bakery"
    assert len(stored.content["models"]) == 2
    assert any(event.status == "timeout" for event in sink.of_type("agent-step"))


def test_empty_fragment_cannot_wipe_expected_models(outputs) -> None:
    existing = AgentDocument.model_validate(
        {
            "id": "doc-1",
            "name": "Bakery Manager",
            "models": [
                {"id": "m-1", "name": "Customer", "fields": [{"id": "f-1", "name": "id", "isId": True}]},
                {"id": "m-2", "name": "Order", "fields": [{"id": "f-2", "name": "id", "isId": True}]},
            ],
        }
    )
    outputs["database-generation"] = {"models": []}

    outcome, sink, _ = _run(
        FixtureGenerator(outputs),
        BuildRun(document_id="doc-1", command="add loyalty points", operation="update", existing=existing),
    )

    assert outcome.status == "complete"
    assert [model.id for model in outcome.document.models][:2] == ["m-1", "m-2"]
    overrides = [event for event in sink.of_type("warning") if event.payload.get("kind") == "safety-override"]
    assert len(overrides) == 1
    assert any(warning.startswith("safety-override") for warning in outcome.warnings)


def test_change_analysis_deletions_apply_at_next_document_phase(outputs) -> None:
    existing = AgentDocument.model_validate(
        {
            "id": "doc-1",
            "name": "Bakery Manager",
            "models": [
                {"id": "m-1", "name": "Customer", "fields": [{"id": "f-1", "name": "id", "isId": True}]},
                {"id": "m-9", "name": "Coupon", "fields": [{"id": "f-9", "name": "id", "isId": True}]},
            ],
        }
    )
    outputs["change-analysis"] = {"deletionOperations": {"modelsToDelete": ["Coupon"]}}

    outcome, _, _ = _run(
        FixtureGenerator(outputs),
        BuildRun(document_id="doc-1", command="drop coupons", operation="update", existing=existing),
    )

    names = [model.name for model in outcome.document.models]
    assert "Coupon" not in names
    assert names[0] == "Customer"
    assert outcome.document.models[0].id == "m-1"


def test_overview_is_skipped_for_partial_updates(outputs) -> None:
    existing = AgentDocument.model_validate(
        {"id": "doc-1", "name": "Kept name", "models": [{"id": "m-1", "name": "Customer"}]}
    )
    outputs["decision-analysis"] = {"needsFullAgent": False, "needsDatabase": True, "needsActions": True}

    outcome, _, _ = _run(
        FixtureGenerator(outputs),
        BuildRun(document_id="doc-1", command="tweak", operation="update", existing=existing),
    )

    assert outcome.progress.step_progress["overview"] == "skipped"
    assert outcome.document.name == "Kept name"


def test_expects_new_items_prefers_change_analysis() -> None:
    outputs = {
        "decision-analysis": {"needsDatabase": True},
        "change-analysis": {"expectedResult": {"newItems": {"models": 0}}},
    }

    assert expects_new_items("models", outputs) is False
    assert expects_new_items("actions", outputs) is False
    assert expects_new_items("models", {"decision-analysis": {"needsDatabase": True}}) is True


def test_combine_deletions_unions_both_sides() -> None:
    first = DeletionOperations(models_to_delete=["A"], field_deletions={"B": ["x"]})
    second = DeletionOperations(models_to_delete=["A", "C"], field_deletions={"B": ["y"]})

    combined = combine_deletions(first, second)

    assert combined.models_to_delete == ["A", "C"]
    assert combined.field_deletions == {"B": ["x", "y"]}
    assert combine_deletions(None, second) is second


def test_success_message_reflects_decision() -> None:
    document = AgentDocument(name="Helpdesk")

    message = success_message(document, updating=False, decision={"needsDatabase": True})

    assert message == "Successfully designed database schema for Helpdesk! Created 0 models."
    assert success_message(document, updating=True, decision={}) == "Successfully updated Helpdesk!"
