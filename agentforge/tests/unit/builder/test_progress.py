"""Tests for phase ordering and step progress tracking."""

from __future__ import annotations

import pytest

from agentforge.builder.phases import PHASE_IDS, get_phase, next_phase
from agentforge.builder.progress import StepProgress


def test_phases_run_in_fixed_order() -> None:
    assert PHASE_IDS[0] == "prompt-understanding"
    assert PHASE_IDS[-1] == "integration"
    assert next_phase(None) == "prompt-understanding"
    assert next_phase("schedule-generation") == "integration"
    assert next_phase("integration") is None


def test_unknown_phase_is_rejected() -> None:
    with pytest.raises(ValueError):
        get_phase("rendering")


def test_last_complete_phase_counts_skipped_phases() -> None:
    progress = StepProgress.begin("shop", "create")
    progress.complete("prompt-understanding")
    progress.complete("decision-analysis")
    progress.skip("change-analysis", "Nothing to compare")

    assert progress.last_complete_phase() == "change-analysis"
    assert progress.percentage() == 30.0
    assert not progress.all_done()


def test_mark_timeout_flags_the_running_phase() -> None:
    progress = StepProgress.begin("shop", "create")
    progress.start("overview")

    progress.mark_timeout()

    assert progress.status == "timeout"
    assert progress.can_resume is True
    assert progress.step_progress["overview"] == "timeout"
    assert progress.timed_out_at


def test_snapshot_round_trips_through_metadata() -> None:
    progress = StepProgress.begin("shop", "update")
    progress.complete("prompt-understanding", output={"mainGoal": "sell"})

    restored = StepProgress.from_metadata({"progress": progress.snapshot()})

    assert restored.step_progress == {"prompt-understanding": "complete"}
    assert restored.phase_outputs == {"prompt-understanding": {"mainGoal": "sell"}}
    assert restored.request_text == "shop"


def test_from_metadata_accepts_flat_legacy_layout_and_drops_unknown_steps() -> None:
    restored = StepProgress.from_metadata(
        {"stepProgress": {"prompt-understanding": "complete", "ui-preview": "complete"}, "status": "timeout"}
    )

    assert restored.step_progress == {"prompt-understanding": "complete"}
    assert restored.status == "timeout"


def test_from_metadata_without_progress() -> None:
    assert StepProgress.from_metadata(None) is None
    assert StepProgress.from_metadata({"progress": None}) is None
