"""Ordered build phases."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

PROMPT_UNDERSTANDING = "prompt-understanding"
DECISION_ANALYSIS = "decision-analysis"
CHANGE_ANALYSIS = "change-analysis"
OVERVIEW = "overview"
DATABASE_GENERATION = "database-generation"
EXAMPLE_RECORDS = "example-records"
ACTION_GENERATION = "action-generation"
EXECUTION_DETAIL = "execution-detail"
SCHEDULE_GENERATION = "schedule-generation"
INTEGRATION = "integration"


@dataclass(frozen=True, slots=True)
class PhaseSpec:
    """Static description of one phase.

    ``produces`` is ``"analysis"`` when the generator output is kept as
    context for later phases, ``"document"`` when it is a document fragment to
    merge, and ``"local"`` for phases that never call the generator.
    """

    id: str
    title: str
    produces: str
    optional: bool = False
    running_message: str = ""
    done_message: str = ""


PHASES: Tuple[PhaseSpec, ...] = (
    PhaseSpec(
        PROMPT_UNDERSTANDING,
        "Understanding Requirements",
        "analysis",
        running_message="Reading the request and extracting requirements",
        done_message="Requirements understood",
    ),
    PhaseSpec(
        DECISION_ANALYSIS,
        "Analysis",
        "analysis",
        running_message="Deciding what needs to be built",
        done_message="Build plan decided",
    ),
    PhaseSpec(
        CHANGE_ANALYSIS,
        "Change Analysis",
        "analysis",
        optional=True,
        running_message="Comparing the request with the existing agent",
        done_message="Change plan ready",
    ),
    PhaseSpec(
        OVERVIEW,
        "Overview",
        "document",
        optional=True,
        running_message="Drafting the agent overview",
        done_message="Overview ready",
    ),
    PhaseSpec(
        DATABASE_GENERATION,
        "Data Models",
        "document",
        running_message="Designing data models",
        done_message="Data models ready",
    ),
    PhaseSpec(
        EXAMPLE_RECORDS,
        "Example Records",
        "document",
        running_message="Generating example records",
        done_message="Example records ready",
    ),
    PhaseSpec(
        ACTION_GENERATION,
        "Automated Actions",
        "document",
        running_message="Generating automated actions",
        done_message="Actions ready",
    ),
    PhaseSpec(
        EXECUTION_DETAIL,
        "Execution Detail",
        "document",
        optional=True,
        running_message="Writing execution logic for each action",
        done_message="Execution logic ready",
    ),
    PhaseSpec(
        SCHEDULE_GENERATION,
        "Schedules",
        "document",
        running_message="Generating schedules",
        done_message="Schedules ready",
    ),
    PhaseSpec(
        INTEGRATION,
        "Complete",
        "local",
        running_message="Validating and finalizing the agent",
        done_message="Agent finalized",
    ),
)

PHASE_IDS: Tuple[str, ...] = tuple(phase.id for phase in PHASES)
_BY_ID: Dict[str, PhaseSpec] = {phase.id: phase for phase in PHASES}


def get_phase(phase_id: str) -> PhaseSpec:
    try:
        return _BY_ID[phase_id]
    except KeyError as exc:
        raise ValueError(f"Unknown build phase: {phase_id}") from exc


def is_phase(phase_id: object) -> bool:
    return isinstance(phase_id, str) and phase_id in _BY_ID


def phase_index(phase_id: str) -> int:
    return PHASE_IDS.index(get_phase(phase_id).id)


def next_phase(phase_id: Optional[str]) -> Optional[str]:
    """Phase following ``phase_id``; the first phase when ``phase_id`` is ``None``."""
    if phase_id is None:
        return PHASE_IDS[0]
    index = phase_index(phase_id) + 1
    return PHASE_IDS[index] if index < len(PHASE_IDS) else None


__all__ = [
    "ACTION_GENERATION",
    "CHANGE_ANALYSIS",
    "DATABASE_GENERATION",
    "DECISION_ANALYSIS",
    "EXAMPLE_RECORDS",
    "EXECUTION_DETAIL",
    "INTEGRATION",
    "OVERVIEW",
    "PHASES",
    "PHASE_IDS",
    "PROMPT_UNDERSTANDING",
    "PhaseSpec",
    "SCHEDULE_GENERATION",
    "get_phase",
    "is_phase",
    "next_phase",
    "phase_index",
]
