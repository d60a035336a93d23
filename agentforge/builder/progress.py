"""Per-build step progress, persisted alongside the document for recovery."""

from __future__ import annotations

from typing import Any, Dict, Literal, Mapping, Optional

from pydantic import Field, ValidationError, field_validator

from ..documents.models import WireModel, utcnow_iso
from .phases import PHASE_IDS, get_phase, is_phase

StepStatus = Literal["processing", "complete", "failed", "timeout", "skipped"]
BuildStatus = Literal["active", "complete", "error", "timeout"]

DONE_STATUSES = frozenset({"complete", "skipped"})


class StepProgress(WireModel):
    current_step: Optional[str] = None
    step_progress: Dict[str, StepStatus] = Field(default_factory=dict)
    step_messages: Dict[str, str] = Field(default_factory=dict)
    status: BuildStatus = "active"
    can_resume: bool = False
    request_text: Optional[str] = None
    operation: Optional[str] = None
    timed_out_at: Optional[str] = None
    phase_outputs: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    started_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("step_progress", mode="before")
    @classmethod
    def drop_unknown_phases(cls, value: Any) -> Any:
        # Progress written by older builders may carry UI step ids.
        if not isinstance(value, Mapping):
            return {}
        return {key: status for key, status in value.items() if is_phase(key)}

    # -- lifecycle ---------------------------------------------------------

    @classmethod
    def begin(cls, request_text: str, operation: str) -> "StepProgress":
        now = utcnow_iso()
        return cls(request_text=request_text, operation=operation, started_at=now, updated_at=now)

    def _touch(self) -> None:
        self.updated_at = utcnow_iso()

    def start(self, phase: str, message: Optional[str] = None) -> None:
        spec = get_phase(phase)
        self.current_step = phase
        self.status = "active"
        self.step_progress[phase] = "processing"
        self.step_messages[phase] = message or spec.running_message
        self._touch()

    def complete(self, phase: str, message: Optional[str] = None, output: Any = None) -> None:
        spec = get_phase(phase)
        self.step_progress[phase] = "complete"
        self.step_messages[phase] = message or spec.done_message
        if output is not None:
            self.phase_outputs[phase] = output
        self._touch()

    def skip(self, phase: str, reason: str) -> None:
        get_phase(phase)
        self.step_progress[phase] = "skipped"
        self.step_messages[phase] = reason
        self._touch()

    def fail(self, phase: str, message: str) -> None:
        get_phase(phase)
        self.step_progress[phase] = "failed"
        self.step_messages[phase] = message
        self._touch()

    def mark_timeout(self, phase: Optional[str] = None) -> None:
        phase = phase or self.current_step
        if phase is not None and self.step_progress.get(phase) not in DONE_STATUSES:
            self.step_progress[phase] = "timeout"
            self.step_messages[phase] = "Timed out; the build can be resumed"
        self.status = "timeout"
        self.can_resume = True
        self.timed_out_at = utcnow_iso()
        self._touch()

    def mark_error(self, message: str) -> None:
        self.status = "error"
        self.can_resume = False
        self.error = message
        self._touch()

    def finish(self) -> None:
        self.status = "complete"
        self.can_resume = False
        self.error = None
        self._touch()

    # -- queries -----------------------------------------------------------

    def is_done(self, phase: str) -> bool:
        return self.step_progress.get(phase) in DONE_STATUSES

    def last_complete_phase(self) -> Optional[str]:
        last = None
        for phase in PHASE_IDS:
            if self.is_done(phase):
                last = phase
        return last

    def all_done(self) -> bool:
        return all(self.is_done(phase) for phase in PHASE_IDS)

    def percentage(self) -> float:
        done = sum(1 for phase in PHASE_IDS if self.is_done(phase))
        return round(done / len(PHASE_IDS) * 100, 1)

    def snapshot(self) -> Dict[str, Any]:
        return self.to_wire()

    @classmethod
    def from_metadata(cls, metadata: Optional[Mapping[str, Any]]) -> Optional["StepProgress"]:
        """Read progress out of persisted document metadata, if any."""
        if not metadata:
            return None
        payload = metadata.get("progress")
        if payload is None and "stepProgress" in metadata:
            payload = metadata
        if not isinstance(payload, Mapping):
            return None
        try:
            return cls.model_validate(payload)
        except ValidationError:
            return None


__all__ = ["BuildStatus", "DONE_STATUSES", "StepProgress", "StepStatus"]
