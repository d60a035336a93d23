"""Wall-clock deadline and resume detection."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from pydantic import ValidationError

from ..config import CONFIG
from ..documents.models import AgentDocument
from ..errors import DeadlineExceeded
from .phases import next_phase
from .progress import StepProgress

logger = logging.getLogger(__name__)

R = TypeVar("R")

RESUMABLE_STATUSES = frozenset({"active", "timeout"})


class Deadline:
    """A fixed budget measured on a monotonic clock from construction."""

    def __init__(self, seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.seconds = seconds
        self._clock = clock
        self.expires_at = clock() + seconds

    @classmethod
    def from_config(cls) -> "Deadline":
        return cls(CONFIG.build_deadline_seconds)

    def remaining(self) -> float:
        return max(0.0, self.expires_at - self._clock())

    def expired(self) -> bool:
        return self.remaining() <= 0

    def check(self, phase: Optional[str] = None) -> None:
        if self.expired():
            raise DeadlineExceeded(phase)

    async def run(self, awaitable: Awaitable[R], phase: Optional[str] = None) -> R:
        """Await ``awaitable`` but abandon it once the deadline passes."""
        remaining = self.remaining()
        if remaining <= 0:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise DeadlineExceeded(phase)
        try:
            return await asyncio.wait_for(awaitable, timeout=remaining)
        except asyncio.TimeoutError:
            raise DeadlineExceeded(phase) from None

    async def sleep(self, seconds: float, phase: Optional[str] = None) -> None:
        await self.run(asyncio.sleep(seconds), phase)


@dataclass(slots=True)
class ResumePlan:
    resume: bool
    reason: str
    start_phase: Optional[str] = None
    existing: Optional[AgentDocument] = None
    progress: Optional[StepProgress] = None
    request_text: Optional[str] = None
    operation: Optional[str] = None
    phase_outputs: Dict[str, Any] = field(default_factory=dict)
    clear_stale_progress: bool = False


def parse_document(content: Any) -> Optional[AgentDocument]:
    if not isinstance(content, dict):
        return None
    try:
        return AgentDocument.model_validate(content)
    except ValidationError as exc:
        logger.warning("Persisted document content is unreadable: %s", exc)
        return None


class ResumeGuard:
    """Decides whether a build continues a previous run or starts fresh."""

    def plan(
        self,
        content: Optional[Dict[str, Any]],
        metadata: Optional[Dict[str, Any]],
        *,
        operation: str,
        command: str = "",
    ) -> ResumePlan:
        document = parse_document(content) if content is not None else None
        progress = StepProgress.from_metadata(metadata)

        if document is None:
            return ResumePlan(resume=False, reason="no persisted document")

        if progress is None:
            return ResumePlan(resume=False, reason="no step progress recorded", existing=document)

        if progress.status not in RESUMABLE_STATUSES:
            return ResumePlan(
                resume=False,
                reason=f"previous build ended with status {progress.status}",
                existing=document,
            )

        if progress.all_done():
            return ResumePlan(resume=False, reason="all phases already complete", existing=document)

        last_complete = progress.last_complete_phase()
        if last_complete is None and document.is_empty():
            return ResumePlan(
                resume=False,
                reason="previous build completed no phases",
                existing=document,
                clear_stale_progress=True,
            )

        wants_resume = operation == "resume" or not command.strip() or command.strip() == (
            progress.request_text or ""
        ).strip()
        if not wants_resume:
            return ResumePlan(
                resume=False,
                reason="new request supersedes the unfinished build",
                existing=document,
            )

        start = next_phase(last_complete)
        if start is None:
            return ResumePlan(resume=False, reason="final phase already complete", existing=document)
        logger.info(
            "Resuming build for %s at %s (last complete: %s)",
            document.id,
            start,
            last_complete or "none",
        )
        return ResumePlan(
            resume=True,
            reason=f"resuming after {last_complete or 'start'}",
            start_phase=start,
            existing=document,
            progress=progress,
            request_text=progress.request_text or command,
            operation=progress.operation,
            phase_outputs=dict(progress.phase_outputs),
        )


__all__ = ["Deadline", "RESUMABLE_STATUSES", "ResumeGuard", "ResumePlan", "parse_document"]
