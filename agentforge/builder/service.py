"""Caller-facing build entry point with single-flight per document identity."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Literal, Optional

from pydantic import Field, ValidationError

from ..config import CONFIG
from ..documents.models import AgentDocument, WireModel, new_id
from ..errors import BuildInProgress, MalformedContext
from ..generation.base import Generator
from ..logger import log
from ..persistence import get_document_store
from ..persistence.base import DocumentStore, StoredDocument
from ..persistence.checkpoints import CheckpointWriter
from .events import ProgressEmitter, ProgressSink
from .orchestrator import DEFAULT_TITLE, BuildOutcome, BuildRun, Orchestrator
from .resume import Deadline, ResumeGuard, ResumePlan

logger = logging.getLogger(__name__)

Operation = Literal["create", "update", "extend", "resume"]


class BuildRequest(WireModel):
    command: str = ""
    operation: Operation = "create"
    context: Optional[str] = None
    document_id: Optional[str] = None


class BuildResult(WireModel):
    document_id: str
    title: str
    status: Literal["complete", "error", "timeout"]
    summary: str
    can_resume: bool = False
    last_complete_phase: Optional[str] = None
    counts: Dict[str, int] = Field(default_factory=dict)
    quality_score: Optional[int] = None
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @classmethod
    def from_outcome(cls, outcome: BuildOutcome) -> "BuildResult":
        document = outcome.document
        return cls(
            document_id=document.id,
            title=document.name or DEFAULT_TITLE,
            status=outcome.status,
            summary=outcome.message,
            can_resume=outcome.can_resume,
            last_complete_phase=outcome.last_complete_phase,
            counts=document_counts(document),
            quality_score=outcome.quality_score,
            warnings=outcome.warnings,
            errors=outcome.errors,
        )


def document_counts(document: AgentDocument) -> Dict[str, int]:
    return {
        "models": len(document.models),
        "enums": len(document.enums),
        "actions": len(document.actions),
        "schedules": len(document.schedules),
    }


def parse_context(context: Optional[str]) -> Optional[AgentDocument]:
    """Parse caller-supplied context; raises ``MalformedContext`` when unreadable."""
    if context is None or not context.strip():
        return None
    try:
        payload = json.loads(context)
    except json.JSONDecodeError as exc:
        raise MalformedContext(f"context is not JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedContext("context must be a JSON object")
    try:
        return AgentDocument.model_validate(payload)
    except ValidationError as exc:
        raise MalformedContext(f"context is not an agent document: {exc.error_count()} error(s)") from exc


@dataclass(slots=True)
class _InFlight:
    task: asyncio.Task
    emitter: ProgressEmitter


# Builds running in this process, keyed by document id and shared by every service.
_INFLIGHT: Dict[str, _InFlight] = {}
_INFLIGHT_LOCK = threading.Lock()


def _release(document_id: str, entry: _InFlight) -> None:
    with _INFLIGHT_LOCK:
        if _INFLIGHT.get(document_id) is entry:
            del _INFLIGHT[document_id]


def is_build_running(document_id: str) -> bool:
    with _INFLIGHT_LOCK:
        return document_id in _INFLIGHT


class BuildService:
    """Runs builds, attaching concurrent callers for the same document to one run.

    The in-flight registry is process-wide, so two services asked to build the
    same document never run two orchestrators. A caller on a different event
    loop cannot await the running task and is rejected instead.
    """

    def __init__(
        self,
        generator: Generator,
        store: Optional[DocumentStore] = None,
        *,
        deadline_factory: Callable[[], Deadline] = Deadline.from_config,
        reject_concurrent: Optional[bool] = None,
        orchestrator_options: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.generator = generator
        self.store = store or get_document_store()
        self.deadline_factory = deadline_factory
        self.reject_concurrent = CONFIG.reject_concurrent_builds if reject_concurrent is None else reject_concurrent
        self.orchestrator_options = dict(orchestrator_options or {})
        self.guard = ResumeGuard()

    def is_running(self, document_id: str) -> bool:
        return is_build_running(document_id)

    async def build(
        self,
        request: BuildRequest,
        *,
        sink: Optional[ProgressSink] = None,
        run_id: Optional[str] = None,
    ) -> BuildResult:
        context_document: Optional[AgentDocument] = None
        try:
            context_document = parse_context(request.context)
        except MalformedContext as exc:
            logger.warning("Ignoring unreadable context: %s", exc)

        document_id = request.document_id or (context_document.id if context_document else None) or new_id()
        loop = asyncio.get_running_loop()

        with _INFLIGHT_LOCK:
            running = _INFLIGHT.get(document_id)
            if running is not None and running.task.done():
                running = None
            if running is None:
                emitter = ProgressEmitter(document_id, [sink] if sink is not None else [], run_id=run_id)
                task = loop.create_task(self._run(document_id, request, context_document, emitter))
                entry = _InFlight(task=task, emitter=emitter)
                _INFLIGHT[document_id] = entry
                task.add_done_callback(lambda _task: _release(document_id, entry))

        if running is None:
            return await asyncio.shield(task)

        if self.reject_concurrent or running.task.get_loop() is not loop:
            raise BuildInProgress(document_id)
        log("[builder] attaching to running build", document_id=document_id, run_id=running.emitter.run_id)
        if sink is not None:
            running.emitter.attach(sink, replay=True)
        return await asyncio.shield(running.task)

    async def _load(self, document_id: str) -> Optional[StoredDocument]:
        try:
            return await asyncio.to_thread(self.store.get_document, document_id)
        except Exception as exc:
            logger.warning("Could not load document %s; starting without it: %s", document_id, exc)
            return None

    async def _run(
        self,
        document_id: str,
        request: BuildRequest,
        context_document: Optional[AgentDocument],
        emitter: ProgressEmitter,
    ) -> BuildResult:
        writer = CheckpointWriter(self.store)
        stored = await self._load(document_id)
        if stored is not None:
            plan = self.guard.plan(stored.content, stored.metadata, operation=request.operation, command=request.command)
        else:
            plan = ResumePlan(resume=False, reason="no persisted document")
        log("[builder] resume check", document_id=document_id, resume=plan.resume, reason=plan.reason)

        if plan.clear_stale_progress:
            stale = plan.existing or AgentDocument.new(document_id)
            await writer.write(document_id, stale.name or DEFAULT_TITLE, stale.to_wire(), {"progress": None})

        existing = plan.existing or context_document
        if existing is not None and existing.id != document_id:
            existing = existing.model_copy(update={"id": document_id})

        operation = request.operation
        if operation == "resume" and not plan.resume:
            if not request.command.strip():
                result = self._nothing_to_resume(document_id, existing, plan)
                emitter.finish(result.status, result.to_wire())
                await emitter.drain()
                return result
            operation = "update" if existing is not None and not existing.is_empty() else "create"

        build = BuildRun(
            document_id=document_id,
            command=plan.request_text or request.command,
            operation=operation,
            existing=existing,
            start_phase=plan.start_phase if plan.resume else None,
            progress=plan.progress if plan.resume else None,
            phase_outputs=plan.phase_outputs if plan.resume else {},
        )
        orchestrator = Orchestrator(
            self.generator,
            writer,
            emitter,
            deadline=self.deadline_factory(),
            **self.orchestrator_options,
        )
        outcome = await orchestrator.run(build)
        result = BuildResult.from_outcome(outcome)
        emitter.finish(result.status, result.to_wire())
        await emitter.drain()
        return result

    @staticmethod
    def _nothing_to_resume(
        document_id: str,
        existing: Optional[AgentDocument],
        plan: ResumePlan,
    ) -> BuildResult:
        if existing is not None and not existing.is_empty():
            return BuildResult(
                document_id=document_id,
                title=existing.name or DEFAULT_TITLE,
                status="complete",
                summary=f"Nothing to resume: {plan.reason}",
                counts=document_counts(existing),
            )
        return BuildResult(
            document_id=document_id,
            title=DEFAULT_TITLE,
            status="error",
            summary=f"Nothing to resume: {plan.reason}",
            errors=[plan.reason],
        )


__all__ = [
    "BuildRequest",
    "BuildResult",
    "BuildService",
    "Operation",
    "document_counts",
    "is_build_running",
    "parse_context",
]
