"""Phase pipeline driving one build from request to terminal state."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..config import CONFIG
from ..documents.coordinator import reconcile_with_report
from ..documents.models import AgentAction, AgentDocument, DeletionOperations, DocumentMetadata
from ..documents.validation import ValidationReport, quality_score, validate_document
from ..errors import DeadlineExceeded, GeneratorFailure
from ..generation.base import Generator
from ..generation.sanitize import Fragment, parse_payload, sanitize_analysis, sanitize_fragment
from ..logger import log
from ..persistence.checkpoints import CheckpointWriter
from .events import ProgressEmitter
from .phases import (
    ACTION_GENERATION,
    CHANGE_ANALYSIS,
    DATABASE_GENERATION,
    DECISION_ANALYSIS,
    EXECUTION_DETAIL,
    INTEGRATION,
    OVERVIEW,
    PHASES,
    PhaseSpec,
    phase_index,
)
from .progress import StepProgress
from .resume import Deadline

logger = logging.getLogger(__name__)

UPDATE_OPERATIONS = frozenset({"update", "extend"})
DEFAULT_TITLE = "AI Agent System"

ExpectationPredicate = Callable[[str, Mapping[str, Any]], bool]

_SAFETY_COLLECTIONS = {DATABASE_GENERATION: "models", ACTION_GENERATION: "actions"}
_DECISION_FLAGS = {"models": "needsDatabase", "actions": "needsActions"}


def _mapping(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def expects_new_items(collection: str, phase_outputs: Mapping[str, Any]) -> bool:
    """Whether upstream analysis said ``collection`` should gain items.

    Reads ``changeAnalysis.expectedResult.newItems[collection]`` first and
    falls back to the decision flags (``needsDatabase`` / ``needsActions``).
    """
    change = _mapping(phase_outputs.get(CHANGE_ANALYSIS))
    new_items = _mapping(_mapping(change.get("expectedResult")).get("newItems"))
    if collection in new_items:
        value = new_items[collection]
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value > 0
        if isinstance(value, (list, tuple)):
            return bool(value)
    decision = _mapping(phase_outputs.get(DECISION_ANALYSIS))
    return bool(decision.get(_DECISION_FLAGS.get(collection, ""), False))


def combine_deletions(
    first: Optional[DeletionOperations],
    second: Optional[DeletionOperations],
) -> Optional[DeletionOperations]:
    if first is None or first.is_empty():
        return second
    if second is None or second.is_empty():
        return first
    combined: Dict[str, Any] = {}
    for name in ("models_to_delete", "enums_to_delete", "actions_to_delete", "schedules_to_delete"):
        combined[name] = list(dict.fromkeys([*getattr(first, name), *getattr(second, name)]))
    for name in ("field_deletions", "enum_deletions"):
        merged: Dict[str, List[str]] = {key: list(value) for key, value in getattr(first, name).items()}
        for key, value in getattr(second, name).items():
            merged[key] = list(dict.fromkeys([*merged.get(key, []), *value]))
        combined[name] = merged
    return DeletionOperations(**combined)


def success_message(document: AgentDocument, *, updating: bool, decision: Mapping[str, Any]) -> str:
    name = document.name or DEFAULT_TITLE
    models, actions, schedules = len(document.models), len(document.actions), len(document.schedules)
    verb = "updated" if updating else "created"
    if decision:
        if decision.get("needsFullAgent"):
            return (
                f"Successfully {verb} {name}! Your complete {document.domain or 'agent'} system includes "
                f"{models} database models, {actions} automated workflows, and {schedules} scheduled tasks."
            )
        if decision.get("needsDatabase") and decision.get("needsActions"):
            return (
                f"Successfully built database and workflows for {name}! "
                f"Added {models} models, {actions} actions, and {schedules} schedules."
            )
        if decision.get("needsDatabase"):
            return f"Successfully designed database schema for {name}! Created {models} models."
        if decision.get("needsActions"):
            return (
                f"Successfully created workflows for {name}! "
                f"Built {actions} automated actions and {schedules} schedules."
            )
        return f"Successfully analyzed and updated {name}!"

    components = []
    if models:
        components.append(f"{models} database models")
    if actions:
        components.append(f"{actions} automated actions")
    if schedules:
        components.append(f"{schedules} scheduled tasks")
    suffix = f" with {', '.join(components)}" if components else ""
    return f"Successfully {verb} {name}{suffix}!"


@dataclass(slots=True)
class BuildRun:
    """Inputs for one orchestrator run."""

    document_id: str
    command: str
    operation: str = "create"
    existing: Optional[AgentDocument] = None
    start_phase: Optional[str] = None
    progress: Optional[StepProgress] = None
    phase_outputs: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class BuildOutcome:
    status: str
    document: AgentDocument
    progress: StepProgress
    message: str
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    retry_count: int = 0
    validation: Optional[ValidationReport] = None
    quality_score: Optional[int] = None

    @property
    def can_resume(self) -> bool:
        return self.progress.can_resume

    @property
    def last_complete_phase(self) -> Optional[str]:
        return self.progress.last_complete_phase()


class Orchestrator:
    """Runs the phase sequence for one document.

    Generator calls are bounded by the deadline and retried with exponential
    backoff. Checkpoints are scheduled on the writer after every progress
    mutation and drained before ``run`` returns.
    """

    def __init__(
        self,
        generator: Generator,
        writer: CheckpointWriter,
        emitter: ProgressEmitter,
        *,
        deadline: Optional[Deadline] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        expectation: ExpectationPredicate = expects_new_items,
    ) -> None:
        self.generator = generator
        self.writer = writer
        self.emitter = emitter
        self.deadline = deadline or Deadline.from_config()
        self.max_retries = CONFIG.generator_max_retries if max_retries is None else max_retries
        self.backoff_seconds = CONFIG.generator_backoff_seconds if backoff_seconds is None else backoff_seconds
        self.expectation = expectation

        self.retry_count = 0
        self.warnings: List[str] = []
        self._outputs: Dict[str, Any] = {}
        self._pending_deletions: Optional[DeletionOperations] = None
        self._started = time.monotonic()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self, build: BuildRun) -> BuildOutcome:
        self._started = time.monotonic()
        self._outputs = dict(build.phase_outputs)
        starting = build.existing if build.existing is not None and not build.existing.is_empty() else None
        document = build.existing or AgentDocument.new(build.document_id)
        operation = build.operation

        if build.progress is not None:
            progress = build.progress.model_copy(deep=True)
            progress.status = "active"
            progress.can_resume = False
            progress.error = None
            operation = progress.operation or operation
        else:
            progress = StepProgress.begin(build.command, operation)

        first = phase_index(build.start_phase) if build.start_phase else 0
        log("[builder] starting build", document_id=document.id, operation=operation, first_phase=PHASES[first].id)

        status = "complete"
        message = ""
        errors: List[str] = []
        validation: Optional[ValidationReport] = None
        score: Optional[int] = None

        try:
            for spec in PHASES[first:]:
                self.deadline.check(spec.id)
                reason = self._skip_reason(spec.id, starting, document, operation)
                if reason:
                    progress.skip(spec.id, reason)
                    self._step(progress, spec.id, "skipped", reason)
                    self._checkpoint(document, progress)
                    continue

                progress.start(spec.id)
                self._step(progress, spec.id, "processing", progress.step_messages[spec.id])
                self._checkpoint(document, progress)

                if spec.produces == "analysis":
                    document = await self._run_analysis(spec, build, operation, document, progress)
                elif spec.produces == "document":
                    document = await self._run_document_phase(spec, build, operation, starting, document)
                    progress.complete(spec.id)
                else:
                    document, validation, score, message = self._integrate(document, operation)
                    progress.complete(
                        spec.id,
                        message=message,
                        output={"qualityScore": score, "valid": validation.valid},
                    )

                self._step(progress, spec.id, "complete", progress.step_messages[spec.id])
                self._checkpoint(document, progress)

            progress.finish()
            self._checkpoint(document, progress)
        except DeadlineExceeded as exc:
            status = "timeout"
            progress.mark_timeout(exc.phase)
            message = f"Build timed out during {exc.phase or progress.current_step}; it can be resumed."
            errors.append(str(exc))
            log("[builder] deadline exceeded", level=logging.WARNING, document_id=document.id, phase=exc.phase)
            self._step(progress, exc.phase or progress.current_step or "", "timeout", message)
            await self._final_checkpoint(document, progress)
        except GeneratorFailure as exc:
            status = "error"
            progress.fail(exc.phase, str(exc))
            progress.mark_error(str(exc))
            message = f"Build failed during {exc.phase} after {exc.attempts} attempt(s): {exc}"
            errors.append(str(exc))
            log("[builder] generator failure", level=logging.ERROR, document_id=document.id, phase=exc.phase)
            self._step(progress, exc.phase, "failed", message)
            await self._final_checkpoint(document, progress)
        finally:
            await self.writer.drain()

        for failure in self.writer.failures:
            self.warnings.append(f"Checkpoint not saved: {failure}")

        outcome = BuildOutcome(
            status=status,
            document=document,
            progress=progress,
            message=message,
            warnings=list(self.warnings),
            errors=errors,
            retry_count=self.retry_count,
            validation=validation,
            quality_score=score,
        )
        log("[builder] build finished", document_id=document.id, status=status)
        return outcome

    # ------------------------------------------------------------------
    # Phase selection
    # ------------------------------------------------------------------

    def _skip_reason(
        self,
        phase: str,
        starting: Optional[AgentDocument],
        document: AgentDocument,
        operation: str,
    ) -> Optional[str]:
        decision = _mapping(self._outputs.get(DECISION_ANALYSIS))
        if phase == CHANGE_ANALYSIS:
            if starting is None or operation not in UPDATE_OPERATIONS:
                return "No existing agent to compare against"
        elif phase == OVERVIEW:
            if starting is not None and not decision.get("needsFullAgent"):
                return "Existing overview kept"
        elif phase == EXECUTION_DETAIL:
            if not decision.get("needsExecutionDetail", True):
                return "Execution detail not requested"
            if not document.actions:
                return "No actions to detail"
        return None

    # ------------------------------------------------------------------
    # Phase execution
    # ------------------------------------------------------------------

    def _context(self, build: BuildRun, operation: str, phase: str) -> Dict[str, Any]:
        return {
            "request": build.command,
            "operation": operation,
            "phase": phase,
            "documentId": build.document_id,
            "phaseOutputs": dict(self._outputs),
        }

    @staticmethod
    def _existing_payload(document: AgentDocument) -> Optional[Dict[str, Any]]:
        if document.is_empty() and not document.name:
            return None
        return document.to_wire()

    async def _call_generator(
        self,
        phase: str,
        context: Mapping[str, Any],
        existing: Optional[Mapping[str, Any]],
        parse: Callable[[str, Any], Any],
    ) -> Any:
        attempts = self.max_retries + 1
        last_error: Optional[GeneratorFailure] = None
        for attempt in range(1, attempts + 1):
            try:
                raw = await self.deadline.run(self.generator(phase, context, existing), phase)
                return parse(phase, raw)
            except DeadlineExceeded:
                raise
            except GeneratorFailure as exc:
                last_error = exc
            except Exception as exc:
                last_error = GeneratorFailure(phase, f"{type(exc).__name__}: {exc}")

            if attempt < attempts:
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                self.retry_count += 1
                logger.warning("%s attempt %s/%s failed: %s; retrying in %ss", phase, attempt, attempts, last_error, delay)
                self.emitter.warning(
                    f"{phase} attempt {attempt} failed; retrying in {delay:g}s",
                    phase=phase,
                    error=str(last_error),
                )
                await self.deadline.sleep(delay, phase)

        raise GeneratorFailure(phase, str(last_error), attempts=attempts)

    async def _run_analysis(
        self,
        spec: PhaseSpec,
        build: BuildRun,
        operation: str,
        document: AgentDocument,
        progress: StepProgress,
    ) -> AgentDocument:
        output = await self._call_generator(
            spec.id,
            self._context(build, operation, spec.id),
            self._existing_payload(document),
            sanitize_analysis,
        )
        self._outputs[spec.id] = output
        progress.complete(spec.id, output=output)

        if spec.id == CHANGE_ANALYSIS:
            raw = output.get("deletionOperations") or output.get("deletions")
            if isinstance(raw, Mapping):
                try:
                    self._pending_deletions = DeletionOperations.model_validate(raw)
                except ValueError as exc:
                    logger.warning("Ignoring unreadable deletion operations from change analysis: %s", exc)

        incoming = AgentDocument(
            id=document.id,
            metadata=DocumentMetadata(analysis={spec.id: output}),
        )
        result = reconcile_with_report(document, incoming, operation=operation, modified_by="agent-builder")
        return result.document

    async def _run_document_phase(
        self,
        spec: PhaseSpec,
        build: BuildRun,
        operation: str,
        starting: Optional[AgentDocument],
        document: AgentDocument,
    ) -> AgentDocument:
        context = self._context(build, operation, spec.id)
        existing_payload = self._existing_payload(document)
        if spec.id == EXECUTION_DETAIL:
            fragment = await self._execution_detail(document.actions, context, existing_payload)
        else:
            fragment = await self._call_generator(spec.id, context, existing_payload, sanitize_fragment)

        incoming = fragment.document
        collection = _SAFETY_COLLECTIONS.get(spec.id)
        if (
            collection
            and starting is not None
            and getattr(starting, collection)
            and not getattr(incoming, collection)
            and self.expectation(collection, self._outputs)
        ):
            kept = list(getattr(document, collection))
            message = (
                f"safety-override: {spec.id} returned no {collection} although new items were expected; "
                f"keeping {len(kept)} existing {collection}"
            )
            logger.warning(message)
            self.warnings.append(message)
            self.emitter.warning(message, phase=spec.id, kind="safety-override", collection=collection)
            incoming = incoming.model_copy(update={collection: kept})

        deletions = combine_deletions(self._pending_deletions, fragment.deletions)
        self._pending_deletions = None

        result = reconcile_with_report(document, incoming, deletions, operation=operation, modified_by="agent-builder")
        for warning in result.warnings:
            self.warnings.append(warning.message)
            self.emitter.warning(
                warning.message,
                phase=spec.id,
                collection=warning.collection,
                restored=warning.restored,
            )
        if result.changed:
            logger.info("[%s] %s", spec.id, result.changes.describe())
            self.emitter.data(spec.id, result.document.to_wire())
        return result.document

    async def _execution_detail(
        self,
        actions: List[AgentAction],
        context: Mapping[str, Any],
        existing: Optional[Mapping[str, Any]],
    ) -> Fragment:
        """One generator call per action, joined into a single fragment."""

        def parser_for(action: AgentAction) -> Callable[[str, Any], Fragment]:
            def parse(phase: str, raw: Any) -> Fragment:
                payload = parse_payload(phase, raw)
                items = payload.get("actions")
                if not isinstance(items, list):
                    items = [payload]
                item = next((entry for entry in items if isinstance(entry, Mapping)), {})
                item = {**item, "id": action.id, "name": item.get("name") or action.name}
                return sanitize_fragment(phase, {"actions": [item]})

            return parse

        calls = [
            self._call_generator(EXECUTION_DETAIL, {**context, "action": action.to_wire()}, existing, parser_for(action))
            for action in actions
        ]
        results = await asyncio.gather(*calls, return_exceptions=True)
        for result in results:
            if isinstance(result, DeadlineExceeded):
                raise result
        for result in results:
            if isinstance(result, BaseException):
                raise result

        joined = [action for fragment in results for action in fragment.document.actions]
        return Fragment(document=AgentDocument(actions=joined))

    def _integrate(self, document: AgentDocument, operation: str):
        report = validate_document(document)
        elapsed = time.monotonic() - self._started
        score = quality_score(document, report, duration_seconds=elapsed, retry_count=self.retry_count)
        decision = _mapping(self._outputs.get(DECISION_ANALYSIS))
        message = success_message(document, updating=operation in UPDATE_OPERATIONS, decision=decision)

        if not report.valid:
            summary = f"Validation found {len(report.errors)} issue(s): {'; '.join(report.errors)}"
            self.warnings.append(summary)
            self.emitter.warning(summary, phase=INTEGRATION, errors=list(report.errors))

        incoming = AgentDocument(
            id=document.id,
            metadata=DocumentMetadata(
                status="complete",
                analysis={INTEGRATION: {"validation": report.to_dict(), "qualityScore": score}},
            ),
        )
        result = reconcile_with_report(document, incoming, operation=operation, modified_by="agent-builder")
        log("[builder] integration complete", document_id=document.id, quality_score=score, valid=report.valid)
        return result.document, report, score, message

    # ------------------------------------------------------------------
    # Progress plumbing
    # ------------------------------------------------------------------

    def _step(self, progress: StepProgress, phase: str, status: str, message: str) -> None:
        self.emitter.step(
            phase,
            status,
            message,
            {
                "currentStep": progress.current_step,
                "stepProgress": dict(progress.step_progress),
                "stepMessages": dict(progress.step_messages),
                "status": progress.status,
                "canResume": progress.can_resume,
                "percentage": progress.percentage(),
            },
        )

    @staticmethod
    def _metadata(document: AgentDocument, progress: StepProgress) -> Dict[str, Any]:
        return {
            "progress": progress.snapshot(),
            "provenance": {
                "version": document.metadata.version,
                "operationType": document.metadata.operation_type,
                "updatedAt": document.metadata.updated_at,
            },
        }

    def _checkpoint(self, document: AgentDocument, progress: StepProgress) -> None:
        self.writer.schedule(
            document.id,
            document.name or DEFAULT_TITLE,
            document.to_wire(),
            self._metadata(document, progress),
        )

    async def _final_checkpoint(self, document: AgentDocument, progress: StepProgress) -> None:
        saved = await self.writer.write(
            document.id,
            document.name or DEFAULT_TITLE,
            document.to_wire(),
            self._metadata(document, progress),
        )
        if not saved:
            logger.error("Resumable checkpoint for %s could not be saved", document.id)


__all__ = [
    "BuildOutcome",
    "BuildRun",
    "ExpectationPredicate",
    "Orchestrator",
    "combine_deletions",
    "expects_new_items",
    "success_message",
]
