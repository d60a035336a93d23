"""Build submission and status endpoints."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...builder.progress import StepProgress
from ...builder.resume import parse_document
from ...builder.service import document_counts, parse_context
from ...config import CONFIG
from ...documents.models import AgentDocument, new_id
from ...errors import MalformedContext
from ...logger import log
from ...persistence import DocumentStore

from ...worker.tasks import run_build

from ..dependencies import get_events, get_store
from ..event_log import BuildEventLog
from ..schemas import BuildAccepted, BuildCreate, BuildEventList, BuildStatusResponse


router = APIRouter()

DOCUMENT_OPERATIONS = {"update", "extend", "resume"}
# Progress left "active" longer than this is treated as an abandoned worker.
RUNNING_GRACE_SECONDS = 120


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def build_is_running(progress: Optional[StepProgress], *, now: Optional[datetime] = None) -> bool:
    """Whether persisted progress belongs to a build that is still making progress."""
    if progress is None or progress.status != "active":
        return False
    updated = _parse_timestamp(progress.updated_at)
    if updated is None:
        return False
    now = now or datetime.now(timezone.utc)
    window = timedelta(seconds=CONFIG.build_deadline_seconds + RUNNING_GRACE_SECONDS)
    return now - updated < window


@router.post(
    "/builds",
    response_model=BuildAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
def enqueue_build(request: BuildCreate, store: DocumentStore = Depends(get_store)) -> BuildAccepted:
    """Queue a build for a background worker."""

    context_document: Optional[AgentDocument] = None
    if request.context is not None:
        try:
            context_document = parse_context(request.context)
        except MalformedContext as exc:
            log("[api] ignoring unreadable build context", level=logging.WARNING, error=str(exc))

    if request.operation in DOCUMENT_OPERATIONS and not (request.document_id or request.context):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"documentId or context is required for operation '{request.operation}'",
        )
    if request.operation == "create" and not request.command:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="command is required")

    document_id = request.document_id or (context_document.id if context_document else None) or new_id()

    stored = store.get_document(document_id)
    if stored is not None and build_is_running(StepProgress.from_metadata(stored.metadata)):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A build is already running for document {document_id}",
        )

    payload = request.model_dump(by_alias=True, exclude_none=True)
    payload["documentId"] = document_id

    try:
        async_result = run_build.apply_async(
            args=[document_id, payload],
            queue=CONFIG.build_queue,
        )
    except Exception as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Unable to enqueue build") from exc

    return BuildAccepted(job_id=str(async_result.id), document_id=document_id, queue=CONFIG.build_queue)


@router.get("/builds/{document_id}", response_model=BuildStatusResponse)
def get_build(document_id: str, store: DocumentStore = Depends(get_store)) -> BuildStatusResponse:
    stored = store.get_document(document_id)
    if stored is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Build not found")

    document = parse_document(stored.content)
    progress = StepProgress.from_metadata(stored.metadata)
    response = BuildStatusResponse(
        document_id=document_id,
        title=stored.title,
        counts=document_counts(document) if document is not None else {},
        updated_at=stored.updated_at,
    )
    if progress is None:
        return response

    return response.model_copy(
        update={
            "status": progress.status,
            "current_step": progress.current_step,
            "step_progress": dict(progress.step_progress),
            "step_messages": dict(progress.step_messages),
            "can_resume": progress.can_resume,
            "last_complete_phase": progress.last_complete_phase(),
            "percentage": progress.percentage(),
            "running": build_is_running(progress),
            "timed_out_at": progress.timed_out_at,
        }
    )


@router.get("/builds/{document_id}/events", response_model=BuildEventList)
def list_build_events(
    document_id: str,
    after: int = Query(0, ge=0),
    run_id: Optional[str] = Query(None, alias="runId"),
    events: BuildEventLog = Depends(get_events),
) -> BuildEventList:
    """Relayed events for a document across runs, paged by log cursor."""
    return BuildEventList(document_id=document_id, events=events.list(document_id, after=after, run_id=run_id))
