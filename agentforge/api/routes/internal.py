"""Internal endpoint for Celery workers to relay build progress events."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import ValidationError

from ...builder.events import ProgressEvent

from ..dependencies import get_events
from ..event_log import BuildEventLog
from ..schemas import BuildEventAck, BuildEventRelay

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/internal/build-events", response_model=BuildEventAck)
def relay_build_event(payload: BuildEventRelay, events: BuildEventLog = Depends(get_events)) -> BuildEventAck:
    try:
        event = ProgressEvent.model_validate(payload.event)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid build event") from exc

    if not event.run_id and payload.job_id:
        event = event.model_copy(update={"run_id": payload.job_id})

    cursor = events.append(event)
    if cursor is None:
        logger.debug("Duplicate build event %s for %s ignored", event.dedupe_key(), event.document_id)
    return BuildEventAck(accepted=cursor is not None, sequence=event.sequence, run_id=event.run_id, cursor=cursor)
