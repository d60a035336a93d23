"""Celery task definitions for background builds.

Workers do not share memory with the API process, so progress events are
relayed over HTTP to ``/v1/internal/build-events`` (see ``HttpRelaySink``).
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from celery.utils.log import get_task_logger

from ..builder.events import HttpRelaySink
from ..builder.service import BuildRequest, BuildService
from ..config import CONFIG
from ..errors import BuildInProgress
from ..generation.base import Generator

from .celery_app import celery_app
from .locks import document_lock


logger = get_task_logger(__name__)


def build_generator() -> Generator:
    """Generator used by workers; replaced in tests."""
    from ..generation.openai_generator import OpenAIGenerator

    return OpenAIGenerator()


def execute_build(
    document_id: str,
    request_payload: Dict[str, Any],
    *,
    job_id: Optional[str] = None,
    service: Optional[BuildService] = None,
) -> Dict[str, Any]:
    """Run one build to a terminal state and return the serialized result."""
    request = BuildRequest.model_validate({**request_payload, "documentId": document_id})
    service = service or BuildService(build_generator())
    sink = HttpRelaySink(job_id=job_id) if CONFIG.relay_events else None
    with document_lock(document_id):
        result = asyncio.run(service.build(request, sink=sink, run_id=job_id))
    return result.to_wire()


@celery_app.task(bind=True, name="build.run", max_retries=0)
def run_build(self, document_id: str, request_payload: Dict[str, Any]) -> Dict[str, Any]:
    job_id = getattr(self.request, "id", None)
    logger.info("Starting build %s for document %s", job_id, document_id)
    try:
        result = execute_build(document_id, request_payload, job_id=job_id)
    except BuildInProgress as exc:
        logger.warning("Build %s rejected: %s", job_id, exc)
        return {
            "documentId": document_id,
            "status": "error",
            "summary": str(exc),
            "canResume": False,
            "errors": [str(exc)],
        }
    except Exception:
        logger.exception("Build %s crashed for document %s", job_id, document_id)
        raise

    logger.info(
        "Build %s finished for document %s with status %s",
        job_id,
        document_id,
        result.get("status"),
    )
    return result


__all__ = ["build_generator", "execute_build", "run_build"]
