"""Ordered, retrying checkpoint writes that never block phase execution."""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Dict, List, Optional

from ..config import CONFIG
from ..errors import PersistenceFailure
from .base import DocumentStore

logger = logging.getLogger(__name__)


class CheckpointWriter:
    """Schedules document snapshots onto a per-build write chain.

    Each write waits for the previous one so checkpoints land in the order
    they were taken. Snapshots are copied when scheduled; later mutation of
    the caller's objects cannot leak into a pending write.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        retries: Optional[int] = None,
        retry_delay: float = 0.5,
    ) -> None:
        self._store = store
        self.retries = CONFIG.persistence_retries if retries is None else max(0, retries)
        self.retry_delay = retry_delay
        self._tail: Optional[asyncio.Task] = None
        self.completed = 0
        self.failures: List[PersistenceFailure] = []

    def schedule(
        self,
        document_id: str,
        title: str,
        content: Dict[str, Any],
        metadata: Dict[str, Any],
    ) -> asyncio.Task:
        snapshot = (copy.deepcopy(content), copy.deepcopy(metadata))
        previous = self._tail
        task = asyncio.create_task(self._chain(previous, document_id, title, *snapshot))
        self._tail = task
        return task

    async def write(
        self,
        document_id: str,
        title: str,
        content: Dict[str, Any],
        metadata: Dict[str, Any],
    ) -> bool:
        """Write now (after anything already pending) and wait for the outcome."""
        return await self.schedule(document_id, title, content, metadata)

    async def drain(self) -> None:
        if self._tail is not None:
            await asyncio.gather(self._tail, return_exceptions=True)

    async def _chain(
        self,
        previous: Optional[asyncio.Task],
        document_id: str,
        title: str,
        content: Dict[str, Any],
        metadata: Dict[str, Any],
    ) -> bool:
        if previous is not None:
            await asyncio.gather(previous, return_exceptions=True)
        return await self._write(document_id, title, content, metadata)

    async def _write(
        self,
        document_id: str,
        title: str,
        content: Dict[str, Any],
        metadata: Dict[str, Any],
    ) -> bool:
        attempts = self.retries + 1
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                await asyncio.to_thread(self._store.save_document, document_id, title, content, metadata)
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "Checkpoint write %s/%s failed for document %s: %s",
                    attempt,
                    attempts,
                    document_id,
                    exc,
                )
                if attempt < attempts:
                    await asyncio.sleep(self.retry_delay)
                continue
            self.completed += 1
            return True

        failure = (
            last_error
            if isinstance(last_error, PersistenceFailure)
            else PersistenceFailure(document_id, str(last_error))
        )
        self.failures.append(failure)
        logger.error("Giving up on checkpoint for document %s: %s", document_id, failure)
        return False
