"""Cross-process build lock keyed by document id, held in Redis.

The in-process registry in ``BuildService`` only sees builds on one event
loop. Workers on other hosts take this lock before running a build so one
document never has two orchestrators writing to it.
"""

from __future__ import annotations

import contextlib
import logging
from typing import Iterator, Optional

import redis

from ..config import CONFIG
from ..errors import BuildInProgress

logger = logging.getLogger(__name__)

LOCK_PREFIX = "agentforge:build-lock"
LOCK_GRACE_SECONDS = 120

_client: Optional[redis.Redis] = None


def get_lock_client() -> redis.Redis:
    global _client
    if _client is None:
        _client = redis.from_url(CONFIG.build_lock_url)
    return _client


def lock_name(document_id: str) -> str:
    return f"{LOCK_PREFIX}:{document_id}"


@contextlib.contextmanager
def document_lock(document_id: str, *, client: Optional[redis.Redis] = None) -> Iterator[None]:
    """Hold the build lock for ``document_id``; raises ``BuildInProgress`` when taken."""
    if not CONFIG.build_lock_enabled:
        yield
        return

    client = client or get_lock_client()
    # Expires LOCK_GRACE_SECONDS after the build deadline.
    lock = client.lock(
        lock_name(document_id),
        timeout=int(CONFIG.build_deadline_seconds) + LOCK_GRACE_SECONDS,
        blocking=False,
    )
    if not lock.acquire(blocking=False):
        raise BuildInProgress(document_id)
    try:
        yield
    finally:
        try:
            lock.release()
        except redis.exceptions.LockError as exc:
            logger.warning("Build lock for document %s was lost before release: %s", document_id, exc)


__all__ = ["LOCK_PREFIX", "document_lock", "get_lock_client", "lock_name"]
