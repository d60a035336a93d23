"""FastAPI dependencies shared across the build API."""

from __future__ import annotations

from ..persistence import DocumentStore, get_document_store
from .event_log import BuildEventLog, get_event_log


def get_store() -> DocumentStore:
    """Return the shared document store instance."""

    return get_document_store()


def get_events() -> BuildEventLog:
    """Return the process-wide relayed event log."""

    return get_event_log()
