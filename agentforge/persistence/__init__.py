"""
Persistence module for agent documents.

This module provides:
- The document store contract and ``StoredDocument`` record
- In-memory and Supabase store backends
- The checkpoint writer used by the build pipeline
"""

from __future__ import annotations

from typing import Optional

from ..config import CONFIG
from .base import DocumentStore, StoredDocument
from .checkpoints import CheckpointWriter
from .memory import InMemoryDocumentStore

# Global document store instance
_document_store: Optional[DocumentStore] = None


def get_document_store() -> DocumentStore:
    """Get the process-wide document store for the configured backend."""
    global _document_store
    if _document_store is None:
        if CONFIG.document_store_backend == "supabase":
            from .supabase_store import SupabaseDocumentStore

            _document_store = SupabaseDocumentStore()
        else:
            _document_store = InMemoryDocumentStore()
    return _document_store


def set_document_store(store: Optional[DocumentStore]) -> None:
    """Replace (or with ``None`` reset) the process-wide store."""
    global _document_store
    _document_store = store


__all__ = [
    "CheckpointWriter",
    "DocumentStore",
    "InMemoryDocumentStore",
    "StoredDocument",
    "get_document_store",
    "set_document_store",
]
