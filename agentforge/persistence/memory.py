"""Process-local document store used in development, tests and the CLI."""

from __future__ import annotations

import copy
import threading
from typing import Any, Dict, List, Optional

from ..documents.models import utcnow_iso
from .base import StoredDocument


class InMemoryDocumentStore:
    def __init__(self) -> None:
        self._documents: Dict[str, StoredDocument] = {}
        self._lock = threading.Lock()
        self.save_log: List[str] = []

    def get_document(self, document_id: str) -> Optional[StoredDocument]:
        with self._lock:
            stored = self._documents.get(document_id)
            return copy.deepcopy(stored) if stored is not None else None

    def save_document(
        self,
        document_id: str,
        title: str,
        content: Dict[str, Any],
        metadata: Dict[str, Any],
    ) -> None:
        record = StoredDocument(
            id=document_id,
            title=title,
            content=copy.deepcopy(content),
            metadata=copy.deepcopy(metadata),
            updated_at=utcnow_iso(),
        )
        with self._lock:
            self._documents[document_id] = record
            self.save_log.append(document_id)

    def list_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._documents)

    def clear(self) -> None:
        with self._lock:
            self._documents.clear()
            self.save_log.clear()
