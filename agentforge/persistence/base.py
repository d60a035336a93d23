"""Document store contract shared by every backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol


@dataclass(slots=True)
class StoredDocument:
    """One persisted build: document content plus progress/provenance metadata."""

    id: str
    title: str
    content: Dict[str, Any]
    metadata: Dict[str, Any] = field(default_factory=dict)
    kind: str = "agent"
    updated_at: Optional[str] = None


class DocumentStore(Protocol):
    def get_document(self, document_id: str) -> Optional[StoredDocument]:
        ...

    def save_document(
        self,
        document_id: str,
        title: str,
        content: Dict[str, Any],
        metadata: Dict[str, Any],
    ) -> None:
        """Create or replace the document; raises ``PersistenceFailure`` on error."""
        ...
