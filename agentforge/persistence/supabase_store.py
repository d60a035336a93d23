"""Supabase-backed document store."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from supabase import Client, create_client

from ..config import CONFIG
from ..documents.models import utcnow_iso
from ..errors import PersistenceFailure
from .base import StoredDocument

logger = logging.getLogger(__name__)


class SupabaseDocumentStore:
    """Persists builds as rows of ``CONFIG.documents_table``.

    Expected columns: ``id`` (primary key), ``title``, ``kind``, ``content``
    (jsonb), ``metadata`` (jsonb), ``updated_at``.
    """

    def __init__(self, client: Optional[Client] = None, *, table: Optional[str] = None) -> None:
        if client is None:
            url = CONFIG.supabase_url
            # Prefer the service role key so server-side writes bypass RLS.
            key = CONFIG.supabase_service_role_key or CONFIG.supabase_anon_key
            if not url or not key:
                raise ValueError(
                    "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_ANON_KEY) are required"
                )
            client = create_client(url, key)
        self.client = client
        self.table = table or CONFIG.documents_table

    def get_document(self, document_id: str) -> Optional[StoredDocument]:
        result = (
            self.client
            .table(self.table)
            .select("*")
            .eq("id", document_id)
            .limit(1)
            .execute()
        )
        rows = result.data or []
        if not rows:
            return None
        row = rows[0]
        return StoredDocument(
            id=row["id"],
            title=row.get("title") or "",
            content=row.get("content") or {},
            metadata=row.get("metadata") or {},
            kind=row.get("kind") or "agent",
            updated_at=row.get("updated_at"),
        )

    def save_document(
        self,
        document_id: str,
        title: str,
        content: Dict[str, Any],
        metadata: Dict[str, Any],
    ) -> None:
        payload = {
            "id": document_id,
            "title": title,
            "kind": "agent",
            "content": content,
            "metadata": metadata,
            "updated_at": utcnow_iso(),
        }
        try:
            result = (
                self.client
                .table(self.table)
                .upsert(payload, on_conflict="id")
                .execute()
            )
        except Exception as exc:
            raise PersistenceFailure(document_id, str(exc)) from exc
        if not result.data:
            raise PersistenceFailure(document_id, "upsert returned no rows")
