"""In-process log of relayed build events, keyed by document id.

Each accepted event gets a per-document ``cursor`` in arrival order, so a
reader can page across every run of a document with ``after``. Run-local
``sequence`` numbers restart with each build and are kept as relayed.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional, Set, Tuple

from ..builder.events import ProgressEvent


class BuildEventLog:
    def __init__(self, *, max_events_per_document: int = 500) -> None:
        self._events: Dict[str, List[Dict[str, Any]]] = {}
        self._seen: Dict[str, Set[Tuple[Any, ...]]] = {}
        self._cursors: Dict[str, int] = {}
        self._lock = threading.Lock()
        self.max_events_per_document = max_events_per_document

    def append(self, event: ProgressEvent) -> Optional[int]:
        """Store ``event`` and return its cursor; ``None`` when already relayed."""
        key = event.dedupe_key()
        with self._lock:
            seen = self._seen.setdefault(event.document_id, set())
            if key in seen:
                return None
            seen.add(key)
            cursor = self._cursors.get(event.document_id, 0) + 1
            self._cursors[event.document_id] = cursor
            events = self._events.setdefault(event.document_id, [])
            events.append({**event.to_wire(), "cursor": cursor})
            if len(events) > self.max_events_per_document:
                del events[: len(events) - self.max_events_per_document]
            return cursor

    def list(
        self,
        document_id: str,
        *,
        after: int = 0,
        run_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            events = list(self._events.get(document_id, []))
        return [
            event
            for event in events
            if event["cursor"] > after and (run_id is None or event.get("runId") == run_id)
        ]

    def reset(self, document_id: Optional[str] = None) -> None:
        with self._lock:
            if document_id is None:
                self._events.clear()
                self._seen.clear()
                self._cursors.clear()
            else:
                self._events.pop(document_id, None)
                self._seen.pop(document_id, None)
                self._cursors.pop(document_id, None)


_event_log: Optional[BuildEventLog] = None


def get_event_log() -> BuildEventLog:
    global _event_log
    if _event_log is None:
        _event_log = BuildEventLog()
    return _event_log
