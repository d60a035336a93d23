"""Progress events emitted while a build runs.

Events are numbered with a strictly increasing ``sequence`` per build run and
tagged with the run's id, so several builds of one document stay distinct.
Sinks are write-only and must tolerate replays, so every sink shipped here
skips events whose dedupe key it has already seen.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Literal, Optional, Protocol, Tuple

import requests
from pydantic import Field

from ..config import CONFIG
from ..documents.models import WireModel, new_id, utcnow_iso

logger = logging.getLogger(__name__)

EventType = Literal["agent-step", "agent-data", "finish", "warning"]

BUILD_EVENTS_PATH = "/v1/internal/build-events"


def relay_url() -> str:
    return f"{CONFIG.api_base_url}{BUILD_EVENTS_PATH}"


class ProgressEvent(WireModel):
    type: EventType
    sequence: int
    document_id: str
    run_id: str = ""
    phase: Optional[str] = None
    status: Optional[str] = None
    message: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    emitted_at: str = Field(default_factory=utcnow_iso)

    def dedupe_key(self) -> Tuple[Any, ...]:
        if self.type == "warning":
            return (self.run_id, self.type, self.phase, self.message)
        return (self.run_id, self.type, self.phase, self.status)


class ProgressSink(Protocol):
    def emit(self, event: ProgressEvent) -> None:
        ...


class DedupingSink:
    """Base sink that forwards each dedupe key at most once."""

    def __init__(self) -> None:
        self._seen: set[Tuple[Any, ...]] = set()

    def emit(self, event: ProgressEvent) -> None:
        key = (event.document_id, *event.dedupe_key())
        if key in self._seen:
            return
        self._seen.add(key)
        self.deliver(event)

    def deliver(self, event: ProgressEvent) -> None:
        raise NotImplementedError


class CollectingSink(DedupingSink):
    """Keeps delivered events in memory; used by the CLI, API and tests."""

    def __init__(self) -> None:
        super().__init__()
        self.events: List[ProgressEvent] = []

    def deliver(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[ProgressEvent]:
        return [event for event in self.events if event.type == event_type]


class CallbackSink(DedupingSink):
    def __init__(self, callback) -> None:
        super().__init__()
        self._callback = callback

    def deliver(self, event: ProgressEvent) -> None:
        self._callback(event)


class HttpRelaySink(DedupingSink):
    """Relays events from a worker process to the API's internal endpoint.

    Inside an event loop each post runs in a worker thread, chained behind the
    previous one so the API receives events in emission order. ``drain`` waits
    for the chain. Outside a loop posts are sent inline.
    """

    def __init__(self, *, job_id: Optional[str] = None, timeout: float = 15.0) -> None:
        super().__init__()
        self.job_id = job_id
        self.timeout = timeout
        self._tail: Optional[asyncio.Task] = None

    def deliver(self, event: ProgressEvent) -> None:
        payload = {"jobId": self.job_id, "event": event.to_wire()}
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self._post(event.document_id, payload)
            return
        previous = self._tail
        self._tail = asyncio.create_task(self._chain(previous, event.document_id, payload))

    async def drain(self) -> None:
        if self._tail is not None:
            await asyncio.gather(self._tail, return_exceptions=True)

    async def _chain(self, previous: Optional[asyncio.Task], document_id: str, payload: Dict[str, Any]) -> None:
        if previous is not None:
            await asyncio.gather(previous, return_exceptions=True)
        await asyncio.to_thread(self._post, document_id, payload)

    def _post(self, document_id: str, payload: Dict[str, Any]) -> None:
        try:
            response = requests.post(relay_url(), json=payload, timeout=self.timeout)
            if response.status_code >= 400:
                logger.warning(
                    "Build event relay failed (%s) for document %s: %s",
                    response.status_code,
                    document_id,
                    response.text,
                )
        except requests.RequestException as exc:
            logger.warning("Unable to relay build event for document %s: %s", document_id, exc)


class ProgressEmitter:
    """Numbers events, keeps a replayable history and fans out to sinks."""

    def __init__(
        self,
        document_id: str,
        sinks: Iterable[ProgressSink] = (),
        *,
        run_id: Optional[str] = None,
    ) -> None:
        self.document_id = document_id
        self.run_id = run_id or new_id()
        self._sinks: List[ProgressSink] = list(sinks)
        self._sequence = 0
        self.history: List[ProgressEvent] = []

    def attach(self, sink: ProgressSink, *, replay: bool = True) -> None:
        if replay:
            for event in list(self.history):
                self._deliver(sink, event)
        self._sinks.append(sink)

    def emit(
        self,
        event_type: EventType,
        *,
        phase: Optional[str] = None,
        status: Optional[str] = None,
        message: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> ProgressEvent:
        self._sequence += 1
        event = ProgressEvent(
            type=event_type,
            sequence=self._sequence,
            document_id=self.document_id,
            run_id=self.run_id,
            phase=phase,
            status=status,
            message=message,
            payload=payload or {},
        )
        self.history.append(event)
        for sink in list(self._sinks):
            self._deliver(sink, event)
        return event

    async def drain(self) -> None:
        """Wait for sinks that deliver in the background."""
        for sink in list(self._sinks):
            drain = getattr(sink, "drain", None)
            if drain is not None:
                await drain()

    def _deliver(self, sink: ProgressSink, event: ProgressEvent) -> None:
        try:
            sink.emit(event)
        except Exception:
            logger.exception("Progress sink %r failed on event %s", sink, event.sequence)

    # -- typed helpers -----------------------------------------------------

    def step(self, phase: str, status: str, message: str, progress: Dict[str, Any]) -> ProgressEvent:
        return self.emit("agent-step", phase=phase, status=status, message=message, payload=progress)

    def data(self, phase: str, document: Dict[str, Any]) -> ProgressEvent:
        return self.emit("agent-data", phase=phase, status="complete", payload={"document": document})

    def warning(self, message: str, *, phase: Optional[str] = None, **details: Any) -> ProgressEvent:
        return self.emit("warning", phase=phase, message=message, payload=details)

    def finish(self, status: str, result: Dict[str, Any]) -> ProgressEvent:
        return self.emit("finish", status=status, payload=result)


__all__ = [
    "BUILD_EVENTS_PATH",
    "CallbackSink",
    "CollectingSink",
    "DedupingSink",
    "EventType",
    "HttpRelaySink",
    "ProgressEmitter",
    "ProgressEvent",
    "ProgressSink",
    "relay_url",
]
