"""Exception types raised by the build pipeline."""

from __future__ import annotations

from typing import Optional


class BuildError(Exception):
    """Base class for build pipeline failures."""


class GeneratorFailure(BuildError):
    """The generator raised or returned output that could not be used."""

    def __init__(self, phase: str, message: str, *, attempts: int = 1) -> None:
        super().__init__(f"{phase}: {message}")
        self.phase = phase
        self.attempts = attempts


class DeadlineExceeded(BuildError):
    """The wall-clock deadline fired before the build reached a terminal state."""

    def __init__(self, phase: Optional[str] = None) -> None:
        where = f" during {phase}" if phase else ""
        super().__init__(f"Build deadline exceeded{where}")
        self.phase = phase


class PersistenceFailure(BuildError):
    """A checkpoint could not be written to the document store."""

    def __init__(self, document_id: str, message: str) -> None:
        super().__init__(f"{document_id}: {message}")
        self.document_id = document_id


class MalformedContext(BuildError):
    """Caller-supplied context is not a readable prior document."""


class MergeSafetyViolation(BuildError):
    """A merge would have dropped existing entities; recorded, never raised to callers."""

    def __init__(self, collection: str, existing_count: int, merged_count: int) -> None:
        super().__init__(
            f"{collection}: merged result has {merged_count} item(s), existing had {existing_count}"
        )
        self.collection = collection
        self.existing_count = existing_count
        self.merged_count = merged_count


class BuildInProgress(BuildError):
    """A build for the same document identity is already running."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"A build is already running for document {document_id}")
        self.document_id = document_id


__all__ = [
    "BuildError",
    "BuildInProgress",
    "DeadlineExceeded",
    "GeneratorFailure",
    "MalformedContext",
    "MergeSafetyViolation",
    "PersistenceFailure",
]
