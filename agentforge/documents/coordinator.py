"""Whole-document reconciliation.

``reconcile`` composes the deletion processor and the per-type merges over an
entire ``AgentDocument`` and reports what changed so callers only persist and
announce real changes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .deletions import DeletionReport, apply_deletions
from .merging import (
    MergeWarning,
    guard_collection,
    merge_actions,
    merge_enums,
    merge_models,
    merge_schedules,
    overlay,
    wire_value,
)
from .models import AgentDocument, DeletionOperations, DocumentMetadata, utcnow_iso

logger = logging.getLogger(__name__)

_MERGERS = {
    "models": merge_models,
    "enums": merge_enums,
    "actions": merge_actions,
    "schedules": merge_schedules,
}
_GUARDED = ("models", "actions", "schedules")
_SCALARS = ("name", "description", "domain")


@dataclass(slots=True)
class ChangeSummary:
    """Names of entities added by a merge versus those already present."""

    added_models: List[str] = field(default_factory=list)
    existing_models: List[str] = field(default_factory=list)
    added_actions: List[str] = field(default_factory=list)
    existing_actions: List[str] = field(default_factory=list)
    added_schedules: List[str] = field(default_factory=list)
    existing_schedules: List[str] = field(default_factory=list)

    def describe(self) -> str:
        parts = []
        for label in ("models", "actions", "schedules"):
            added = getattr(self, f"added_{label}")
            kept = getattr(self, f"existing_{label}")
            text = f"{label}: {len(kept)} existing"
            if added:
                text += f", +{len(added)} new ({', '.join(added)})"
            parts.append(text)
        return "; ".join(parts)

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "addedModels": list(self.added_models),
            "existingModels": list(self.existing_models),
            "addedActions": list(self.added_actions),
            "existingActions": list(self.existing_actions),
            "addedSchedules": list(self.added_schedules),
            "existingSchedules": list(self.existing_schedules),
        }


@dataclass(slots=True)
class ReconcileResult:
    document: AgentDocument
    changed: bool
    changes: ChangeSummary
    warnings: List[MergeWarning] = field(default_factory=list)
    deletions: DeletionReport = field(default_factory=DeletionReport)


def documents_equal(left: AgentDocument, right: AgentDocument) -> bool:
    return wire_value(left) == wire_value(right)


def has_changes(before: Optional[AgentDocument], after: AgentDocument) -> bool:
    return before is None or not documents_equal(before, after)


def summarize_changes(before: Optional[AgentDocument], after: AgentDocument) -> ChangeSummary:
    summary = ChangeSummary()
    for label in ("models", "actions", "schedules"):
        prior = getattr(before, label) if before is not None else []
        prior_ids = {item.id for item in prior if item.id}
        prior_names = {(item.name or "").lower() for item in prior}
        for item in getattr(after, label):
            known = (item.id and item.id in prior_ids) or (
                label == "models" and (item.name or "").lower() in prior_names
            )
            target = f"existing_{label}" if known else f"added_{label}"
            getattr(summary, target).append(item.name)
    return summary


def _merge_metadata(existing: DocumentMetadata, incoming: DocumentMetadata) -> DocumentMetadata:
    return overlay(
        existing,
        incoming,
        keep=("version", "created_at", "updated_at"),
        nested={"analysis": lambda old, new: {**(old or {}), **(new or {})}},
    )


def reconcile_with_report(
    existing: Optional[AgentDocument],
    incoming: AgentDocument,
    deletions: Optional[DeletionOperations] = None,
    *,
    operation: str = "merge",
    modified_by: Optional[str] = None,
) -> ReconcileResult:
    """Merge ``incoming`` into ``existing`` after applying ``deletions``."""
    if existing is None:
        return ReconcileResult(
            document=incoming,
            changed=True,
            changes=summarize_changes(None, incoming),
        )

    working, deletion_report = apply_deletions(existing, deletions)
    warnings: List[MergeWarning] = []
    updates: Dict[str, Any] = {}

    for name in _SCALARS:
        value = getattr(incoming, name)
        if isinstance(value, str) and value.strip() and value != getattr(working, name):
            updates[name] = value

    for name, merge in _MERGERS.items():
        if not incoming.provided(name):
            continue
        current = getattr(working, name)
        fragment = getattr(incoming, name)
        merged = merge(current, fragment)
        if name in _GUARDED:
            merged, warning = guard_collection(name, current, fragment, merged)
            if warning is not None:
                warnings.append(warning)
        if wire_value(merged) != wire_value(current):
            updates[name] = merged

    for name in _GUARDED:
        before_count = len(getattr(existing, name))
        after_count = len(updates.get(name, getattr(working, name)))
        allowed = deletion_report.removed(name)
        if after_count < before_count - allowed:
            message = (
                f"{name} shrank from {before_count} to {after_count} item(s) "
                f"without a matching deletion"
            )
            logger.warning(message)
            warnings.append(
                MergeWarning(
                    collection=name,
                    message=message,
                    existing_count=before_count,
                    incoming_count=len(getattr(incoming, name)),
                    merged_count=after_count,
                )
            )

    if not working.created_at and incoming.created_at:
        updates["created_at"] = incoming.created_at

    if incoming.provided("metadata"):
        metadata = _merge_metadata(working.metadata, incoming.metadata)
        if metadata is not working.metadata:
            updates["metadata"] = metadata

    candidate = working.model_copy(update=updates) if updates else working
    if not has_changes(existing, candidate):
        return ReconcileResult(
            document=existing,
            changed=False,
            changes=summarize_changes(existing, existing),
            warnings=warnings,
            deletions=deletion_report,
        )

    metadata_updates: Dict[str, Any] = {
        "version": candidate.metadata.version + 1,
        "updated_at": utcnow_iso(),
        "operation_type": operation,
    }
    if modified_by:
        metadata_updates["last_modified_by"] = modified_by
    if candidate.metadata.created_at is None:
        metadata_updates["created_at"] = candidate.created_at
    document = candidate.model_copy(update={"metadata": candidate.metadata.model_copy(update=metadata_updates)})

    changes = summarize_changes(existing, document)
    logger.info("Document %s reconciled: %s", document.id, changes.describe())
    return ReconcileResult(
        document=document,
        changed=True,
        changes=changes,
        warnings=warnings,
        deletions=deletion_report,
    )


def reconcile(
    existing: Optional[AgentDocument],
    incoming: AgentDocument,
    deletions: Optional[DeletionOperations] = None,
) -> AgentDocument:
    return reconcile_with_report(existing, incoming, deletions).document


__all__ = [
    "ChangeSummary",
    "ReconcileResult",
    "documents_equal",
    "has_changes",
    "reconcile",
    "reconcile_with_report",
    "summarize_changes",
]
