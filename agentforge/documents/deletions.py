"""Explicit deletion instructions applied ahead of a merge.

Deletion is the only operation allowed to shrink a document. Anything not
named by the instructions is carried over as the very same object.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, TypeVar

from .models import AgentAction, AgentDocument, AgentModel, AgentSchedule, DeletionOperations

logger = logging.getLogger(__name__)

E = TypeVar("E", AgentModel, AgentAction, AgentSchedule)


@dataclass(slots=True)
class DeletionReport:
    models: List[str] = field(default_factory=list)
    enums: List[str] = field(default_factory=list)
    actions: List[str] = field(default_factory=list)
    schedules: List[str] = field(default_factory=list)
    fields: Dict[str, List[str]] = field(default_factory=dict)
    scoped_enums: Dict[str, List[str]] = field(default_factory=dict)
    unmatched: List[str] = field(default_factory=list)

    def removed(self, collection: str) -> int:
        return len(getattr(self, collection))

    def is_empty(self) -> bool:
        return not (
            self.models or self.enums or self.actions or self.schedules or self.fields or self.scoped_enums
        )


def _targets(identifier: str, item) -> bool:
    if item.id is not None and item.id == identifier:
        return True
    return (item.name or "").strip().lower() == identifier.strip().lower()


def _find(items: Sequence[E], identifier: str) -> Optional[int]:
    for index, item in enumerate(items):
        if _targets(identifier, item):
            return index
    return None


def _drop(items: Sequence[E], identifiers: Sequence[str], removed: List[str], unmatched: List[str]) -> List[E]:
    if not identifiers:
        return list(items)
    kept: List[E] = []
    hit = set()
    for item in items:
        matched = [identifier for identifier in identifiers if _targets(identifier, item)]
        if matched:
            removed.append(item.name)
            hit.update(matched)
        else:
            kept.append(item)
    unmatched.extend(identifier for identifier in identifiers if identifier not in hit)
    return kept


def _delete_model_fields(model: AgentModel, names: Sequence[str]) -> Tuple[AgentModel, List[str]]:
    wanted = set(names)
    kept = []
    removed = []
    for model_field in model.fields:
        if model_field.name in wanted or (model_field.id is not None and model_field.id in wanted):
            if model_field.is_id:
                logger.warning("Refusing to delete identifier field %s on model %s", model_field.name, model.name)
                kept.append(model_field)
                continue
            removed.append(model_field.name)
        else:
            kept.append(model_field)
    if not removed:
        return model, removed
    return model.model_copy(update={"fields": kept}), removed


def _delete_result_keys(item: E, names: Sequence[str]) -> Tuple[E, List[str]]:
    results = item.results
    updates = {}
    removed: List[str] = []
    for attr in ("fields", "fields_to_update"):
        mapping = getattr(results, attr)
        if not mapping:
            continue
        remaining = {key: value for key, value in mapping.items() if key not in names}
        if len(remaining) != len(mapping):
            removed.extend(key for key in mapping if key in names and key not in removed)
            updates[attr] = remaining
    if not updates:
        return item, removed
    return item.model_copy(update={"results": results.model_copy(update=updates)}), removed


def _delete_scoped_enums(model: AgentModel, names: Sequence[str]) -> Tuple[AgentModel, List[str]]:
    kept = []
    removed = []
    for enum in model.enums:
        if any(_targets(name, enum) for name in names):
            removed.append(enum.name)
        else:
            kept.append(enum)
    if not removed:
        return model, removed
    return model.model_copy(update={"enums": kept}), removed


def apply_deletions(
    document: AgentDocument,
    operations: Optional[DeletionOperations],
) -> Tuple[AgentDocument, DeletionReport]:
    """Remove exactly the entities and fields named by ``operations``."""
    report = DeletionReport()
    if operations is None or operations.is_empty():
        return document, report

    models = _drop(document.models, operations.models_to_delete, report.models, report.unmatched)
    enums = _drop(document.enums, operations.enums_to_delete, report.enums, report.unmatched)
    actions = _drop(document.actions, operations.actions_to_delete, report.actions, report.unmatched)
    schedules = _drop(document.schedules, operations.schedules_to_delete, report.schedules, report.unmatched)

    for identifier, names in operations.field_deletions.items():
        if not names:
            continue
        index = _find(models, identifier)
        if index is not None:
            models[index], removed = _delete_model_fields(models[index], names)
        else:
            removed = []
            for collection in (actions, schedules):
                index = _find(collection, identifier)
                if index is not None:
                    collection[index], removed = _delete_result_keys(collection[index], names)
                    break
            else:
                report.unmatched.append(identifier)
                continue
        if removed:
            report.fields[identifier] = removed

    for identifier, names in operations.enum_deletions.items():
        if not names:
            continue
        index = _find(models, identifier)
        if index is None:
            report.unmatched.append(identifier)
            continue
        models[index], removed = _delete_scoped_enums(models[index], names)
        if removed:
            report.scoped_enums[identifier] = removed

    if report.unmatched:
        logger.info("Deletion targets not found: %s", ", ".join(report.unmatched))
    if report.is_empty():
        return document, report

    updates = {}
    for name, items in (("models", models), ("enums", enums), ("actions", actions), ("schedules", schedules)):
        current = getattr(document, name)
        if len(items) != len(current) or any(new is not old for new, old in zip(items, current)):
            updates[name] = items
    return document.model_copy(update=updates), report


__all__ = ["DeletionReport", "apply_deletions"]
