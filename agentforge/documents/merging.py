"""Entity merge engine.

Each entity type has an explicit merge function built on two primitives:

``merge_collection``
    identity-then-append over a list. Existing items are never removed because
    they are absent from the incoming list.

``overlay``
    property-wise merge of two records where incoming values win only for the
    keys the incoming record explicitly provided.

Identity keys (``id``) always come from the existing entry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar

from pydantic import BaseModel

from ..errors import MergeSafetyViolation
from .models import (
    AgentAction,
    AgentEnum,
    AgentModel,
    AgentSchedule,
    DataSource,
    DatabaseModel,
    DatabaseSource,
    EnumField,
    ModelField,
    ModelRecord,
    new_id,
)
from .relations import normalize_model

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)
Matcher = Callable[[Sequence[Any], Any], Optional[int]]


@dataclass(slots=True)
class MergeWarning:
    """A collection-level anomaly noticed while merging."""

    collection: str
    message: str
    existing_count: int
    incoming_count: int
    merged_count: int
    restored: bool = False


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


def wire_value(value: Any) -> Any:
    """Comparable, JSON-shaped view of a record or a list of records."""
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, mode="json", exclude_none=True)
    if isinstance(value, (list, tuple)):
        return [wire_value(item) for item in value]
    if isinstance(value, dict):
        return {key: wire_value(item) for key, item in value.items()}
    return value


def _name_key(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def match_by_id(items: Sequence[Any], incoming: Any) -> Optional[int]:
    if incoming.id is None:
        return None
    for index, item in enumerate(items):
        if item.id == incoming.id:
            return index
    return None


def match_by_id_then_name(items: Sequence[Any], incoming: Any) -> Optional[int]:
    index = match_by_id(items, incoming)
    if index is not None:
        return index
    wanted = _name_key(incoming.name)
    if not wanted:
        return None
    for index, item in enumerate(items):
        if _name_key(item.name) == wanted:
            return index
    return None


def match_field(items: Sequence[ModelField], incoming: ModelField) -> Optional[int]:
    index = match_by_id(items, incoming)
    if index is not None or incoming.id is not None:
        return index
    for index, item in enumerate(items):
        if item.name == incoming.name:
            return index
    return None


def with_id(item: T) -> T:
    if getattr(item, "id", None):
        return item
    return item.model_copy(update={"id": new_id()})


def overlay(
    existing: T,
    incoming: T,
    *,
    keep: Iterable[str] = ("id",),
    nested: Optional[Mapping[str, Callable[[Any, Any], Any]]] = None,
) -> T:
    """Merge ``incoming`` onto ``existing`` for the keys incoming provided.

    Keys listed in ``keep`` retain the existing value whenever it is set.
    ``nested`` maps a key to the function used to combine both sides instead
    of replacing the existing value. Returns ``existing`` itself when nothing
    differs.
    """
    keep = set(keep)
    nested = nested or {}
    updates: Dict[str, Any] = {}
    for name in incoming.model_fields_set:
        old_value = getattr(existing, name)
        new_value = getattr(incoming, name)
        if name in keep and old_value is not None:
            continue
        if name in nested:
            new_value = nested[name](old_value, new_value)
        if wire_value(new_value) == wire_value(old_value):
            continue
        updates[name] = new_value
    if not updates:
        return existing
    return existing.model_copy(update=updates)


def merge_optional(existing: Optional[T], incoming: Optional[T]) -> Optional[T]:
    """Overlay two optional sub-records; a missing side never erases the other."""
    if incoming is None:
        return existing
    if existing is None:
        return incoming
    return overlay(existing, incoming, keep=())


def merge_collection(
    existing: Sequence[T],
    incoming: Sequence[T],
    *,
    identity: Matcher,
    merge_item: Callable[[T, T], T],
    on_new: Callable[[T], T] = with_id,
) -> List[T]:
    """Identity-then-append merge of two entity lists."""
    result: List[T] = list(existing)
    for item in incoming:
        index = identity(result, item)
        if index is None:
            result.append(on_new(item))
        else:
            result[index] = merge_item(result[index], item)
    return result


# ---------------------------------------------------------------------------
# Per-type merges
# ---------------------------------------------------------------------------


def merge_fields(existing: Sequence[ModelField], incoming: Sequence[ModelField]) -> List[ModelField]:
    return merge_collection(
        existing,
        incoming,
        identity=match_field,
        merge_item=lambda old, new: overlay(old, new),
    )


def merge_enum_fields(existing: Sequence[EnumField], incoming: Sequence[EnumField]) -> List[EnumField]:
    return merge_collection(
        existing,
        incoming,
        identity=match_by_id_then_name,
        merge_item=lambda old, new: overlay(old, new),
    )


def _merge_enum(existing: AgentEnum, incoming: AgentEnum) -> AgentEnum:
    return overlay(existing, incoming, nested={"fields": merge_enum_fields})


def _new_enum(item: AgentEnum) -> AgentEnum:
    item = with_id(item)
    fields = [with_id(field) for field in item.fields]
    if all(new is old for new, old in zip(fields, item.fields)):
        return item
    return item.model_copy(update={"fields": fields})


def merge_enums(existing: Sequence[AgentEnum], incoming: Sequence[AgentEnum]) -> List[AgentEnum]:
    return merge_collection(
        existing,
        incoming,
        identity=match_by_id_then_name,
        merge_item=_merge_enum,
        on_new=_new_enum,
    )


def _match_record(items: Sequence[ModelRecord], incoming: ModelRecord) -> Optional[int]:
    if incoming.id is not None:
        return match_by_id(items, incoming)
    for index, item in enumerate(items):
        if item.data == incoming.data:
            return index
    return None


def merge_records(existing: Sequence[ModelRecord], incoming: Sequence[ModelRecord]) -> List[ModelRecord]:
    """Append-only: matching records keep their existing content."""
    return merge_collection(
        existing,
        incoming,
        identity=_match_record,
        merge_item=lambda old, new: old,
    )


def _merge_model(existing: AgentModel, incoming: AgentModel) -> AgentModel:
    return overlay(
        existing,
        incoming,
        keep=("id", "id_field"),
        nested={"fields": merge_fields, "enums": merge_enums, "records": merge_records},
    )


def _new_model(item: AgentModel) -> AgentModel:
    item = with_id(item)
    updates: Dict[str, Any] = {}
    fields = [with_id(field) for field in item.fields]
    if any(new is not old for new, old in zip(fields, item.fields)):
        updates["fields"] = fields
    enums = [_new_enum(enum) for enum in item.enums]
    if any(new is not old for new, old in zip(enums, item.enums)):
        updates["enums"] = enums
    records = [with_id(record) for record in item.records]
    if any(new is not old for new, old in zip(records, item.records)):
        updates["records"] = records
    return item.model_copy(update=updates) if updates else item


def merge_models(existing: Sequence[AgentModel], incoming: Sequence[AgentModel]) -> List[AgentModel]:
    """Merge models by id then name and normalize every relation field."""
    logger.debug("Merging models: %s existing + %s incoming", len(existing), len(incoming))
    merged = merge_collection(
        existing,
        incoming,
        identity=match_by_id_then_name,
        merge_item=_merge_model,
        on_new=_new_model,
    )
    return [normalize_model(model) for model in merged]


def _merge_database(existing: Optional[DatabaseSource], incoming: Optional[DatabaseSource]) -> Optional[DatabaseSource]:
    if incoming is None or existing is None:
        return incoming if incoming is not None else existing
    models = merge_collection(
        existing.models,
        incoming.models,
        identity=match_by_id_then_name,
        merge_item=lambda old, new: overlay(old, new),
        on_new=lambda item: item,
    )
    return overlay(existing, DatabaseSource(models=models), keep=())


def _merge_data_source(existing: DataSource, incoming: DataSource) -> DataSource:
    return overlay(
        existing,
        incoming,
        keep=(),
        nested={"custom_function": merge_optional, "database": _merge_database},
    )


_AUTOMATION_NESTED = {
    "data_source": _merge_data_source,
    "execute": lambda old, new: overlay(
        old, new, keep=(), nested={"code": merge_optional, "prompt": merge_optional}
    ),
    "results": lambda old, new: overlay(old, new, keep=()),
}


def merge_action(existing: AgentAction, incoming: AgentAction) -> AgentAction:
    return overlay(existing, incoming, nested=_AUTOMATION_NESTED)


def merge_schedule(existing: AgentSchedule, incoming: AgentSchedule) -> AgentSchedule:
    nested = dict(_AUTOMATION_NESTED)
    nested["interval"] = lambda old, new: overlay(old, new, keep=())
    return overlay(existing, incoming, nested=nested)


def merge_actions(existing: Sequence[AgentAction], incoming: Sequence[AgentAction]) -> List[AgentAction]:
    logger.debug("Merging actions: %s existing + %s incoming", len(existing), len(incoming))
    return merge_collection(existing, incoming, identity=match_by_id, merge_item=merge_action)


def merge_schedules(existing: Sequence[AgentSchedule], incoming: Sequence[AgentSchedule]) -> List[AgentSchedule]:
    logger.debug("Merging schedules: %s existing + %s incoming", len(existing), len(incoming))
    return merge_collection(existing, incoming, identity=match_by_id, merge_item=merge_schedule)


# ---------------------------------------------------------------------------
# Safety guard
# ---------------------------------------------------------------------------


def guard_collection(
    collection: str,
    existing: Sequence[T],
    incoming: Sequence[T],
    merged: List[T],
) -> Tuple[List[T], Optional[MergeWarning]]:
    """Keep ``existing`` when an empty fragment would leave the collection empty.

    A warning is returned whenever the incoming collection is empty against a
    non-empty existing one, whether or not the merged result had to be
    replaced.
    """
    if not existing or incoming:
        return merged, None

    restored = not merged
    violation = MergeSafetyViolation(collection, len(existing), len(merged))
    if restored:
        message = f"Empty {collection} fragment would erase existing data; keeping {len(existing)} item(s)"
        merged = list(existing)
    else:
        message = f"Empty {collection} fragment received against {len(existing)} existing item(s)"
    logger.warning("%s (%s)", message, violation)
    warning = MergeWarning(
        collection=collection,
        message=message,
        existing_count=len(existing),
        incoming_count=0,
        merged_count=len(merged),
        restored=restored,
    )
    return merged, warning


__all__ = [
    "MergeWarning",
    "guard_collection",
    "match_by_id",
    "match_by_id_then_name",
    "match_field",
    "merge_action",
    "merge_actions",
    "merge_collection",
    "merge_enum_fields",
    "merge_enums",
    "merge_fields",
    "merge_models",
    "merge_optional",
    "merge_records",
    "merge_schedule",
    "merge_schedules",
    "overlay",
    "wire_value",
    "with_id",
]
