"""The single boundary where untyped generator output becomes typed records.

Entities are validated one at a time. An invalid nested value is removed (a
scalar reverts to its default, a list entry is dropped) and the entity is
validated again; an entity that cannot be repaired is dropped whole. Every
removal is reported on ``Fragment.dropped``.
"""

from __future__ import annotations

import copy
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Type

from pydantic import BaseModel, ValidationError
from pydantic.alias_generators import to_camel

from ..documents.models import (
    AgentAction,
    AgentDocument,
    AgentEnum,
    AgentModel,
    AgentSchedule,
    DeletionOperations,
)
from ..documents.relations import ensure_id_field, normalize_model
from ..errors import GeneratorFailure

logger = logging.getLogger(__name__)

COLLECTIONS = ("models", "enums", "actions", "schedules")
ENTITY_TYPES: Dict[str, Type[BaseModel]] = {
    "models": AgentModel,
    "enums": AgentEnum,
    "actions": AgentAction,
    "schedules": AgentSchedule,
}
MAX_REPAIRS = 25
_DELETION_KEYS = ("deletions", "deletionOperations", "deletion_operations")
_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


@dataclass(slots=True)
class Fragment:
    """Sanitized output of one document-producing phase."""

    document: AgentDocument
    deletions: Optional[DeletionOperations] = None
    dropped: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not any(getattr(self.document, name) for name in COLLECTIONS)


def parse_payload(phase: str, raw: Any) -> Dict[str, Any]:
    """Accept a mapping or JSON text (optionally fenced); anything else is a failure."""
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, (str, bytes)):
        text = raw.decode("utf-8", "replace") if isinstance(raw, bytes) else raw
        text = text.strip()
        match = _FENCE.match(text)
        if match:
            text = match.group(1)
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            raise GeneratorFailure(phase, f"output is not valid JSON: {exc}") from exc
        if isinstance(parsed, dict):
            return parsed
        raise GeneratorFailure(phase, f"expected a JSON object, got {type(parsed).__name__}")
    raise GeneratorFailure(phase, f"unusable output of type {type(raw).__name__}")


def _describe(prefix: str, loc: Sequence[Any]) -> str:
    text = prefix
    for part in loc:
        text += f"[{part}]" if isinstance(part, int) else f".{part}"
    return text


def _resolve_key(container: Dict[str, Any], key: str) -> Optional[str]:
    if key in container:
        return key
    for candidate in container:
        if to_camel(candidate) == key:
            return candidate
    return None


def _prune(data: Dict[str, Any], error: Mapping[str, Any]) -> Optional[Tuple[Any, ...]]:
    """Remove the input behind ``error`` from ``data`` in place.

    Returns the removed location, or ``None`` when nothing below the entity
    itself can be removed.
    """
    loc = tuple(error.get("loc", ()))
    trail: List[Tuple[Any, Any]] = []
    node: Any = data
    for part in loc:
        if isinstance(part, int) and isinstance(node, list) and 0 <= part < len(node):
            trail.append((node, part))
            node = node[part]
        elif isinstance(part, str) and isinstance(node, dict):
            key = _resolve_key(node, part)
            if key is None:
                break
            trail.append((node, key))
            node = node[key]
        else:
            break

    if error.get("type") != "missing" and trail and len(trail) == len(loc) and isinstance(trail[-1][1], str):
        container, key = trail[-1]
        del container[key]
        return loc
    for depth in range(len(trail) - 1, -1, -1):
        container, key = trail[depth]
        if isinstance(key, int):
            del container[key]
            return loc[: depth + 1]
    return None


def _validate_with_repairs(
    model_cls: Type[BaseModel],
    data: Dict[str, Any],
    prefix: str,
    dropped: List[str],
) -> Optional[BaseModel]:
    for _ in range(MAX_REPAIRS):
        try:
            return model_cls.model_validate(data)
        except ValidationError as exc:
            removed = _prune(data, exc.errors()[0])
            if removed is None:
                return None
            dropped.append(_describe(prefix, removed))
    return None


def _clean_collection(phase: str, name: str, value: Any, dropped: List[str]) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        raise GeneratorFailure(phase, f"'{name}' must be a list, got {type(value).__name__}")
    entity_cls = ENTITY_TYPES[name]
    items: List[Dict[str, Any]] = []
    for index, item in enumerate(value):
        prefix = f"{name}[{index}]"
        if not (isinstance(item, Mapping) and isinstance(item.get("name"), str) and item["name"].strip()):
            dropped.append(prefix)
            continue
        data = dict(item)
        if _validate_with_repairs(entity_cls, data, prefix, dropped) is None:
            dropped.append(prefix)
            continue
        items.append(data)
    return items


def sanitize_fragment(phase: str, raw: Any) -> Fragment:
    payload = parse_payload(phase, raw)
    body = payload.get("document") if isinstance(payload.get("document"), Mapping) else payload
    body = copy.deepcopy(dict(body))

    deletions: Optional[DeletionOperations] = None
    for key in _DELETION_KEYS:
        value = payload.get(key, body.pop(key, None))
        if isinstance(value, Mapping):
            try:
                deletions = DeletionOperations.model_validate(value)
            except ValidationError as exc:
                raise GeneratorFailure(phase, f"invalid deletion operations: {exc}") from exc
            break

    dropped: List[str] = []
    for name in COLLECTIONS:
        if name not in body:
            continue
        if body[name] is None:
            body.pop(name)
            continue
        body[name] = _clean_collection(phase, name, body[name], dropped)

    document = _validate_with_repairs(AgentDocument, body, "document", dropped)
    if dropped:
        logger.warning("[%s] dropped malformed entries: %s", phase, ", ".join(dropped))
    if document is None:
        raise GeneratorFailure(phase, "fragment is not an agent document")

    if document.models:
        # Record-only fragments (example records) leave ``fields`` untouched.
        models = [
            normalize_model(ensure_id_field(model) if "fields" in model.model_fields_set else model)
            for model in document.models
        ]
        document = document.model_copy(update={"models": models})

    return Fragment(document=document, deletions=deletions, dropped=dropped)


def sanitize_analysis(phase: str, raw: Any) -> Dict[str, Any]:
    """Analysis phases only need to yield a JSON object."""
    return parse_payload(phase, raw)


__all__ = ["COLLECTIONS", "Fragment", "parse_payload", "sanitize_analysis", "sanitize_fragment"]
