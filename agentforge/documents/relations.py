"""Relation-field normalization.

A relation field references another model. Generators routinely get the
shape slightly wrong (primitive ``type``, singular names on list relations,
missing defaults); these helpers rewrite fields into the canonical form and
are safe to apply any number of times.
"""

from __future__ import annotations

from typing import List

from .models import AgentDocument, AgentModel, ModelField

PRIMITIVE_TYPES = frozenset({"String", "Int", "Float", "Boolean", "DateTime", "Json", "Decimal", "BigInt"})

_ID_SUFFIXES = ("Ids", "ids", "Id", "id")


def is_primitive(type_name: str) -> bool:
    return type_name in PRIMITIVE_TYPES


def target_type_from_name(field_name: str) -> str:
    """``userId`` -> ``User``; ``orderItemIds`` -> ``OrderItem``."""
    stem = field_name
    for suffix in _ID_SUFFIXES:
        if stem.endswith(suffix) and len(stem) > len(suffix):
            stem = stem[: -len(suffix)]
            break
    if not stem:
        return field_name
    return stem[0].upper() + stem[1:]


def pluralize_relation_name(field_name: str) -> str:
    if field_name.endswith(("Ids", "ids")):
        return field_name
    if field_name.endswith(("Id", "id")):
        return f"{field_name}s"
    return f"{field_name}Ids"


def normalize_relation_field(field: ModelField) -> ModelField:
    """Return ``field`` in canonical relation form.

    Non-relation fields and fields already in canonical form are returned as
    the same object.
    """
    if not field.relation_field or field.is_id:
        return field

    updates = {}
    if field.kind != "object":
        updates["kind"] = "object"
    if is_primitive(field.type):
        derived = target_type_from_name(field.name)
        if derived and derived != field.type:
            updates["type"] = derived
    if field.is_list:
        plural = pluralize_relation_name(field.name)
        if plural != field.name:
            updates["name"] = plural
        if field.default_value is None:
            updates["default_value"] = []

    if not updates:
        return field
    return field.model_copy(update=updates)


def normalize_model(model: AgentModel) -> AgentModel:
    fields: List[ModelField] = [normalize_relation_field(field) for field in model.fields]
    if all(new is old for new, old in zip(fields, model.fields)):
        return model
    return model.model_copy(update={"fields": fields})


def ensure_id_field(model: AgentModel) -> AgentModel:
    """Guarantee exactly one ``id`` field flagged ``isId`` on ``model``.

    A synthesized field carries no ``id`` of its own so the merge can match it
    by name against an existing identifier field.
    """
    fields: List[ModelField] = []
    found = False
    for field in model.fields:
        if field.name == "id" and not found:
            found = True
            if not field.is_id:
                field = field.model_copy(update={"is_id": True, "unique": True, "required": True})
        elif field.is_id:
            field = field.model_copy(update={"is_id": False})
        fields.append(field)
    if not found:
        fields.insert(
            0,
            ModelField(
                name="id",
                type="String",
                is_id=True,
                unique=True,
                required=True,
                title="ID",
            ),
        )
    if len(fields) == len(model.fields) and all(new is old for new, old in zip(fields, model.fields)):
        return model
    return model.model_copy(update={"fields": fields})


def normalize_document(document: AgentDocument) -> AgentDocument:
    models = [normalize_model(model) for model in document.models]
    if all(new is old for new, old in zip(models, document.models)):
        return document
    return document.model_copy(update={"models": models})


__all__ = [
    "PRIMITIVE_TYPES",
    "ensure_id_field",
    "is_primitive",
    "normalize_document",
    "normalize_model",
    "normalize_relation_field",
    "pluralize_relation_name",
    "target_type_from_name",
]
