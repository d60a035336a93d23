"""Tests for the generator output boundary."""

from __future__ import annotations

import pytest

from agentforge.errors import GeneratorFailure
from agentforge.generation.sanitize import parse_payload, sanitize_analysis, sanitize_fragment


def test_parse_payload_accepts_fenced_json() -> None:
    raw = '```json\n{"name": "Shop"}\n```'

    assert parse_payload("overview", raw) == {"name": "Shop"}


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", 42, None])
def test_parse_payload_rejects_unusable_output(raw) -> None:
    with pytest.raises(GeneratorFailure) as excinfo:
        parse_payload("overview", raw)
    assert excinfo.value.phase == "overview"


def test_sanitize_fragment_normalizes_models() -> None:
    fragment = sanitize_fragment(
        "database-generation",
        {
            "models": [
                {
                    "name": "Order",
                    "idField": "orderNumber",
                    "fields": [{"name": "itemId", "type": "String", "relationField": True, "list": True}],
                }
            ]
        },
    )

    model = fragment.document.models[0]
    assert model.id_field == "id"
    assert [field.name for field in model.fields] == ["id", "itemIds"]
    assert model.fields[1].type == "Item"
    assert model.fields[1].default_value == []


def test_sanitize_fragment_leaves_record_only_models_alone() -> None:
    fragment = sanitize_fragment("example-records", {"models": [{"name": "Order", "records": [{"data": {"a": 1}}]}]})

    model = fragment.document.models[0]
    assert model.fields == []
    assert "fields" not in model.model_fields_set


def test_sanitize_fragment_unwraps_document_and_extracts_deletions() -> None:
    fragment = sanitize_fragment(
        "database-generation",
        {"document": {"models": [{"name": "Order"}]}, "deletionOperations": {"modelsToDelete": ["Cart"]}},
    )

    assert fragment.document.models[0].name == "Order"
    assert fragment.deletions.models_to_delete == ["Cart"]


def test_sanitize_fragment_drops_entries_without_names() -> None:
    fragment = sanitize_fragment("action-generation", {"actions": [{"name": "Ship"}, {"description": "?"}, "junk"]})

    assert [action.name for action in fragment.document.actions] == ["Ship"]
    assert fragment.dropped == ["actions[1]", "actions[2]"]


def test_sanitize_fragment_treats_null_collections_as_omitted() -> None:
    fragment = sanitize_fragment("schedule-generation", {"schedules": None})

    assert not fragment.document.provided("schedules")
    assert fragment.is_empty()


def test_sanitize_fragment_rejects_non_list_collections() -> None:
    with pytest.raises(GeneratorFailure):
        sanitize_fragment("action-generation", {"actions": {"name": "Ship"}})


def test_sanitize_analysis_returns_the_object() -> None:
    assert sanitize_analysis("decision-analysis", '{"needsDatabase": true}') == {"needsDatabase": True}


def test_sanitize_fragment_drops_only_the_invalid_field() -> None:
    fragment = sanitize_fragment(
        "database-generation",
        {"models": [{"name": "User", "fields": [{"name": "email"}, {"type": "String"}]}, {"name": "Order"}]},
    )

    assert [model.name for model in fragment.document.models] == ["User", "Order"]
    assert [field.name for field in fragment.document.models[0].fields] == ["id", "email"]
    assert fragment.dropped == ["models[0].fields[1]"]


def test_sanitize_fragment_resets_unreadable_nested_values() -> None:
    action = {
        "name": "Sync orders",
        "dataSource": {"type": "database", "database": {"models": [{"name": "Order", "limit": "ten"}]}},
    }

    fragment = sanitize_fragment("action-generation", {"actions": [action, {"name": "Ship"}]})

    source = fragment.document.actions[0].data_source.database.models[0]
    assert source.name == "Order"
    assert source.limit is None
    assert [item.name for item in fragment.document.actions] == ["Sync orders", "Ship"]
    assert fragment.dropped == ["actions[0].dataSource.database.models[0].limit"]
    assert action["dataSource"]["database"]["models"][0]["limit"] == "ten"


def test_sanitize_fragment_keeps_document_when_a_scalar_is_unreadable() -> None:
    fragment = sanitize_fragment("overview", {"name": ["not", "a", "name"], "description": "Orders"})

    assert fragment.document.name == ""
    assert fragment.document.description == "Orders"
    assert fragment.dropped == ["document.name"]
