"""Unit tests for the typed document records."""

from __future__ import annotations

from agentforge.documents.models import AgentDocument, AgentModel, DocumentMetadata, ModelField


def test_fields_round_trip_with_camel_case_aliases() -> None:
    field = ModelField.model_validate({"name": "tags", "list": True, "isId": False, "relationField": True})

    wire = field.to_wire()

    assert field.is_list is True
    assert wire["list"] is True
    assert wire["relationField"] is True
    assert "is_list" not in wire


def test_unknown_choices_fall_back_to_defaults() -> None:
    field = ModelField.model_validate({"name": "x", "kind": "Relation", "type": ""})

    assert field.kind == "scalar"
    assert field.type == "String"


def test_model_id_field_is_always_id() -> None:
    model = AgentModel.model_validate({"name": "User", "idField": "uuid"})

    assert model.id_field == "id"


def test_metadata_folds_legacy_payloads_into_analysis() -> None:
    metadata = DocumentMetadata.model_validate(
        {"version": "1.0.0", "promptUnderstanding": {"mainGoal": "x"}, "analysis": {"decision": {}}}
    )

    assert metadata.version == 1
    assert metadata.analysis == {"decision": {}, "promptUnderstanding": {"mainGoal": "x"}}


def test_new_document_has_identity_and_creation_time() -> None:
    document = AgentDocument.new("doc-7")

    assert document.id == "doc-7"
    assert document.created_at == document.metadata.created_at
    assert document.is_empty()
    assert not document.provided("models")


def test_provided_tracks_explicit_collections() -> None:
    document = AgentDocument.model_validate({"models": []})

    assert document.provided("models")
    assert not document.provided("actions")
