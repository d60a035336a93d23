"""Typed records for agent documents and their entities.

Every record is a pydantic model with camelCase wire aliases so persisted
JSON keeps the shape the rest of the platform reads (``isId``,
``relationField``, ``dataSource``...). Values provided explicitly on input are
tracked by pydantic's ``model_fields_set``; the merge engine uses that set to
tell "incoming omitted this key" apart from "incoming set it to the default".
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class WireModel(BaseModel):
    """Base for records exchanged with generators and the document store."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        protected_namespaces=(),
    )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


def _coerce_choice(value: Any, choices: Dict[str, str], default: str) -> str:
    if not isinstance(value, str):
        return default
    return choices.get(value.strip().lower(), default)


# ---------------------------------------------------------------------------
# Models, fields and enums
# ---------------------------------------------------------------------------


class ModelField(WireModel):
    id: Optional[str] = None
    name: str
    type: str = "String"
    is_id: bool = False
    unique: bool = False
    is_list: bool = Field(default=False, alias="list")
    required: bool = False
    kind: Literal["scalar", "object", "enum"] = "scalar"
    relation_field: bool = False
    title: str = ""
    sort: bool = False
    order: int = 0
    default_value: Optional[Any] = None

    @field_validator("kind", mode="before")
    @classmethod
    def normalize_kind(cls, value: Any) -> str:
        return _coerce_choice(value, {"scalar": "scalar", "object": "object", "enum": "enum"}, "scalar")

    @field_validator("type", mode="before")
    @classmethod
    def default_type(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            return "String"
        return value.strip()


class EnumField(WireModel):
    id: Optional[str] = None
    name: str
    type: str = "String"
    default_value: Optional[str] = None


class AgentEnum(WireModel):
    id: Optional[str] = None
    name: str
    fields: List[EnumField] = Field(default_factory=list)


class ModelRecord(WireModel):
    id: Optional[str] = None
    model_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class AgentModel(WireModel):
    id: Optional[str] = None
    name: str
    emoji: Optional[str] = None
    description: Optional[str] = None
    id_field: str = "id"
    display_fields: List[str] = Field(default_factory=list)
    fields: List[ModelField] = Field(default_factory=list)
    enums: List[AgentEnum] = Field(default_factory=list)
    records: List[ModelRecord] = Field(default_factory=list)

    @field_validator("id_field", mode="before")
    @classmethod
    def force_id_field(cls, value: Any) -> str:
        return "id"


# ---------------------------------------------------------------------------
# Actions and schedules
# ---------------------------------------------------------------------------


class EnvVar(WireModel):
    name: str
    description: str = ""
    required: bool = False
    sensitive: bool = False


class CustomFunction(WireModel):
    code: str = ""
    env_vars: List[EnvVar] = Field(default_factory=list)


class DatabaseField(WireModel):
    id: Optional[str] = None
    name: str


class DatabaseModel(WireModel):
    id: Optional[str] = None
    name: str
    fields: List[DatabaseField] = Field(default_factory=list)
    where: Optional[Dict[str, Any]] = None
    limit: Optional[int] = None


class DatabaseSource(WireModel):
    models: List[DatabaseModel] = Field(default_factory=list)


class DataSource(WireModel):
    type: Literal["custom", "database"] = "custom"
    custom_function: Optional[CustomFunction] = None
    database: Optional[DatabaseSource] = None

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value: Any) -> str:
        return _coerce_choice(value, {"custom": "custom", "database": "database"}, "custom")


class CodeBlock(WireModel):
    script: str = ""
    env_vars: List[EnvVar] = Field(default_factory=list)


class PromptBlock(WireModel):
    template: str = ""
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


class Execute(WireModel):
    type: Literal["code", "prompt"] = "code"
    code: Optional[CodeBlock] = None
    prompt: Optional[PromptBlock] = None

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value: Any) -> str:
        return _coerce_choice(value, {"code": "code", "prompt": "prompt"}, "code")


_OPERATION_TYPES = {"create": "Create", "update": "Update"}


class Results(WireModel):
    action_type: Literal["Create", "Update"] = "Create"
    model: str = ""
    identifier_ids: Optional[List[str]] = None
    fields: Optional[Dict[str, Any]] = None
    fields_to_update: Optional[Dict[str, Any]] = None

    @field_validator("action_type", mode="before")
    @classmethod
    def normalize_action_type(cls, value: Any) -> str:
        return _coerce_choice(value, _OPERATION_TYPES, "Create")


class Interval(WireModel):
    pattern: str = ""
    timezone: Optional[str] = None
    active: Optional[bool] = None


class AutomationBase(WireModel):
    id: Optional[str] = None
    name: str
    emoji: Optional[str] = None
    description: str = ""
    type: Literal["Create", "Update"] = "Create"
    role: Literal["admin", "member"] = "member"
    data_source: DataSource = Field(default_factory=DataSource)
    execute: Execute = Field(default_factory=Execute)
    results: Results = Field(default_factory=Results)

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value: Any) -> str:
        return _coerce_choice(value, _OPERATION_TYPES, "Create")

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, value: Any) -> str:
        return _coerce_choice(value, {"admin": "admin", "member": "member"}, "member")


class AgentAction(AutomationBase):
    pass


class AgentSchedule(AutomationBase):
    interval: Interval = Field(default_factory=Interval)


# ---------------------------------------------------------------------------
# Document root
# ---------------------------------------------------------------------------


_METADATA_KEYS = {
    "version",
    "createdAt",
    "created_at",
    "updatedAt",
    "updated_at",
    "operationType",
    "operation_type",
    "lastModifiedBy",
    "last_modified_by",
    "status",
    "analysis",
}


class DocumentMetadata(WireModel):
    """Build provenance kept alongside the document content."""

    version: int = 1
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    operation_type: Optional[str] = None
    last_modified_by: Optional[str] = None
    status: Optional[str] = None
    analysis: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def fold_payloads_into_analysis(cls, data: Any) -> Any:
        # Older documents keep analysis payloads (promptUnderstanding,
        # aiDecision...) at the top level of metadata.
        if not isinstance(data, dict):
            return data
        extras = {key: value for key, value in data.items() if key not in _METADATA_KEYS}
        if not extras:
            return data
        folded = {key: value for key, value in data.items() if key in _METADATA_KEYS}
        analysis = dict(folded.get("analysis") or {})
        for key, value in extras.items():
            analysis.setdefault(key, value)
        folded["analysis"] = analysis
        return folded

    @field_validator("version", mode="before")
    @classmethod
    def coerce_version(cls, value: Any) -> int:
        # Legacy metadata stored semantic versions such as "1.0.0".
        if isinstance(value, int) and value > 0:
            return value
        if isinstance(value, str):
            head = value.strip().split(".", 1)[0]
            if head.isdigit() and int(head) > 0:
                return int(head)
        return 1


class AgentDocument(WireModel):
    id: str = Field(default_factory=new_id)
    name: str = ""
    description: str = ""
    domain: str = ""
    models: List[AgentModel] = Field(default_factory=list)
    enums: List[AgentEnum] = Field(default_factory=list)
    actions: List[AgentAction] = Field(default_factory=list)
    schedules: List[AgentSchedule] = Field(default_factory=list)
    created_at: Optional[str] = None
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)

    @classmethod
    def new(cls, document_id: Optional[str] = None, **values: Any) -> "AgentDocument":
        """Start an empty document with identity and creation time fixed."""
        created = utcnow_iso()
        document = cls(
            id=document_id or new_id(),
            created_at=created,
            metadata=DocumentMetadata(created_at=created, updated_at=created, operation_type="create"),
            **values,
        )
        return document

    def is_empty(self) -> bool:
        return not (self.models or self.actions or self.schedules)

    def provided(self, collection: str) -> bool:
        """Whether ``collection`` was explicitly present on input."""
        return collection in self.model_fields_set


class DeletionOperations(WireModel):
    models_to_delete: List[str] = Field(default_factory=list)
    enums_to_delete: List[str] = Field(default_factory=list)
    actions_to_delete: List[str] = Field(default_factory=list)
    schedules_to_delete: List[str] = Field(default_factory=list)
    field_deletions: Dict[str, List[str]] = Field(default_factory=dict)
    enum_deletions: Dict[str, List[str]] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (
            self.models_to_delete
            or self.enums_to_delete
            or self.actions_to_delete
            or self.schedules_to_delete
            or any(self.field_deletions.values())
            or any(self.enum_deletions.values())
        )


__all__ = [
    "AgentAction",
    "AgentDocument",
    "AgentEnum",
    "AgentModel",
    "AgentSchedule",
    "AutomationBase",
    "CodeBlock",
    "CustomFunction",
    "DataSource",
    "DatabaseField",
    "DatabaseModel",
    "DatabaseSource",
    "DeletionOperations",
    "DocumentMetadata",
    "EnumField",
    "EnvVar",
    "Execute",
    "Interval",
    "ModelField",
    "ModelRecord",
    "PromptBlock",
    "Results",
    "WireModel",
    "new_id",
    "utcnow_iso",
]
