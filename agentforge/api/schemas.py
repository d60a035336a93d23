"""Pydantic schemas for the build API."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BuildCreate(ApiModel):
    command: str = ""
    operation: Literal["create", "update", "extend", "resume"] = "create"
    context: Optional[str] = None
    document_id: Optional[str] = None

    @field_validator("command", mode="before")
    @classmethod
    def strip_command(cls, value: Any) -> str:
        return value.strip() if isinstance(value, str) else ""


class BuildAccepted(ApiModel):
    job_id: str
    document_id: str
    queue: str


class BuildStatusResponse(ApiModel):
    document_id: str
    title: str
    status: Optional[str] = None
    current_step: Optional[str] = None
    step_progress: Dict[str, str] = Field(default_factory=dict)
    step_messages: Dict[str, str] = Field(default_factory=dict)
    can_resume: bool = False
    last_complete_phase: Optional[str] = None
    percentage: float = 0.0
    counts: Dict[str, int] = Field(default_factory=dict)
    running: bool = False
    timed_out_at: Optional[str] = None
    updated_at: Optional[str] = None


class BuildEventRelay(ApiModel):
    """Payload workers post for every progress event."""

    job_id: Optional[str] = None
    event: Dict[str, Any]


class BuildEventAck(ApiModel):
    accepted: bool
    sequence: int
    run_id: str = ""
    cursor: Optional[int] = None


class BuildEventList(ApiModel):
    document_id: str
    events: List[Dict[str, Any]] = Field(default_factory=list)
