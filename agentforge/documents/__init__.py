"""Agent documents: typed records, relation normalization, merging and deletions."""

from .coordinator import ChangeSummary, ReconcileResult, has_changes, reconcile, reconcile_with_report
from .deletions import DeletionReport, apply_deletions
from .merging import MergeWarning, merge_collection
from .models import (
    AgentAction,
    AgentDocument,
    AgentEnum,
    AgentModel,
    AgentSchedule,
    DeletionOperations,
    DocumentMetadata,
    EnumField,
    ModelField,
    ModelRecord,
)
from .relations import normalize_relation_field
from .validation import ValidationReport, quality_score, validate_document

__all__ = [
    "AgentAction",
    "AgentDocument",
    "AgentEnum",
    "AgentModel",
    "AgentSchedule",
    "ChangeSummary",
    "DeletionOperations",
    "DeletionReport",
    "DocumentMetadata",
    "EnumField",
    "MergeWarning",
    "ModelField",
    "ModelRecord",
    "ReconcileResult",
    "ValidationReport",
    "apply_deletions",
    "has_changes",
    "merge_collection",
    "normalize_relation_field",
    "quality_score",
    "reconcile",
    "reconcile_with_report",
    "validate_document",
]
