"""Structural checks and quality scoring for finished documents."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

from .models import AgentDocument, AutomationBase
from .relations import is_primitive

QUALITY_WEIGHTS = {"validation": 40, "completeness": 30, "consistency": 20, "performance": 10}


@dataclass(slots=True)
class ValidationReport:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    checks: Dict[str, bool] = field(default_factory=dict)

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, object]:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "checks": dict(self.checks),
        }


def _is_executable(item: AutomationBase) -> bool:
    execute = item.execute
    if execute.type == "prompt":
        return execute.prompt is not None and bool(execute.prompt.template.strip())
    return execute.code is not None and bool(execute.code.script.strip())


def validate_document(document: AgentDocument) -> ValidationReport:
    report = ValidationReport()
    errors = report.errors

    report.checks["name"] = bool(document.name.strip())
    if not report.checks["name"]:
        errors.append("Agent name is required")

    report.checks["description"] = bool(document.description.strip())
    if not report.checks["description"]:
        errors.append("Agent description is required")

    report.checks["models"] = bool(document.models)
    if not document.models:
        errors.append("At least one model is required")

    report.checks["actions"] = bool(document.actions)
    if not document.actions:
        errors.append("At least one action is required")

    models_ok = True
    for index, model in enumerate(document.models, start=1):
        if not model.name.strip():
            errors.append(f"Model {index} is missing a name")
            models_ok = False
        if not model.fields:
            errors.append(f'Model "{model.name}" has no fields')
            models_ok = False
    report.checks["model_fields"] = models_ok

    actions_ok = True
    for index, action in enumerate(document.actions, start=1):
        if not action.name.strip():
            errors.append(f"Action {index} is missing a name")
            actions_ok = False
        if not _is_executable(action):
            errors.append(f'Action "{action.name}" is missing execute configuration')
            actions_ok = False
    report.checks["action_execute"] = actions_ok

    schedules_ok = True
    for index, schedule in enumerate(document.schedules, start=1):
        if not schedule.name.strip():
            errors.append(f"Schedule {index} is missing a name")
            schedules_ok = False
        if not _is_executable(schedule):
            errors.append(f'Schedule "{schedule.name}" is missing execute configuration')
            schedules_ok = False
        if not schedule.interval.pattern.strip():
            errors.append(f'Schedule "{schedule.name}" is missing interval configuration')
            schedules_ok = False
    report.checks["schedules"] = schedules_ok

    model_names = {model.name for model in document.models}
    for model in document.models:
        for model_field in model.fields:
            if model_field.relation_field and (
                is_primitive(model_field.type) or model_field.type not in model_names
            ):
                report.warnings.append(
                    f'Relation field "{model.name}.{model_field.name}" targets unknown model "{model_field.type}"'
                )
    for item in [*document.actions, *document.schedules]:
        target = item.results.model
        if target and target not in model_names:
            report.warnings.append(f'"{item.name}" writes to unknown model "{target}"')

    return report


def database_consistent(document: AgentDocument) -> bool:
    names = {model.name for model in document.models}
    return all(
        model_field.type in names
        for model in document.models
        for model_field in model.fields
        if model_field.relation_field
    )


def automations_consistent(document: AgentDocument) -> bool:
    names = {model.name for model in document.models}
    return all(
        not item.results.model or item.results.model in names
        for item in [*document.actions, *document.schedules]
    )


def quality_score(
    document: AgentDocument,
    report: ValidationReport,
    *,
    duration_seconds: float = 0.0,
    retry_count: int = 0,
) -> int:
    """Weighted 0-100 score over validation, completeness, consistency and run cost."""
    checks = report.checks or {"valid": report.valid}
    validation = sum(1 for passed in checks.values() if passed) / len(checks) * QUALITY_WEIGHTS["validation"]

    present = sum(1 for collection in (document.models, document.actions, document.schedules) if collection)
    completeness = present / 3 * QUALITY_WEIGHTS["completeness"]

    consistent = int(database_consistent(document)) + int(automations_consistent(document))
    consistency = consistent / 2 * QUALITY_WEIGHTS["consistency"]

    performance = QUALITY_WEIGHTS["performance"]
    if duration_seconds > 30:
        performance -= 5
    performance = max(0, performance - retry_count * 5)

    return round(validation + completeness + consistency + performance)


__all__ = [
    "QUALITY_WEIGHTS",
    "ValidationReport",
    "automations_consistent",
    "database_consistent",
    "quality_score",
    "validate_document",
]
