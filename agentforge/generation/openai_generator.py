"""Generator backed by the OpenAI Responses API."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Mapping, Optional

from ..config import CONFIG
from ..logger import log
from .openai_client import call_json_response

BASE_SYSTEM_PROMPT = (
    "You design business automation agents. An agent is a JSON document with "
    "data models, enums, actions and schedules. Always answer with a single JSON "
    "object and nothing else. Reuse the ids of existing entities when you change "
    "them; omit collections you are not changing."
)

PHASE_INSTRUCTIONS: Dict[str, str] = {
    "prompt-understanding": (
        "Summarize the request as JSON with keys: userRequestAnalysis "
        "(mainGoal, businessContext, complexity), featureImagination (coreFeatures, "
        "userExperience), dataModelingNeeds (requiredModels: [{name, purpose}]), "
        "workflowAutomationNeeds (requiredActions: [{name, purpose}], "
        "scheduledTasks: [{name, frequency}])."
    ),
    "decision-analysis": (
        "Decide what must be built. JSON keys: needsFullAgent, needsDatabase, "
        "needsActions, needsSchedules, needsExecutionDetail (booleans), "
        "operation (create|update|extend), reasoning."
    ),
    "change-analysis": (
        "Compare the request with the existing agent. JSON keys: changes "
        "[{type, target, description}], expectedResult {newItems: {models, actions, "
        "schedules} as counts}, deletionOperations {modelsToDelete, actionsToDelete, "
        "schedulesToDelete, fieldDeletions}."
    ),
    "overview": "Return {name, description, domain} for the agent.",
    "database-generation": (
        "Return {models: [...], enums: [...]} . Each model has name, emoji, "
        "description, idField 'id', displayFields and fields [{name, type, isId, "
        "unique, list, required, kind, relationField, title, sort, order, "
        "defaultValue}]. Relation fields use kind 'object', relationField true and "
        "the target model name as type. Optionally include deletionOperations."
    ),
    "example-records": (
        "Return {models: [{id, name, records: [{data}]}]} with two or three realistic "
        "example records for each model."
    ),
    "action-generation": (
        "Return {actions: [...]} . Each action has name, emoji, description, type "
        "(Create|Update), role (admin|member), dataSource {type custom|database, "
        "database {models [{name, fields [{name}]}]}}, execute {type code|prompt}, "
        "results {actionType, model, fields}."
    ),
    "execution-detail": (
        "Return {actions: [{id, execute: {type, code: {script, envVars}} or "
        "{type, prompt: {template}}}]} implementing the given action."
    ),
    "schedule-generation": (
        "Return {schedules: [...]} shaped like actions plus interval {pattern "
        "(cron), timezone, active}."
    ),
}


def build_user_prompt(phase: str, context: Mapping[str, Any], existing: Optional[Mapping[str, Any]]) -> str:
    sections: List[str] = [
        f"Phase: {phase}",
        PHASE_INSTRUCTIONS.get(phase, "Return a JSON object."),
        f"Request:\n{context.get('request', '')}",
        f"Operation: {context.get('operation', 'create')}",
    ]
    outputs = context.get("phaseOutputs") or {}
    if outputs:
        sections.append("Earlier analysis (JSON):\n" + json.dumps(outputs, default=str))
    if context.get("action"):
        sections.append("Action to implement (JSON):\n" + json.dumps(context["action"], default=str))
    if existing:
        sections.append("Existing agent (JSON):\n" + json.dumps(existing, default=str))
    return "\n\n".join(sections)


class OpenAIGenerator:
    """Calls the configured model once per phase and returns its JSON text."""

    def __init__(
        self,
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        system_prompt: Optional[str] = None,
    ) -> None:
        self.model = model or CONFIG.generator_model
        self.temperature = CONFIG.generator_temperature if temperature is None else temperature
        self.system_prompt = system_prompt or CONFIG.generator_system_prompt or BASE_SYSTEM_PROMPT
        self.metrics: List[Dict[str, Any]] = []

    async def __call__(
        self,
        phase: str,
        context: Mapping[str, Any],
        existing: Optional[Mapping[str, Any]],
    ) -> str:
        prompt = build_user_prompt(phase, context, existing)
        text, metrics = await asyncio.to_thread(
            call_json_response,
            model=self.model,
            system_prompt=self.system_prompt,
            user_prompt=prompt,
            temperature=self.temperature,
        )
        metrics["phase"] = phase
        self.metrics.append(metrics)
        log("[generator] phase output received", phase=phase, chars=len(text))
        return text


__all__ = ["BASE_SYSTEM_PROMPT", "OpenAIGenerator", "PHASE_INSTRUCTIONS", "build_user_prompt"]
