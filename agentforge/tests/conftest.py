"""Fixtures shared by the build pipeline tests."""

from __future__ import annotations

from typing import Any, Dict

import pytest

from agentforge.persistence import InMemoryDocumentStore, set_document_store


def phase_outputs() -> Dict[str, Any]:
    """Canned generator output for a complete first build."""

    return {
        "prompt-understanding": {"userRequestAnalysis": {"mainGoal": "Run a small bakery"}},
        "decision-analysis": {
            "needsFullAgent": True,
            "needsDatabase": True,
            "needsActions": True,
            "needsSchedules": True,
            "operation": "create",
        },
        "overview": {"name": "Bakery Manager", "description": "Orders and baking plans", "domain": "food"},
        "database-generation": {
            "models": [
                {
                    "name": "Customer",
                    "fields": [{"name": "name", "type": "String", "required": True}],
                },
                {
                    "name": "Order",
                    "fields": [
                        {"name": "total", "type": "Float"},
                        {"name": "customerId", "type": "String", "relationField": True},
                    ],
                },
            ]
        },
        "example-records": {"models": [{"name": "Customer", "records": [{"data": {"name": "Ada"}}]}]},
        "action-generation": {
            "actions": [
                {"name": "Create order", "type": "Create", "results": {"actionType": "Create", "model": "Order"}},
                {"name": "Summarize day", "type": "Create", "results": {"model": "Order"}},
            ]
        },
        "execution-detail": {
            "byAction": {
                "Create order": {"execute": {"type": "code", "code": {"script": "return {'total': 1}"}}},
                "Summarize day": {"execute": {"type": "prompt", "prompt": {"template": "Summarize {{orders}}"}}},
            }
        },
        "schedule-generation": {
            "schedules": [
                {
                    "name": "Morning bake list",
                    "execute": {"type": "prompt", "prompt": {"template": "List today's bakes"}},
                    "interval": {"pattern": "0 6 * * *", "timezone": "UTC"},
                }
            ]
        },
    }


@pytest.fixture
def outputs() -> Dict[str, Any]:
    return phase_outputs()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    memory_store = InMemoryDocumentStore()
    set_document_store(memory_store)
    return memory_store
