"""Tests for the OpenAI-backed generator and client selection."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from agentforge.generation import openai_client, openai_generator
from agentforge.generation.openai_generator import OpenAIGenerator, build_user_prompt


def test_build_user_prompt_includes_context_sections() -> None:
    prompt = build_user_prompt(
        "execution-detail",
        {"request": "ship orders", "operation": "update", "phaseOutputs": {"overview": {}}, "action": {"name": "Ship"}},
        {"name": "Shop"},
    )

    assert "Phase: execution-detail" in prompt
    assert "Request:\nship orders" in prompt
    assert "Action to implement" in prompt
    assert "Existing agent" in prompt


def test_generator_calls_model_and_records_metrics(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = {}

    def fake_call(*, model, system_prompt, user_prompt, temperature):
        captured["model"] = model
        captured["prompt"] = user_prompt
        return '{"name": "Shop"}', {"total_tokens": 12}

    monkeypatch.setattr(openai_generator, "call_json_response", fake_call)
    generator = OpenAIGenerator(model="gpt-4o-mini")

    text = asyncio.run(generator("overview", {"request": "shop"}, None))

    assert text == '{"name": "Shop"}'
    assert captured["model"] == "gpt-4o-mini"
    assert generator.metrics == [{"total_tokens": 12, "phase": "overview"}]


def test_call_json_response_uses_responses_api(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = {}

    class FakeResponses:
        def create(self, **kwargs):
            calls.update(kwargs)
            usage = SimpleNamespace(input_tokens=100, output_tokens=50, total_tokens=150, input_tokens_details=None)
            return SimpleNamespace(output_text=' {"ok": true} ', usage=usage)

    monkeypatch.setattr(openai_client, "openai_client", lambda: SimpleNamespace(responses=FakeResponses()))

    text, metrics = openai_client.call_json_response(
        model="gpt-5-mini", system_prompt="sys", user_prompt="hello", temperature=0.2
    )

    assert text == '{"ok": true}'
    assert calls["text"] == {"format": {"type": "json_object"}}
    assert calls["reasoning"] == {"effort": "low"}
    assert "temperature" not in calls
    assert metrics["total_tokens"] == 150
    assert metrics["estimated_cost_usd"] > 0


def test_client_selection_prefers_openai_when_requested(monkeypatch: pytest.MonkeyPatch) -> None:
    created = {}

    class FakeOpenAI:
        def __init__(self, api_key):
            created["api_key"] = api_key

    openai_client.reset_client()
    monkeypatch.setattr(openai_client, "OpenAI", FakeOpenAI)
    monkeypatch.setenv("OPENAI_CLIENT", "openai")
    monkeypatch.setenv("AZURE_OPENAI_ENDPOINT", "https://example.azure.com")
    monkeypatch.setenv("AZURE_OPENAI_API_KEY", "azure-key")

    client = openai_client.openai_client()

    assert isinstance(client, FakeOpenAI)
    assert created["api_key"] == "test-key"
    openai_client.reset_client()


def test_azure_requested_without_credentials_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    openai_client.reset_client()
    monkeypatch.setenv("OPENAI_CLIENT", "azure")
    monkeypatch.delenv("AZURE_OPENAI_ENDPOINT", raising=False)
    monkeypatch.delenv("AZURE_OPENAI_API_KEY", raising=False)

    with pytest.raises(RuntimeError):
        openai_client.openai_client()
    openai_client.reset_client()
