"""Repository-wide pytest fixtures."""

from __future__ import annotations

from collections.abc import Generator

import pytest

from agentforge.api.event_log import get_event_log
from agentforge.config import reload_config
from agentforge.persistence import set_document_store


@pytest.fixture(autouse=True)
def _set_default_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep builds offline with an in-memory store and no relay, lock or credentials."""

    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("DOCUMENT_STORE_BACKEND", "memory")
    monkeypatch.setenv("OPENAI_CLIENT", "openai")
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("RELAY_BUILD_EVENTS", "false")
    monkeypatch.setenv("GENERATOR_BACKOFF_SECONDS", "0")
    monkeypatch.setenv("BUILD_LOCK_ENABLED", "false")
    monkeypatch.delenv("API_BASE_URL", raising=False)
    reload_config()
    set_document_store(None)
    get_event_log().reset()
    yield
    set_document_store(None)
    get_event_log().reset()
    monkeypatch.undo()
    reload_config()
