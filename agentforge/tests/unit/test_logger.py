"""Tests for the shared logging shim."""

from __future__ import annotations

import logging

from agentforge import logger


def test_log_appends_metadata(caplog) -> None:
    caplog.set_level(logging.INFO)

    logger.log("[builder]", "starting", document_id="doc-1")

    assert any("[builder] starting" in message for message in caplog.messages)
    assert any("doc-1" in message for message in caplog.messages)


def test_log_respects_level(caplog) -> None:
    caplog.set_level(logging.WARNING)

    logger.log("quiet")
    logger.log("loud", level=logging.WARNING)

    assert caplog.messages == ["loud"]
