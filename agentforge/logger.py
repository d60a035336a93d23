"""Lightweight logging helper shared by the builder, generator and CLI."""

from __future__ import annotations

import logging
from typing import Any

_LOGGER = logging.getLogger("agentforge")


def _coerce(parts: tuple[object, ...]) -> str:
    rendered = " ".join(str(part) for part in parts if part is not None)
    return rendered.strip()


def log(*parts: object, level: int = logging.INFO, **metadata: Any) -> None:
    """
    Emit a status line through the ``agentforge`` logger.

    Callers prefix messages with a bracketed component tag such as
    ``[builder]`` or ``[openai]``. Keyword metadata (document ids, phase
    names) is appended to the message so it survives plain-text handlers.
    """

    message = _coerce(parts)
    if metadata:
        message = f"{message} | {metadata}"

    if not _LOGGER.handlers and not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO)

    _LOGGER.log(level, message)


__all__ = ["log"]
