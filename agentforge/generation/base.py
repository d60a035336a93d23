"""Generator collaborator contract."""

from __future__ import annotations

import copy
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Union


class Generator(Protocol):
    """Produces the raw output of one phase.

    ``context`` carries the request text, the operation, prior phase outputs
    and (for per-action calls) the action being detailed. ``existing`` is the
    serialized document the phase builds on, or ``None`` on a first build.
    The returned value is a mapping or JSON text; it is sanitized by the caller.
    """

    async def __call__(
        self,
        phase: str,
        context: Mapping[str, Any],
        existing: Optional[Mapping[str, Any]],
    ) -> Union[Mapping[str, Any], str]:
        ...


class FixtureGenerator:
    """Replays canned outputs per phase.

    A phase may map to one output or to a list consumed call by call (the last
    entry repeats). ``execution-detail`` outputs may also be keyed by action
    name under ``{"byAction": {...}}``. Useful for offline CLI runs and tests.
    """

    def __init__(self, outputs: Mapping[str, Any]) -> None:
        self._outputs: Dict[str, Any] = dict(outputs)
        self._positions: Dict[str, int] = {}
        self.calls: List[tuple[str, Dict[str, Any]]] = []

    @classmethod
    def from_phases(cls, pairs: Iterable[tuple[str, Any]]) -> "FixtureGenerator":
        return cls(dict(pairs))

    async def __call__(
        self,
        phase: str,
        context: Mapping[str, Any],
        existing: Optional[Mapping[str, Any]],
    ) -> Union[Mapping[str, Any], str]:
        self.calls.append((phase, dict(context)))
        output = self._outputs.get(phase, {})
        if isinstance(output, list):
            position = self._positions.get(phase, 0)
            self._positions[phase] = position + 1
            output = output[min(position, len(output) - 1)] if output else {}
        if isinstance(output, Exception):
            raise output
        if isinstance(output, Mapping) and "byAction" in output:
            action = context.get("action") or {}
            output = output["byAction"].get(action.get("name"), {})
        return copy.deepcopy(output)


__all__ = ["FixtureGenerator", "Generator"]
