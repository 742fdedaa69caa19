"""
Assembles streamed tool-call fragments into ``ToolCall`` objects.

Fragments are keyed by their ``index`` field (falling back to their position
in the delta's list).  The first fragment seen for an index creates the entry
with its id, type and function name; every later fragment for that index only
extends the argument string.
"""

from __future__ import annotations

import copy

from gptchat.errors import StreamProtocolError
from gptchat.llm.types import FunctionCall, ToolCall


class ToolCallAssembler:
    """Buffers raw ``delta.tool_calls`` fragments for one assistant reply."""

    def __init__(self) -> None:
        self._calls: dict[int, ToolCall] = {}

    def __bool__(self) -> bool:
        return bool(self._calls)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(self, fragments: list[dict]) -> None:
        """
        Merge the ``tool_calls`` list of a single streamed delta.

        Non-object entries are skipped.  A fragment whose ``function`` is not
        an object, or whose name or arguments are not strings, raises
        ``StreamProtocolError``.
        """
        for position, raw in enumerate(fragments):
            if not isinstance(raw, dict):
                continue
            idx = raw.get("index")
            if not isinstance(idx, int):
                idx = position
            func = raw.get("function") or {}
            if not isinstance(func, dict):
                raise StreamProtocolError(f"Tool call {idx} has a non-object function: {func!r}")
            name = func.get("name") or ""
            args_delta = func.get("arguments") or ""
            if not isinstance(name, str) or not isinstance(args_delta, str):
                raise StreamProtocolError(f"Tool call {idx} has non-string name or arguments")

            existing = self._calls.get(idx)
            if existing is None:
                self._calls[idx] = ToolCall(
                    id=raw.get("id"),
                    type=raw.get("type") or "function",
                    function=FunctionCall(name=name, arguments=args_delta),
                    index=idx,
                )
            else:
                existing.function.arguments += args_delta

    def snapshot(self) -> list[ToolCall]:
        """Return independent copies of the calls assembled so far, by index."""
        return [copy.deepcopy(self._calls[i]) for i in sorted(self._calls)]

    def reset(self) -> None:
        self._calls.clear()
