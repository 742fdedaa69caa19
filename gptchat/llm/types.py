"""Core types for the conversation graph and the chat-completions wire format."""

from __future__ import annotations

import copy
import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from gptchat.errors import StreamProtocolError


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    FUNCTION = "function"


def new_message_id() -> str:
    return str(uuid.uuid4())


@dataclass
class FunctionCall:
    name: str = ""
    arguments: str = ""


@dataclass
class ToolCall:
    """
    A tool invocation requested by the assistant.

    *arguments* stay a raw string: while streaming they arrive as JSON
    fragments and are only complete once the reply has finished.
    """

    id: str | None = None
    type: str = "function"
    function: FunctionCall = field(default_factory=FunctionCall)
    index: int | None = None

    @property
    def name(self) -> str:
        return self.function.name

    @property
    def arguments(self) -> str:
        return self.function.arguments

    def parse_arguments(self) -> dict:
        """Decode the accumulated argument string."""
        raw = self.function.arguments or "{}"
        try:
            value = json.loads(raw)
        except ValueError as exc:
            raise StreamProtocolError(
                f"Tool call {self.function.name!r} has malformed arguments: {exc}"
            ) from exc
        if not isinstance(value, dict):
            raise StreamProtocolError(
                f"Tool call {self.function.name!r} arguments are not a JSON object"
            )
        return value

    def to_wire(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "function": {
                "name": self.function.name,
                "arguments": self.function.arguments,
            },
        }

    @classmethod
    def from_wire(cls, raw: dict, index: int | None = None) -> ToolCall:
        func = raw.get("function")
        if not isinstance(func, dict):
            func = {}
        idx = raw.get("index", index)
        return cls(
            id=raw.get("id"),
            type=raw.get("type") or "function",
            function=FunctionCall(
                name=func.get("name") or "",
                arguments=func.get("arguments") or "",
            ),
            index=idx,
        )


@dataclass
class Message:
    """
    A node in the conversation graph.

    ``parent_id`` links to the preceding message of the same thread and is
    ``None`` for thread roots.  ``detail`` keeps the last raw server payload
    for diagnostics only.
    """

    id: str
    role: Role
    content: str | None = ""
    parent_id: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None
    detail: dict | None = None

    # -- Construction ---------------------------------------------------

    @classmethod
    def system(
        cls,
        content: str,
        *,
        id: str | None = None,
        parent_id: str | None = None,
    ) -> Message:
        return cls(id=id or new_message_id(), role=Role.SYSTEM, content=content, parent_id=parent_id)

    @classmethod
    def user(
        cls,
        content: str,
        *,
        id: str | None = None,
        parent_id: str | None = None,
        name: str | None = None,
    ) -> Message:
        return cls(
            id=id or new_message_id(),
            role=Role.USER,
            content=content,
            parent_id=parent_id,
            name=name,
        )

    @classmethod
    def tool(
        cls,
        content: str,
        *,
        tool_call_id: str,
        id: str | None = None,
        parent_id: str | None = None,
        name: str | None = None,
    ) -> Message:
        return cls(
            id=id or new_message_id(),
            role=Role.TOOL,
            content=content,
            parent_id=parent_id,
            tool_call_id=tool_call_id,
            name=name,
        )

    @classmethod
    def function(
        cls,
        content: str,
        *,
        name: str,
        id: str | None = None,
        parent_id: str | None = None,
    ) -> Message:
        return cls(
            id=id or new_message_id(),
            role=Role.FUNCTION,
            content=content,
            parent_id=parent_id,
            name=name,
        )

    @classmethod
    def assistant_placeholder(cls, parent_id: str) -> Message:
        """Empty assistant reply linked to the message it answers."""
        return cls(id=new_message_id(), role=Role.ASSISTANT, content="", parent_id=parent_id)

    # -- Conversion -----------------------------------------------------

    def copy(self) -> Message:
        return copy.deepcopy(self)

    def to_wire(self) -> dict:
        """Return the request-body form of this message."""
        m: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            m["tool_calls"] = [tc.to_wire() for tc in self.tool_calls]
        if self.tool_call_id:
            m["tool_call_id"] = self.tool_call_id
        if self.name:
            m["name"] = self.name
        return m

    @classmethod
    def from_wire(
        cls,
        raw: dict,
        *,
        id: str | None = None,
        parent_id: str | None = None,
    ) -> Message:
        """
        Build a message from its request or response-body form.

        An unknown or missing role reads as ``assistant``.  Non-object
        entries in ``tool_calls`` are skipped.
        """
        try:
            role = Role(raw.get("role") or Role.ASSISTANT)
        except ValueError:
            role = Role.ASSISTANT
        raw_calls = raw.get("tool_calls")
        tool_calls = None
        if isinstance(raw_calls, list):
            tool_calls = [
                ToolCall.from_wire(tc, i) for i, tc in enumerate(raw_calls) if isinstance(tc, dict)
            ] or None
        return cls(
            id=id or new_message_id(),
            role=role,
            content=raw.get("content"),
            parent_id=parent_id,
            tool_calls=tool_calls,
            tool_call_id=raw.get("tool_call_id"),
            name=raw.get("name"),
        )


def _build_tool(content: str, **kwargs: Any) -> Message:
    tool_call_id = kwargs.pop("tool_call_id", None)
    if not tool_call_id:
        raise ValueError("tool messages require a tool_call_id")
    return Message.tool(content, tool_call_id=tool_call_id, **kwargs)


def _build_function(content: str, **kwargs: Any) -> Message:
    kwargs.pop("tool_call_id", None)
    name = kwargs.pop("name", None)
    if not name:
        raise ValueError("function messages require a name")
    return Message.function(content, name=name, **kwargs)


def _build_user(content: str, **kwargs: Any) -> Message:
    kwargs.pop("tool_call_id", None)
    return Message.user(content, **kwargs)


def _build_system(content: str, **kwargs: Any) -> Message:
    kwargs.pop("tool_call_id", None)
    kwargs.pop("name", None)
    return Message.system(content, **kwargs)


_BUILDERS: dict[Role, Callable[..., Message]] = {
    Role.SYSTEM: _build_system,
    Role.USER: _build_user,
    Role.TOOL: _build_tool,
    Role.FUNCTION: _build_function,
}


def build_message(
    role: Role | str,
    content: str,
    *,
    id: str | None = None,
    parent_id: str | None = None,
    tool_call_id: str | None = None,
    name: str | None = None,
) -> Message:
    """
    Build the message that opens a request.

    Assistant messages are never built here; replies start from
    ``Message.assistant_placeholder``.
    """
    role = Role(role)
    builder = _BUILDERS.get(role)
    if builder is None:
        raise ValueError(f"Cannot start a request with role {role.value!r}")
    return builder(
        content,
        id=id,
        parent_id=parent_id,
        tool_call_id=tool_call_id,
        name=name,
    )


@dataclass
class ModelInfo:
    id: str
    object: str = "model"
    owned_by: str | None = None


@dataclass
class ModelList:
    """Result of ``GET /v1/models``."""

    object: str = "list"
    data: list[ModelInfo] = field(default_factory=list)
    raw: dict = field(default_factory=dict, repr=False)

    @classmethod
    def from_wire(cls, raw: dict) -> ModelList:
        models = [
            ModelInfo(
                id=str(item.get("id", "")),
                object=item.get("object") or "model",
                owned_by=item.get("owned_by"),
            )
            for item in raw.get("data") or []
            if isinstance(item, dict)
        ]
        return cls(object=raw.get("object") or "list", data=models, raw=raw)

    @property
    def ids(self) -> list[str]:
        return [m.id for m in self.data]
