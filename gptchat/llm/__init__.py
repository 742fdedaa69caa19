"""LLM subsystem -- client, event-stream parsing, cancellation and tool-call assembly."""

from gptchat.llm.types import (
    FunctionCall,
    Message,
    ModelInfo,
    ModelList,
    Role,
    ToolCall,
    build_message,
)
from gptchat.llm.cancellation import AbortController, AbortSignal, CancellationScope
from gptchat.llm.client import ChatClient, PendingReply
from gptchat.llm.sse import EventStreamParser, ServerSentEvent
from gptchat.llm.token_counter import TokenCounter
from gptchat.llm.tool_call_assembler import ToolCallAssembler

__all__ = [
    "AbortController",
    "AbortSignal",
    "CancellationScope",
    "ChatClient",
    "EventStreamParser",
    "FunctionCall",
    "Message",
    "ModelInfo",
    "ModelList",
    "PendingReply",
    "Role",
    "ServerSentEvent",
    "TokenCounter",
    "ToolCall",
    "ToolCallAssembler",
    "build_message",
]
