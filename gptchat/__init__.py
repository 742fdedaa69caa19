"""gptchat -- conversation client for OpenAI-compatible chat APIs."""

__version__ = "0.1.0"

from gptchat.errors import (
    ApiError,
    ChatClientError,
    ErrorKind,
    RequestCancelledError,
    RequestTimeoutError,
    StreamProtocolError,
)
from gptchat.llm.client import ChatClient
from gptchat.llm.types import Message, Role, ToolCall

__all__ = [
    "ApiError",
    "ChatClient",
    "ChatClientError",
    "ErrorKind",
    "Message",
    "RequestCancelledError",
    "RequestTimeoutError",
    "Role",
    "StreamProtocolError",
    "ToolCall",
    "__version__",
]
