"""Error types raised by the chat client.

Callers tell failures apart by ``kind`` (or by class), never by message text.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import httpx

    from gptchat.llm.types import Message


class ErrorKind:
    API_ERROR = "api_error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    STREAM_PROTOCOL_ERROR = "stream_protocol_error"


class ChatClientError(Exception):
    """Base class for every error surfaced by ``ChatClient``."""

    kind: str = ErrorKind.API_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ApiError(ChatClientError):
    """Non-success HTTP status from the chat or model endpoint."""

    kind = ErrorKind.API_ERROR

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status: int | None = None,
        status_text: str | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status = status
        self.status_text = status_text

    @classmethod
    def from_response(cls, response: httpx.Response) -> ApiError:
        """
        Build an error from a failed response whose body has been read.

        The message is ``error.message`` from a JSON body when present,
        otherwise the raw body text, otherwise the status text.
        """
        status_text = response.reason_phrase
        message = status_text
        try:
            body = response.text
        except Exception:  # pragma: no cover - undecodable body
            body = ""
        if body:
            message = body
            try:
                data: Any = json.loads(body)
            except ValueError:
                data = None
            if isinstance(data, dict):
                error = data.get("error")
                if isinstance(error, dict) and error.get("message"):
                    message = str(error["message"])
        return cls(
            message or f"HTTP {response.status_code}",
            url=str(response.url),
            status=response.status_code,
            status_text=status_text,
        )

    def __repr__(self) -> str:
        return f"ApiError(status={self.status!r}, url={self.url!r}, message={self.message!r})"


class RequestTimeoutError(ChatClientError):
    """The request outlived the configured timeout and was aborted."""

    kind = ErrorKind.TIMEOUT


class RequestCancelledError(ChatClientError):
    """The client's cancellation signal fired while the request was in flight."""

    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "Request cancelled", reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class StreamProtocolError(ChatClientError):
    """A streamed payload could not be interpreted as a completion delta."""

    kind = ErrorKind.STREAM_PROTOCOL_ERROR

    def __init__(self, message: str, partial: Message | None = None) -> None:
        super().__init__(message)
        self.partial = partial
