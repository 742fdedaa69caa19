"""
Conversation client for OpenAI-compatible chat-completion endpoints.

Speaks the ``/v1/chat/completions`` and ``/v1/models`` wire protocol over
``httpx``.  Each call to :meth:`ChatClient.send_message`:

  1. Builds and stores the message that opens the request.
  2. Creates an assistant placeholder linked to it.
  3. Walks the stored history backwards under the token budget.
  4. Dispatches the request under the client's cancellation scope.
  5. Materializes the reply, either from one JSON body or delta by delta from
     the event stream, and stores it once complete.

The returned reply's ``id`` is the cursor for the next turn: pass it as
``parent_id`` to continue the thread.
"""

from __future__ import annotations

import inspect
import json
import logging
import math
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

import httpx

from gptchat.errors import ApiError, StreamProtocolError
from gptchat.llm.cancellation import AbortSignal, CancellationScope
from gptchat.llm.sse import EventStreamParser
from gptchat.llm.token_counter import TokenCounter
from gptchat.llm.tool_call_assembler import ToolCallAssembler
from gptchat.llm.types import Message, ModelList, Role, build_message
from gptchat.markdown import render_markdown
from gptchat.session.context import HistoryBuilder, HistoryWindow
from gptchat.session.store import MessageStore

if TYPE_CHECKING:
    from gptchat.config import GptChatConfig

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.openai.com"
DEFAULT_MODEL = "gpt-3.5-turbo"
DEFAULT_SYSTEM_MESSAGE = (
    "You are ChatGPT, helping the user with code. You are a smart, helpful and "
    "professional developer who always gives correct answers and follows "
    "instructions exactly. Your answers are always truthful and never made up."
)
DEFAULT_REQUEST_PARAMS: dict[str, Any] = {
    "model": DEFAULT_MODEL,
    "temperature": 0.8,
    "top_p": 1,
    "presence_penalty": 1,
}
DONE_SENTINEL = "[DONE]"

# Computed per request; callers cannot override these by name.
RESERVED_PARAMS = frozenset({"messages", "stream", "max_tokens", "n"})

ProgressCallback = Callable[[Message], Union[Awaitable[None], None]]


def _coerce_role(value: Any, default: Role = Role.ASSISTANT) -> Role:
    try:
        return Role(value)
    except ValueError:
        return default


class PendingReply:
    """
    Accumulator for one streamed reply.

    Holds the raw text received so far and the tool-call fragments, and
    applies each delta to the in-progress assistant message.  Lives exactly as
    long as one ``send_message`` call.
    """

    def __init__(self, message: Message, render: Callable[[str], str]) -> None:
        self.message = message
        self.raw_text = ""
        self.tool_calls = ToolCallAssembler()
        self._render = render

    def apply(self, data: str) -> Message:
        """Apply one ``data`` payload and return a snapshot of the reply."""
        try:
            response = json.loads(data)
        except ValueError as exc:
            raise StreamProtocolError(
                f"Malformed stream payload: {data[:200]!r}",
                partial=self.message.copy(),
            ) from exc
        if not isinstance(response, dict):
            raise StreamProtocolError(
                f"Stream payload is not an object: {data[:200]!r}",
                partial=self.message.copy(),
            )

        if response.get("id"):
            self.message.id = str(response["id"])

        choices = response.get("choices") or []
        if not isinstance(choices, list):
            raise self._malformed("Stream choices are not a list")
        if choices:
            choice = choices[0]
            if not isinstance(choice, dict):
                raise self._malformed("Stream choice is not an object")
            delta = choice.get("delta") or {}
            if not isinstance(delta, dict):
                raise self._malformed(f"Stream delta is not an object: {delta!r}")

            content = delta.get("content")
            if content is not None and not isinstance(content, str):
                raise self._malformed(f"Delta content is not a string: {content!r}")
            if content:
                self.raw_text += content
                # Markdown is re-rendered over the whole text on every delta.
                self.message.content = self._render(self.raw_text)

            tool_calls = delta.get("tool_calls")
            if tool_calls is not None and not isinstance(tool_calls, list):
                raise self._malformed("Delta tool_calls is not a list")
            if tool_calls:
                try:
                    self.tool_calls.feed(tool_calls)
                except StreamProtocolError as exc:
                    exc.partial = self.message.copy()
                    raise
                self.message.tool_calls = self.tool_calls.snapshot()

            if delta.get("role"):
                self.message.role = _coerce_role(delta["role"])

        self.message.detail = response
        return self.message.copy()

    def _malformed(self, message: str) -> StreamProtocolError:
        return StreamProtocolError(message, partial=self.message.copy())

    def finish(self) -> Message:
        if self.message.content:
            self.message.content = self.message.content.strip()
        return self.message


class ChatClient:
    """
    Conversation manager for an OpenAI-compatible chat API.

    Parameters
    ----------
    api_key:
        Bearer token.  Pass ``""`` for unauthenticated local endpoints.
    api_base:
        Scheme and host of the API, without the ``/v1`` suffix.
    organization:
        Sent as ``OpenAI-Organization`` when set.
    debug:
        Sets the ``gptchat`` logger to DEBUG.
    with_history:
        Include ancestors of ``parent_id`` in each prompt.
    max_model_tokens / max_response_tokens:
        Context window size and reply cap, in tokens.
    system_message:
        Default system prompt; can be replaced per call.
    timeout:
        Seconds before a call is aborted.  ``None`` or ``math.inf`` disables
        the timer.
    markdown_to_html:
        Pass assistant content through *markdown_renderer*.
    markdown_renderer:
        ``str -> str`` transform; defaults to ``render_markdown``.
    request_params:
        Default body parameters (``model``, ``temperature``, ...).
    store / token_counter:
        Collaborators; fresh ones are created when omitted.
    transport:
        Optional ``httpx`` transport, used for every request.
    """

    def __init__(
        self,
        api_key: str = "",
        *,
        api_base: str = DEFAULT_API_BASE,
        organization: str | None = None,
        debug: bool = False,
        with_history: bool = True,
        max_model_tokens: int = 4096,
        max_response_tokens: int = 1000,
        system_message: str | None = None,
        timeout: float | None = 60.0,
        markdown_to_html: bool = False,
        markdown_renderer: Callable[[str], str] | None = None,
        request_params: dict[str, Any] | None = None,
        store: MessageStore | None = None,
        token_counter: Any = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if max_response_tokens < 1:
            raise ValueError("max_response_tokens must be at least 1")
        if max_model_tokens <= max_response_tokens:
            raise ValueError("max_model_tokens must be greater than max_response_tokens")

        self.api_key = api_key
        self.api_base = (api_base or DEFAULT_API_BASE).rstrip("/")
        self.organization = organization
        self.debug = debug
        self.system_message = system_message or DEFAULT_SYSTEM_MESSAGE
        self.timeout = math.inf if timeout is None else timeout
        self.markdown_to_html = markdown_to_html
        self._markdown_renderer = markdown_renderer or render_markdown
        self.request_params: dict[str, Any] = {
            **DEFAULT_REQUEST_PARAMS,
            **_without_reserved(request_params),
        }
        self._transport = transport
        self._store = store if store is not None else MessageStore()
        self._counter = (
            token_counter
            if token_counter is not None
            else TokenCounter(self.request_params.get("model"))
        )
        self._history = HistoryBuilder(
            self._store,
            self._counter,
            max_model_tokens=max_model_tokens,
            max_response_tokens=max_response_tokens,
            with_history=with_history,
        )
        self._scope = CancellationScope()

        if debug:
            logging.getLogger("gptchat").setLevel(logging.DEBUG)

    @classmethod
    def from_config(cls, config: GptChatConfig, **kwargs: Any) -> ChatClient:
        """Build a client from a loaded ``GptChatConfig``; *kwargs* win."""
        timeout = config.client.timeout_seconds
        options: dict[str, Any] = {
            "api_key": config.api_key(),
            "api_base": config.api.api_base,
            "organization": config.api.organization or None,
            "debug": config.client.debug,
            "with_history": config.conversation.with_history,
            "max_model_tokens": config.conversation.max_model_tokens,
            "max_response_tokens": config.conversation.max_response_tokens,
            "system_message": config.conversation.system_message or None,
            "timeout": timeout if timeout and timeout > 0 else None,
            "markdown_to_html": config.conversation.markdown_to_html,
            "request_params": config.request_params(),
        }
        options.update(kwargs)
        return cls(**options)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def completions_url(self) -> str:
        return f"{self.api_base}/v1/chat/completions"

    @property
    def models_url(self) -> str:
        return f"{self.api_base}/v1/models"

    @property
    def headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        if self.organization:
            headers["OpenAI-Organization"] = self.organization
        return headers

    @property
    def store(self) -> MessageStore:
        return self._store

    @property
    def signal(self) -> AbortSignal:
        """The cancellation signal new requests will attach to."""
        return self._scope.signal

    @property
    def max_model_tokens(self) -> int:
        return self._history.max_model_tokens

    @property
    def max_response_tokens(self) -> int:
        return self._history.max_response_tokens

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------

    async def send_message(
        self,
        text: str,
        *,
        parent_id: str | None = None,
        message_id: str | None = None,
        role: Role | str = Role.USER,
        tool_call_id: str | None = None,
        name: str | None = None,
        system_message: str | None = None,
        stream: bool | None = None,
        on_progress: ProgressCallback | None = None,
        request_params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Message:
        """
        Send *text* and return the finished assistant reply.

        ``stream`` defaults to ``True`` when *on_progress* is given.  Each
        streamed delta hands *on_progress* an independent snapshot of the
        reply so far (sync or async callbacks are both accepted).

        Raises ``ApiError``, ``RequestTimeoutError``,
        ``RequestCancelledError`` or ``StreamProtocolError``.  A reply that
        does not complete is never stored.

        The returned reply's ``id`` is the thread cursor: pass it as
        ``parent_id`` on the next call to continue this thread.
        """
        if stream is None:
            stream = on_progress is not None

        message = build_message(
            role,
            text,
            id=message_id,
            parent_id=parent_id,
            tool_call_id=tool_call_id,
            name=name,
        )
        await self._store.upsert(message)

        assistant = Message.assistant_placeholder(message.id)

        return await self._scope.run(
            self._request_reply(
                message,
                assistant,
                parent_id=parent_id,
                stream=stream,
                system_message=system_message or self.system_message,
                request_params=request_params,
                on_progress=on_progress,
            ),
            timeout=self.timeout if timeout is None else timeout,
        )

    def cancel_conversation(self, reason: str | None = None) -> None:
        """Abort every in-flight request of this client."""
        logger.info("Cancelling in-flight requests: %s", reason or "no reason given")
        self._scope.cancel(reason)

    async def get_message(self, message_id: str) -> Message | None:
        return await self._store.get(message_id)

    async def clear_messages(self) -> None:
        await self._store.clear()

    async def get_models(self, timeout: float | None = None) -> ModelList:
        """List the models available to this API key."""
        return await self._scope.run(
            self._list_models(),
            timeout=self.timeout if timeout is None else timeout,
        )

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def _build_body(
        self,
        window: HistoryWindow,
        stream: bool,
        request_params: dict[str, Any] | None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            **self.request_params,
            **_without_reserved(request_params),
            "messages": window.messages,
            "stream": stream,
            "max_tokens": window.max_tokens,
        }
        logger.info(
            "REQUEST: model=%s messages=%d history=%d prompt_tokens~%d max_tokens=%d stream=%s",
            body.get("model"),
            len(window.messages),
            window.history_count,
            window.token_count,
            window.max_tokens,
            stream,
        )
        return body

    def _render(self, text: str) -> str:
        return self._markdown_renderer(text) if self.markdown_to_html else text

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _request_reply(
        self,
        message: Message,
        assistant: Message,
        *,
        parent_id: str | None,
        stream: bool,
        system_message: str,
        request_params: dict[str, Any] | None,
        on_progress: ProgressCallback | None,
    ) -> Message:
        window = await self._history.build(message, parent_id, system_message)
        body = self._build_body(window, stream, request_params)

        if stream:
            reply = await self._stream_reply(body, assistant, on_progress)
        else:
            data = await self._fetch_json("POST", self.completions_url, body)
            reply = self._adopt_response(assistant, data)

        await self._store.upsert(reply)
        logger.debug("Stored reply %s (parent %s)", reply.id, reply.parent_id)
        return reply

    async def _fetch_json(self, method: str, url: str, body: dict | None = None) -> dict:
        async with httpx.AsyncClient(timeout=None, transport=self._transport) as client:
            response = await client.request(method, url, json=body, headers=self.headers)
            if not response.is_success:
                raise ApiError.from_response(response)
            try:
                data = response.json()
            except ValueError as exc:
                raise ApiError(
                    f"Invalid JSON in response: {exc}",
                    url=str(response.url),
                    status=response.status_code,
                    status_text=response.reason_phrase,
                ) from exc
        if not isinstance(data, dict):
            raise ApiError(
                "Unexpected response body",
                url=url,
                status=response.status_code,
                status_text=response.reason_phrase,
            )
        return data

    async def _stream_reply(
        self,
        body: dict,
        assistant: Message,
        on_progress: ProgressCallback | None,
    ) -> Message:
        pending = PendingReply(assistant, self._render)
        payloads: list[str] = []
        parser = EventStreamParser(lambda event: payloads.append(event.data))

        async with httpx.AsyncClient(timeout=None, transport=self._transport) as client:
            async with client.stream(
                "POST", self.completions_url, json=body, headers=self.headers
            ) as response:
                if not response.is_success:
                    await response.aread()
                    raise ApiError.from_response(response)

                async for raw_bytes in response.aiter_bytes():
                    parser.feed(raw_bytes)
                    if await self._apply_payloads(payloads, pending, on_progress):
                        return pending.finish()
                parser.close()
                if await self._apply_payloads(payloads, pending, on_progress):
                    return pending.finish()

        logger.debug("Stream ended without %s", DONE_SENTINEL)
        return pending.finish()

    async def _apply_payloads(
        self,
        payloads: list[str],
        pending: PendingReply,
        on_progress: ProgressCallback | None,
    ) -> bool:
        """Apply queued payloads in order; True once the sentinel is seen."""
        try:
            for data in payloads:
                if data == DONE_SENTINEL:
                    return True
                snapshot = pending.apply(data)
                if on_progress is not None:
                    result = on_progress(snapshot)
                    if inspect.isawaitable(result):
                        await result
        finally:
            payloads.clear()
        return False

    def _adopt_response(self, assistant: Message, data: dict) -> Message:
        if data.get("id"):
            assistant.id = str(data["id"])
        choices = data.get("choices") or []
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            raw = choices[0].get("message")
            if isinstance(raw, dict):
                reply = Message.from_wire(raw, id=assistant.id, parent_id=assistant.parent_id)
                assistant.role = reply.role
                assistant.tool_calls = reply.tool_calls
                if isinstance(reply.content, str):
                    assistant.content = self._render(reply.content)
                else:
                    assistant.content = None
        assistant.detail = data
        return assistant

    async def _list_models(self) -> ModelList:
        return ModelList.from_wire(await self._fetch_json("GET", self.models_url))


def _without_reserved(params: dict[str, Any] | None) -> dict[str, Any]:
    if not params:
        return {}
    return {k: v for k, v in params.items() if k not in RESERVED_PARAMS}
