"""
Token-budgeted history builder.

Given the message that opens a request and the id of the message it follows,
:class:`HistoryBuilder` walks the conversation graph backwards through
``parent_id`` links and assembles the prompt to send.

The strategy is:

1.  The ceiling is ``max_model_tokens - max_response_tokens``.
2.  The system message and the new message are always sent, even when they
    alone exceed the ceiling (the walk then never starts).
3.  Each ancestor is priced on its own.  The walk stops at the first ancestor
    that would push the running total over the ceiling, at a missing parent
    id, or at an id the store does not know.
4.  Accepted ancestors are inserted right after the system message, so the
    final order is chronological.
5.  The response budget is whatever room is left, clamped to
    ``[1, max_response_tokens]``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from gptchat.llm.types import Message
from gptchat.session.store import MessageStore

logger = logging.getLogger(__name__)


@dataclass
class HistoryWindow:
    messages: list[dict] = field(default_factory=list)
    max_tokens: int = 1
    token_count: int = 0
    history_count: int = 0


class HistoryBuilder:
    """
    Build bounded prompts from a ``MessageStore``.

    Parameters
    ----------
    store:
        Where ancestors are looked up.
    token_counter:
        Any object exposing ``count_message(Message) -> int``.  The
        ``gptchat.llm.token_counter.TokenCounter`` class satisfies this
        interface.
    max_model_tokens / max_response_tokens:
        Context window and reply cap, in tokens.
    with_history:
        When false only the system and new message are sent.
    """

    def __init__(
        self,
        store: MessageStore,
        token_counter: Any,
        max_model_tokens: int = 4096,
        max_response_tokens: int = 1000,
        with_history: bool = True,
    ) -> None:
        self.store = store
        self.token_counter = token_counter
        self.max_model_tokens = max_model_tokens
        self.max_response_tokens = max_response_tokens
        self.with_history = with_history

    async def build(
        self,
        message: Message,
        parent_id: str | None,
        system_message: str,
    ) -> HistoryWindow:
        """Return the prompt for *message* and the reply budget it leaves."""
        ceiling = self.max_model_tokens - self.max_response_tokens

        system = Message.system(system_message)
        messages: list[dict] = [system.to_wire(), message.to_wire()]
        token_count = self.token_counter.count_message(system) + self.token_counter.count_message(
            message
        )
        history_count = 0

        if self.with_history:
            while token_count <= ceiling and parent_id:
                parent = await self.store.get(parent_id)
                if parent is None:
                    break
                cost = self.token_counter.count_message(parent)
                if token_count + cost > ceiling:
                    break
                token_count += cost
                messages.insert(1, parent.to_wire())
                history_count += 1
                parent_id = parent.parent_id

        max_tokens = max(1, min(self.max_model_tokens - token_count, self.max_response_tokens))

        logger.debug(
            "History window: %d ancestors, %d prompt tokens, max_tokens=%d",
            history_count,
            token_count,
            max_tokens,
        )
        return HistoryWindow(
            messages=messages,
            max_tokens=max_tokens,
            token_count=token_count,
            history_count=history_count,
        )
