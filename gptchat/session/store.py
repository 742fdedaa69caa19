"""
In-memory conversation store.

Messages are keyed by id and linked backwards through ``parent_id``.  The
store keeps deep copies on the way in and hands out deep copies on the way
out, so callers can never mutate stored state by accident.  Nothing survives
the process.

The interface is async so that a persistent backend could be swapped in
without touching callers.
"""

from __future__ import annotations

from typing import Iterator

from gptchat.llm.types import Message


class MessageStore:
    """
    Keyed storage of ``Message`` nodes.

    Usage::

        store = MessageStore()
        await store.upsert(message)
        parent = await store.get(message.parent_id)
        await store.clear()
    """

    def __init__(self) -> None:
        self._messages: dict[str, Message] = {}

    async def get(self, message_id: str) -> Message | None:
        """Return a copy of the message stored under *message_id*, or ``None``."""
        message = self._messages.get(message_id)
        return message.copy() if message is not None else None

    async def upsert(self, message: Message) -> None:
        """Store a copy of *message*, replacing any entry with the same id."""
        self._messages[message.id] = message.copy()

    async def clear(self) -> None:
        self._messages.clear()

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._messages

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._messages))
