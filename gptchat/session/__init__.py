"""Conversation storage and token-budgeted history building."""

from gptchat.session.context import HistoryBuilder, HistoryWindow
from gptchat.session.store import MessageStore

__all__ = [
    "HistoryBuilder",
    "HistoryWindow",
    "MessageStore",
]
