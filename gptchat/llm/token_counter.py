"""
Token estimation backed by ``tiktoken``.

Counts are a budgeting heuristic.  They do not reproduce the exact prompt
cost charged by the API (per-message framing overhead is not modelled).  If
the BPE encoding cannot be loaded (for instance when its ranks file cannot be
downloaded) a simple character-based heuristic is used instead
(~4 characters per token).
"""

from __future__ import annotations

import logging
from typing import Any

import tiktoken

from gptchat.llm.types import Message

logger = logging.getLogger(__name__)

DEFAULT_ENCODING = "cl100k_base"


class TokenCounter:
    """
    Estimate token counts for text and conversation nodes.

    Parameters
    ----------
    model:
        Model name passed to ``tiktoken.encoding_for_model``.
    encoding:
        Explicit encoding name; takes precedence over *model*.
    """

    def __init__(self, model: str | None = None, encoding: str | None = None) -> None:
        self.model = model
        self._enc: Any = None
        try:
            if encoding:
                self._enc = tiktoken.get_encoding(encoding)
            else:
                try:
                    self._enc = tiktoken.encoding_for_model(model or "gpt-3.5-turbo")
                except KeyError:
                    self._enc = tiktoken.get_encoding(DEFAULT_ENCODING)
        except Exception as exc:
            logger.warning("tiktoken encoding unavailable, using length heuristic: %s", exc)
            self._enc = None

    @property
    def uses_bpe(self) -> bool:
        return self._enc is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def count_text(self, text: str | None) -> int:
        """Return the estimated token count for a plain string."""
        if not text:
            return 0
        if self._enc is not None:
            try:
                return len(self._enc.encode(text, disallowed_special=()))
            except Exception:
                logger.debug("tiktoken failed to encode %d chars, estimating", len(text))
                return self._heuristic(text)
        return self._heuristic(text)

    def count_message(self, message: Message) -> int:
        """Estimate the cost of a single conversation node."""
        tokens = self.count_text(message.role.value + (message.content or ""))
        for tc in message.tool_calls or ():
            tokens += self.count_text(tc.function.name + tc.function.arguments)
        if message.tool_call_id:
            tokens += self.count_text(message.tool_call_id)
        if message.name:
            tokens += self.count_text(message.name)
        return tokens

    @staticmethod
    def _heuristic(text: str) -> int:
        return max(1, len(text) // 4)
