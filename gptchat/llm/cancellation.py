"""
Client-wide cancellation and request timeouts.

Every ``ChatClient`` owns one ``CancellationScope``.  The scope holds exactly
one live ``AbortController``; each request attaches its task to that
controller's signal.  Cancelling (explicitly or because a timeout fired)
aborts every task attached to the live signal and installs a fresh controller,
so requests started afterwards are not pre-cancelled.

Cancellation is client-wide: there is no per-request token.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Awaitable, TypeVar

from gptchat.errors import RequestCancelledError, RequestTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TIMEOUT_REASON = "timeout"


class AbortSignal:
    """Tracks the tasks that an ``AbortController`` will cancel."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Future] = set()
        self._aborted = False
        self.reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._aborted

    def attach(self, task: asyncio.Future) -> None:
        """Bind *task* to this signal; an already-aborted signal cancels it at once."""
        if self._aborted:
            task.cancel(msg=self.reason)
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _abort(self, reason: str | None) -> None:
        if self._aborted:
            return
        self._aborted = True
        self.reason = reason
        for task in list(self._tasks):
            task.cancel(msg=reason)
        self._tasks.clear()


class AbortController:
    def __init__(self) -> None:
        self.signal = AbortSignal()

    def abort(self, reason: str | None = None) -> None:
        self.signal._abort(reason)


class CancellationScope:
    """Owns the live ``AbortController`` and wraps operations with timeouts."""

    def __init__(self) -> None:
        self._controller = AbortController()

    @property
    def signal(self) -> AbortSignal:
        return self._controller.signal

    def cancel(self, reason: str | None = None) -> None:
        """Abort everything on the live signal and install a fresh controller."""
        controller = self._controller
        self._controller = AbortController()
        logger.debug("Aborting in-flight requests (reason=%s)", reason)
        controller.abort(reason)

    async def run(
        self,
        operation: Awaitable[T],
        timeout: float | None = None,
        message: str | None = None,
    ) -> T:
        """
        Await *operation* under the live signal.

        ``timeout`` is in seconds; ``None`` or ``math.inf`` disables the
        timer.  Raises ``RequestTimeoutError`` when the timer fires first and
        ``RequestCancelledError`` when the signal was aborted for another
        reason.  The timer is released on every exit path.
        """
        signal = self.signal
        task = asyncio.ensure_future(operation)
        signal.attach(task)

        timer: asyncio.TimerHandle | None = None
        expired = False

        def _expire() -> None:
            nonlocal expired
            expired = True
            self.cancel(TIMEOUT_REASON)

        if timeout is not None and not math.isinf(timeout):
            timer = asyncio.get_running_loop().call_later(max(timeout, 0), _expire)

        try:
            return await task
        except asyncio.CancelledError:
            if expired:
                raise RequestTimeoutError(
                    message or f"Request timed out after {timeout:g} seconds"
                ) from None
            if signal.aborted:
                raise RequestCancelledError(
                    f"Request cancelled: {signal.reason}" if signal.reason else "Request cancelled",
                    reason=signal.reason,
                ) from None
            raise
        finally:
            if timer is not None:
                timer.cancel()
