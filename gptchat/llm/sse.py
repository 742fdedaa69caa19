"""
Incremental parser for ``text/event-stream`` bodies.

Bytes are fed as they arrive from the network.  Partial lines and partial
events are buffered until their terminator shows up, so an event may be split
across any number of chunks and one chunk may carry several events::

    parser = EventStreamParser(lambda event: print(event.data))
    async for raw in response.aiter_bytes():
        parser.feed(raw)
    parser.close()

Only the generic framing lives here.  Domain conventions such as the
``[DONE]`` sentinel are the consumer's business.
"""

from __future__ import annotations

import codecs
from dataclasses import dataclass
from typing import Callable


@dataclass
class ServerSentEvent:
    data: str
    event: str = "message"
    id: str | None = None
    retry: int | None = None


class EventStreamParser:
    """Turns a byte stream into ``ServerSentEvent`` objects passed to *on_event*."""

    def __init__(self, on_event: Callable[[ServerSentEvent], None]) -> None:
        self._on_event = on_event
        self.reset()

    def reset(self) -> None:
        """Forget all buffered input and event state."""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._started = False
        self._data: list[str] = []
        self._event_type = ""
        self._retry: int | None = None
        self.last_event_id: str | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(self, chunk: bytes | str) -> None:
        """
        Consume the next piece of the stream.

        Dispatches every event completed by this chunk, in order.  Exceptions
        raised by the sink propagate to the caller.
        """
        if isinstance(chunk, bytes):
            text = self._decoder.decode(chunk)
        else:
            text = chunk
        if not text:
            return

        if not self._started:
            self._started = True
            if text.startswith("\ufeff"):
                text = text[1:]

        self._buffer += text
        self._drain_lines()

    def close(self) -> None:
        """
        Signal the end of the stream.

        A trailing CR held back as a possible CRLF half is treated as a line
        end, so a final CR-framed event is still dispatched.  An event with no
        terminating blank line is dropped.
        """
        tail = self._decoder.decode(b"", final=True)
        if tail:
            self._buffer += tail
            self._drain_lines()
        if self._buffer.endswith("\r"):
            self._buffer = self._buffer[:-1] + "\n"
            self._drain_lines()
        self._buffer = ""
        self._data = []
        self._event_type = ""

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _drain_lines(self) -> None:
        buf = self._buffer
        pos = 0
        length = len(buf)
        try:
            while pos < length:
                cr = buf.find("\r", pos)
                lf = buf.find("\n", pos)
                if cr == -1 and lf == -1:
                    break
                if cr != -1 and (lf == -1 or cr < lf):
                    # A lone CR at the end might be the first half of CRLF.
                    if cr == length - 1:
                        break
                    end = cr
                    nxt = cr + 2 if buf[cr + 1] == "\n" else cr + 1
                else:
                    end = lf
                    nxt = lf + 1
                line = buf[pos:end]
                pos = nxt
                self._process_line(line)
        finally:
            self._buffer = buf[pos:]

    def _process_line(self, line: str) -> None:
        if not line:
            self._dispatch()
            return
        if line.startswith(":"):
            return

        field_name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field_name == "data":
            self._data.append(value)
        elif field_name == "event":
            self._event_type = value
        elif field_name == "id":
            if "\0" not in value:
                self.last_event_id = value
        elif field_name == "retry":
            if value.isascii() and value.isdigit():
                self._retry = int(value)
        # Unknown fields are ignored.

    def _dispatch(self) -> None:
        if not self._data:
            self._event_type = ""
            return
        event = ServerSentEvent(
            data="\n".join(self._data),
            event=self._event_type or "message",
            id=self.last_event_id,
            retry=self._retry,
        )
        self._data = []
        self._event_type = ""
        self._on_event(event)
