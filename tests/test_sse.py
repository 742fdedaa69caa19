"""Tests for gptchat.llm.sse.EventStreamParser."""

from __future__ import annotations

import pytest

from gptchat.llm.sse import EventStreamParser, ServerSentEvent


def collect(chunks: list[bytes | str]) -> list[ServerSentEvent]:
    events: list[ServerSentEvent] = []
    parser = EventStreamParser(events.append)
    for chunk in chunks:
        parser.feed(chunk)
    return events


def datas(chunks: list[bytes | str]) -> list[str]:
    return [e.data for e in collect(chunks)]


EVENT = b'data: {"id":"chatcmpl-1","choices":[{"delta":{"content":"Hi"}}]}\n\n'


class TestFraming:
    def test_single_event(self):
        assert datas([EVENT]) == ['{"id":"chatcmpl-1","choices":[{"delta":{"content":"Hi"}}]}']

    @pytest.mark.parametrize("split", range(1, len(EVENT)))
    def test_split_anywhere_yields_same_event(self, split):
        assert datas([EVENT[:split], EVENT[split:]]) == datas([EVENT])

    def test_byte_at_a_time(self):
        chunks = [EVENT[i:i + 1] for i in range(len(EVENT))]
        assert datas(chunks) == datas([EVENT])

    def test_two_events_in_one_chunk(self):
        chunk = b"data: first\n\ndata: second\n\n"
        assert datas([chunk]) == ["first", "second"]

    def test_event_not_dispatched_until_blank_line(self):
        events: list[ServerSentEvent] = []
        parser = EventStreamParser(events.append)
        parser.feed(b"data: partial\n")
        assert events == []
        parser.feed(b"\n")
        assert [e.data for e in events] == ["partial"]

    def test_unterminated_event_is_dropped(self):
        assert datas([b"data: one\n\ndata: two\n"]) == ["one"]

    def test_multiline_data_joined_with_newline(self):
        assert datas([b"data: line1\ndata: line2\n\n"]) == ["line1\nline2"]

    def test_leading_space_stripped_once(self):
        assert datas([b"data:  two spaces\n\n"]) == [" two spaces"]
        assert datas([b"data:nospace\n\n"]) == ["nospace"]

    def test_done_sentinel_is_plain_data(self):
        assert datas([b"data: [DONE]\n\n"]) == ["[DONE]"]


class TestLineEndings:
    def test_crlf(self):
        assert datas([b"data: a\r\n\r\ndata: b\r\n\r\n"]) == ["a", "b"]

    def test_cr_only(self):
        # The final CR is held until the next chunk shows it is not CRLF.
        assert datas([b"data: a\r\rdata: b\r\r"]) == ["a"]
        assert datas([b"data: a\r\rdata: b\r\r", b": ping\r"]) == ["a", "b"]

    def test_crlf_split_between_chunks(self):
        # The CR must not be read as a line end followed by an empty line.
        assert datas([b"data: a\r", b"\n\r", b"\n"]) == ["a"]

    def test_blank_lines_without_data_dispatch_nothing(self):
        assert datas([b"\n\n\n", b"data: x\n\n"]) == ["x"]


class TestFields:
    def test_comments_ignored(self):
        assert datas([b": keep-alive\n\ndata: x\n: trailing\n\n"]) == ["x"]

    def test_unknown_fields_ignored(self):
        assert datas([b"foo: bar\ndata: x\nbaz\n\n"]) == ["x"]

    def test_event_id_and_retry(self):
        events = collect([b"event: delta\nid: 7\nretry: 1500\ndata: x\n\n"])
        assert len(events) == 1
        assert events[0].event == "delta"
        assert events[0].id == "7"
        assert events[0].retry == 1500

    def test_event_type_resets_between_events(self):
        events = collect([b"event: custom\ndata: a\n\ndata: b\n\n"])
        assert [e.event for e in events] == ["custom", "message"]

    def test_last_event_id_persists(self):
        events: list[ServerSentEvent] = []
        parser = EventStreamParser(events.append)
        parser.feed(b"id: 1\ndata: a\n\ndata: b\n\n")
        assert [e.id for e in events] == ["1", "1"]
        assert parser.last_event_id == "1"

    def test_invalid_retry_ignored(self):
        events = collect([b"retry: soon\ndata: x\n\n"])
        assert events[0].retry is None

    @pytest.mark.parametrize("value", ["²", "٣", "-5", "1.5", ""])
    def test_non_ascii_or_non_integer_retry_ignored(self, value):
        events = collect([f"retry: {value}\ndata: x\n\n".encode("utf-8")])
        assert [e.data for e in events] == ["x"]
        assert events[0].retry is None


class TestDecoding:
    def test_multibyte_character_split_across_chunks(self):
        raw = "data: héllo ✓\n\n".encode("utf-8")
        idx = raw.index("✓".encode("utf-8")) + 1
        assert datas([raw[:idx], raw[idx:]]) == ["héllo ✓"]

    def test_invalid_bytes_do_not_raise(self):
        assert datas([b"data: \xff\xfe ok\n\n"]) == ["\ufffd\ufffd ok"]

    def test_leading_bom_dropped(self):
        assert datas(["\ufeffdata: x\n\n".encode("utf-8")]) == ["x"]

    def test_accepts_str_chunks(self):
        assert datas(["data: a\n", "\n"]) == ["a"]

    def test_reset_discards_buffer(self):
        events: list[ServerSentEvent] = []
        parser = EventStreamParser(events.append)
        parser.feed(b"data: stale\n")
        parser.reset()
        parser.feed(b"\ndata: fresh\n\n")
        assert [e.data for e in events] == ["fresh"]


class TestClose:
    def test_held_cr_flushed_at_end(self):
        events: list[ServerSentEvent] = []
        parser = EventStreamParser(events.append)
        parser.feed(b"data: x\r\r")
        assert events == []
        parser.close()
        assert [e.data for e in events] == ["x"]

    def test_cr_framed_events_all_delivered(self):
        events: list[ServerSentEvent] = []
        parser = EventStreamParser(events.append)
        parser.feed(b"data: a\r\rdata: b\r\r")
        parser.close()
        assert [e.data for e in events] == ["a", "b"]

    def test_unterminated_event_dropped_on_close(self):
        events: list[ServerSentEvent] = []
        parser = EventStreamParser(events.append)
        parser.feed(b"data: one\n\ndata: two\n")
        parser.close()
        assert [e.data for e in events] == ["one"]

    def test_truncated_multibyte_sequence_does_not_raise(self):
        events: list[ServerSentEvent] = []
        parser = EventStreamParser(events.append)
        parser.feed(b"data: ok\n\ndata: \xe2\x9c")
        parser.close()
        assert [e.data for e in events] == ["ok"]


class TestSinkErrors:
    def test_sink_exception_propagates(self):
        def sink(event: ServerSentEvent) -> None:
            raise ValueError(event.data)

        parser = EventStreamParser(sink)
        with pytest.raises(ValueError, match="boom"):
            parser.feed(b"data: boom\n\n")
