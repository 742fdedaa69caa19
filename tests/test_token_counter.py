"""
Tests for TokenCounter.

The estimator is checked for determinism and coarse monotonicity on both
the BPE path and the length heuristic; the heuristic path is forced by
making ``tiktoken`` fail to load.
"""

from __future__ import annotations

import pytest

from gptchat.llm import token_counter as token_counter_module
from gptchat.llm.token_counter import TokenCounter
from gptchat.llm.types import FunctionCall, Message, Role, ToolCall


@pytest.fixture
def heuristic_counter(monkeypatch) -> TokenCounter:
    def _unavailable(*args, **kwargs):
        raise OSError("offline")

    monkeypatch.setattr(token_counter_module.tiktoken, "encoding_for_model", _unavailable)
    monkeypatch.setattr(token_counter_module.tiktoken, "get_encoding", _unavailable)
    return TokenCounter("gpt-3.5-turbo")


class TestHeuristic:
    def test_falls_back_when_encoding_unavailable(self, heuristic_counter):
        assert not heuristic_counter.uses_bpe

    def test_empty_text_is_free(self, heuristic_counter):
        assert heuristic_counter.count_text("") == 0
        assert heuristic_counter.count_text(None) == 0

    def test_four_chars_per_token(self, heuristic_counter):
        assert heuristic_counter.count_text("abc") == 1
        assert heuristic_counter.count_text("a" * 40) == 10

    def test_message_counts_role_and_content(self, heuristic_counter):
        msg = Message(id="x", role=Role.USER, content="a" * 36)
        # "user" + 36 chars = 40 chars
        assert heuristic_counter.count_message(msg) == 10

    def test_message_counts_tool_calls(self, heuristic_counter):
        bare = Message(id="x", role=Role.ASSISTANT, content=None)
        with_calls = Message(
            id="x",
            role=Role.ASSISTANT,
            content=None,
            tool_calls=[ToolCall(id="c", function=FunctionCall("get_weather", '{"city": "Paris"}'))],
        )
        assert heuristic_counter.count_message(with_calls) > heuristic_counter.count_message(bare)

    def test_message_counts_tool_call_id(self, heuristic_counter):
        plain = Message(id="x", role=Role.TOOL, content="ok")
        linked = Message(id="x", role=Role.TOOL, content="ok", tool_call_id="call_abcdef", name="f")
        assert heuristic_counter.count_message(linked) > heuristic_counter.count_message(plain)


class TestEncoderFailure:
    def test_encode_error_falls_back(self):
        class Broken:
            def encode(self, text, disallowed_special=()):
                raise ValueError("bad input")

        counter = TokenCounter.__new__(TokenCounter)
        counter.model = None
        counter._enc = Broken()
        assert counter.count_text("a" * 8) == 2

    def test_unknown_model_uses_default_encoding(self, monkeypatch):
        used: list[str] = []

        def _unknown(model):
            raise KeyError(model)

        def _get(name):
            used.append(name)
            raise OSError("offline")

        monkeypatch.setattr(token_counter_module.tiktoken, "encoding_for_model", _unknown)
        monkeypatch.setattr(token_counter_module.tiktoken, "get_encoding", _get)

        counter = TokenCounter("my-local-model")

        assert used == ["cl100k_base"]
        assert not counter.uses_bpe


SAMPLES = [
    "",
    "a",
    "hello",
    "hello world",
    "The quick brown fox jumps over the lazy dog.",
    "def f(x):\n    return x * 2\n" * 5,
    "naïve café ✓ " * 10,
]


@pytest.fixture(params=["bpe", "heuristic"])
def any_counter(request) -> TokenCounter:
    if request.param == "heuristic":
        return request.getfixturevalue("heuristic_counter")
    # Falls back to the heuristic if the encoding cannot be loaded here.
    return TokenCounter()


class TestEstimatorProperties:
    @pytest.mark.parametrize("text", SAMPLES)
    def test_deterministic(self, any_counter, text):
        first = any_counter.count_text(text)
        assert all(any_counter.count_text(text) == first for _ in range(3))
        assert TokenCounter(any_counter.model).count_text(text) == first

    @pytest.mark.parametrize("text", SAMPLES)
    def test_prefix_never_costs_more_than_whole(self, any_counter, text):
        # Cut before spaces; a cut can still split leading whitespace, hence the slack of one.
        whole = any_counter.count_text(text)
        for n in [0] + [i for i, ch in enumerate(text) if ch == " "]:
            assert any_counter.count_text(text[:n]) <= whole + 1

    def test_appending_words_never_lowers_count(self, any_counter):
        text = "Summarize"
        previous = any_counter.count_text(text)
        for word in "the conversation so far and list every open question".split():
            text += " " + word
            current = any_counter.count_text(text)
            assert current >= previous
            previous = current

    @pytest.mark.parametrize("text", SAMPLES[2:])
    def test_repetition_costs_more(self, any_counter, text):
        assert any_counter.count_text(text * 4) > any_counter.count_text(text)

    def test_non_empty_text_costs_at_least_one(self, any_counter):
        for text in SAMPLES[1:]:
            assert any_counter.count_text(text) >= 1

    def test_message_cost_grows_with_content(self, any_counter):
        short = Message(id="x", role=Role.USER, content="hi")
        long = Message(id="x", role=Role.USER, content="hi " * 50)
        assert any_counter.count_message(long) > any_counter.count_message(short)
        assert any_counter.count_message(short) == any_counter.count_message(short.copy())


class TestHeuristicMonotonic:
    @pytest.mark.parametrize("text", SAMPLES)
    def test_prefix_counts_non_decreasing(self, heuristic_counter, text):
        counts = [heuristic_counter.count_text(text[:n]) for n in range(len(text) + 1)]
        assert counts == sorted(counts)
