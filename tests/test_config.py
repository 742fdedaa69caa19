"""Tests for the layered configuration loader."""

from __future__ import annotations

import os

import pytest

from gptchat.config import GptChatConfig, load_config
from gptchat.llm.client import ChatClient
from tests.mock_api import FakeCounter


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("GPTCHAT_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


def write_yaml(tmp_path, text: str):
    path = tmp_path / "gptchat.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestDefaults:
    def test_defaults(self):
        cfg = load_config()
        assert cfg.api.api_base == "https://api.openai.com"
        assert cfg.request.model == "gpt-3.5-turbo"
        assert cfg.conversation.max_model_tokens == 4096
        assert cfg.conversation.max_response_tokens == 1000
        assert cfg.conversation.with_history is True
        assert cfg.client.timeout_seconds == 60.0

    def test_missing_file_is_ignored(self, tmp_path):
        cfg = load_config(tmp_path / "nope.yaml")
        assert cfg.request.model == "gpt-3.5-turbo"

    def test_request_params(self):
        cfg = GptChatConfig()
        cfg.request.extra = {"user": "u-1"}
        assert cfg.request_params() == {
            "model": "gpt-3.5-turbo",
            "temperature": 0.8,
            "top_p": 1.0,
            "presence_penalty": 1.0,
            "user": "u-1",
        }


class TestLayering:
    def test_file_values(self, tmp_path):
        path = write_yaml(
            tmp_path,
            "request:\n  model: gpt-4\n  unknown_key: 1\nconversation:\n  max_model_tokens: 8192\n",
        )
        cfg = load_config(path)
        assert cfg.request.model == "gpt-4"
        assert cfg.conversation.max_model_tokens == 8192
        assert cfg.conversation.max_response_tokens == 1000

    def test_profile_overlays_file(self, tmp_path):
        path = write_yaml(
            tmp_path,
            "request:\n  model: gpt-4\n  temperature: 0.2\n"
            "profiles:\n  local:\n    api:\n      api_base: http://localhost:8080\n"
            "    request:\n      model: llama\n",
        )
        cfg = load_config(path, profile="local")
        assert cfg.api.api_base == "http://localhost:8080"
        assert cfg.request.model == "llama"
        assert cfg.request.temperature == 0.2

    def test_env_beats_file(self, tmp_path, monkeypatch):
        path = write_yaml(tmp_path, "request:\n  model: gpt-4\n")
        monkeypatch.setenv("GPTCHAT_MODEL", "gpt-4o")
        monkeypatch.setenv("GPTCHAT_MAX_RESPONSE_TOKENS", "256")
        monkeypatch.setenv("GPTCHAT_WITH_HISTORY", "no")
        monkeypatch.setenv("GPTCHAT_TIMEOUT", "2.5")

        cfg = load_config(path)

        assert cfg.request.model == "gpt-4o"
        assert cfg.conversation.max_response_tokens == 256
        assert cfg.conversation.with_history is False
        assert cfg.client.timeout_seconds == 2.5

    def test_cli_beats_env(self, monkeypatch):
        monkeypatch.setenv("GPTCHAT_MODEL", "gpt-4o")
        cfg = load_config(cli_overrides={"request.model": "gpt-4-turbo"})
        assert cfg.request.model == "gpt-4-turbo"

    def test_session_override(self):
        cfg = load_config()
        cfg.set_override("conversation.with_history", False)
        assert cfg.conversation.with_history is False
        assert cfg.get_override("conversation.with_history") is False
        assert cfg.get_override("request.model") is None


class TestApiKey:
    def test_literal_key_wins(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "from-env")
        cfg = GptChatConfig()
        cfg.api.api_key = "literal"
        assert cfg.api_key() == "literal"

    def test_key_from_named_env_var(self, monkeypatch):
        monkeypatch.setenv("MY_KEY", "sk-mine")
        cfg = load_config(cli_overrides={"api.api_key_env": "MY_KEY"})
        assert cfg.api_key() == "sk-mine"

    def test_missing_key_is_empty(self):
        assert GptChatConfig().api_key() == ""

    def test_to_dict_redacts_key(self):
        cfg = GptChatConfig()
        cfg.api.api_key = "sk-secret"
        assert cfg.to_dict()["api"]["api_key"] == "***"
        assert cfg.to_dict(redact=False)["api"]["api_key"] == "sk-secret"
        assert "_overrides" not in cfg.to_dict()


class TestClientFromConfig:
    def test_client_options(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        cfg = load_config(
            cli_overrides={
                "api.organization": "org-9",
                "request.model": "gpt-4",
                "conversation.max_model_tokens": 8000,
                "conversation.max_response_tokens": 500,
                "conversation.system_message": "terse",
            }
        )

        client = ChatClient.from_config(cfg, token_counter=FakeCounter())

        assert client.api_key == "sk-env"
        assert client.headers["OpenAI-Organization"] == "org-9"
        assert client.request_params["model"] == "gpt-4"
        assert client.max_model_tokens == 8000
        assert client.max_response_tokens == 500
        assert client.system_message == "terse"
        assert client.timeout == 60.0

    def test_non_positive_timeout_disables_timer(self):
        cfg = load_config(cli_overrides={"client.timeout_seconds": 0})
        client = ChatClient.from_config(cfg, token_counter=FakeCounter())
        assert client.timeout == float("inf")

    def test_kwargs_override_config(self):
        cfg = load_config()
        client = ChatClient.from_config(cfg, api_base="http://x", token_counter=FakeCounter())
        assert client.completions_url == "http://x/v1/chat/completions"
