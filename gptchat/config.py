"""
Configuration for gptchat.

Settings live in four dataclass sections (``api``, ``request``,
``conversation``, ``client``).  ``load_config`` layers them from the
built-in defaults, a YAML file, an optional profile inside that file,
``GPTCHAT_*`` environment variables and command-line flags.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ApiConfig:
    api_base: str = "https://api.openai.com"
    api_key: str = ""
    api_key_env: str = "OPENAI_API_KEY"
    organization: str = ""


@dataclass
class RequestConfig:
    model: str = "gpt-3.5-turbo"
    temperature: float = 0.8
    top_p: float = 1.0
    presence_penalty: float = 1.0
    extra: dict = field(default_factory=dict)


@dataclass
class ConversationConfig:
    max_model_tokens: int = 4096
    max_response_tokens: int = 1000
    with_history: bool = True
    system_message: str = ""
    markdown_to_html: bool = False


@dataclass
class ClientConfig:
    # 0 or less disables the request timer.
    timeout_seconds: float = 60.0
    debug: bool = False


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class GptChatConfig:
    api: ApiConfig = field(default_factory=ApiConfig)
    request: RequestConfig = field(default_factory=RequestConfig)
    conversation: ConversationConfig = field(default_factory=ConversationConfig)
    client: ClientConfig = field(default_factory=ClientConfig)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    # Values changed at runtime (e.g. by ``ask --system``), applied last.
    _overrides: dict[str, Any] = field(default_factory=dict, repr=False)

    def set_override(self, dotpath: str, value: Any) -> None:
        """Change one field for this session, e.g. ``set_override("request.model", "gpt-4")``."""
        _set_path(self, dotpath, value)
        self._overrides[dotpath] = value

    def get_override(self, dotpath: str) -> Any | None:
        return self._overrides.get(dotpath)

    def api_key(self) -> str:
        """The literal key if configured, else the value of ``api.api_key_env``."""
        if self.api.api_key:
            return self.api.api_key
        if self.api.api_key_env:
            return os.environ.get(self.api.api_key_env, "")
        return ""

    def request_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {
            "model": self.request.model,
            "temperature": self.request.temperature,
            "top_p": self.request.top_p,
            "presence_penalty": self.request.presence_penalty,
        }
        params.update(self.request.extra)
        return params

    def to_dict(self, redact: bool = True) -> dict:
        d = asdict(self)
        d.pop("_overrides", None)
        if redact and d["api"].get("api_key"):
            d["api"]["api_key"] = "***"
        return d


# ---------------------------------------------------------------------------
# Layering helpers
# ---------------------------------------------------------------------------

_TRUTHY = frozenset({"1", "true", "yes", "on"})


def _set_path(target: Any, dotpath: str, value: Any) -> None:
    """Assign *value* to the attribute named by ``section.field``."""
    *parents, leaf = dotpath.split(".")
    for name in parents:
        target = getattr(target, name)
    setattr(target, leaf, value)


def _overlay(base: dict, top: dict) -> dict:
    """Return *base* with *top* laid over it; nested mappings merge key by key."""
    result = dict(base)
    for key, value in top.items():
        below = result.get(key)
        if isinstance(below, dict) and isinstance(value, dict):
            result[key] = _overlay(below, value)
        else:
            result[key] = value
    return result


def _parse_env(text: str, kind: type) -> Any:
    if kind is bool:
        return text.strip().lower() in _TRUTHY
    return kind(text)


def _section(cls: type, data: dict | None) -> Any:
    """Instantiate a section dataclass from *data*; unknown keys are dropped."""
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in (data or {}).items() if k in known})


def _read_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "GPTCHAT_API_BASE":            ("api.api_base", str),
    "GPTCHAT_API_KEY":             ("api.api_key", str),
    "GPTCHAT_API_KEY_ENV":         ("api.api_key_env", str),
    "GPTCHAT_ORGANIZATION":        ("api.organization", str),
    "GPTCHAT_MODEL":               ("request.model", str),
    "GPTCHAT_TEMPERATURE":         ("request.temperature", float),
    "GPTCHAT_TOP_P":               ("request.top_p", float),
    "GPTCHAT_PRESENCE_PENALTY":    ("request.presence_penalty", float),
    "GPTCHAT_MAX_MODEL_TOKENS":    ("conversation.max_model_tokens", int),
    "GPTCHAT_MAX_RESPONSE_TOKENS": ("conversation.max_response_tokens", int),
    "GPTCHAT_WITH_HISTORY":        ("conversation.with_history", bool),
    "GPTCHAT_SYSTEM_MESSAGE":      ("conversation.system_message", str),
    "GPTCHAT_MARKDOWN_TO_HTML":    ("conversation.markdown_to_html", bool),
    "GPTCHAT_TIMEOUT":             ("client.timeout_seconds", float),
    "GPTCHAT_DEBUG":               ("client.debug", bool),
}


def _env_overrides() -> dict[str, Any]:
    """Dotpath -> value for every ``GPTCHAT_*`` variable that is set."""
    found: dict[str, Any] = {}
    for name, (dotpath, kind) in _ENV_MAP.items():
        raw = os.environ.get(name)
        if raw is not None:
            found[dotpath] = _parse_env(raw, kind)
    return found


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> GptChatConfig:
    """
    Assemble a GptChatConfig.

    Sources are applied in order, later ones winning:

        defaults, YAML file, named profile, GPTCHAT_* env vars, CLI flags

    A missing file is not an error.  ``profile`` names an entry under the
    file's ``profiles:`` mapping; its keys overlay the top-level sections.
    ``cli_overrides`` maps dotpaths such as ``"request.model"`` to values.
    """
    data: dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path).expanduser()
        if path.is_file():
            data = _read_yaml(path)

    profiles = data.get("profiles") or {}
    if profile and profiles.get(profile):
        data = _overlay(data, profiles[profile])

    cfg = GptChatConfig(
        api=_section(ApiConfig, data.get("api")),
        request=_section(RequestConfig, data.get("request")),
        conversation=_section(ConversationConfig, data.get("conversation")),
        client=_section(ClientConfig, data.get("client")),
        profiles=profiles,
    )

    for dotpath, value in {**_env_overrides(), **(cli_overrides or {})}.items():
        _set_path(cfg, dotpath, value)
    return cfg
