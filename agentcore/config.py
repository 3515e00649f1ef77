"""Agent configuration.

:class:`AgentConfig` gathers the settings of one agent: identity,
system prompt, LLM connection, token budget and the names of the tools
it expects.  Configurations are plain dataclasses; agents keep their
own deep copy (:func:`clone_config`) so that later edits by the caller
never leak into a running agent.

Settings can be read from the environment with :func:`config_from_env`.
API keys are resolved through explicit credential sources
(:class:`EnvSource`, :class:`DotenvSource`, :class:`StaticSource`)
rather than by scanning the process environment implicitly.
"""

from __future__ import annotations

import copy
import dataclasses
import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from dotenv import dotenv_values

from .errors import ConfigError

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant."
DEFAULT_MODEL = "anthropic/claude-haiku-4.5"
DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MAX_TOKENS = 4096
DEFAULT_TEMPERATURE = 0.7
DEFAULT_WORK_DIR = "."
DEFAULT_QUICK_MODEL = "gpt-4o-mini"

DEFAULT_API_KEY_ENV_VARS = (
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "OPENROUTER_API_KEY",
    "LLM_API_KEY",
    "API_KEY",
)
DEFAULT_MODEL_ENV_VARS = ("LLM_MODEL", "OPENAI_MODEL", "MODEL")


###############################################################################
# Configuration objects
###############################################################################


@dataclass
class LLMConfig:
    """Connection settings for the LLM backend.

    ``timeout`` is in seconds, ``None`` meaning no client side limit.
    ``extra`` is forwarded untouched to the provider.
    """

    type: str = "openai"
    api_key: str = ""
    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    timeout: Optional[float] = None
    max_retries: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AgentConfig:
    id: str = ""
    name: str = ""
    parent_id: str = ""
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    llm: LLMConfig = field(default_factory=LLMConfig)
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = DEFAULT_TEMPERATURE
    tools: List[str] = field(default_factory=list)
    work_dir: str = DEFAULT_WORK_DIR
    metadata: Dict[str, Any] = field(default_factory=dict)


def default_config() -> AgentConfig:
    return AgentConfig()


def clone_config(config: AgentConfig) -> AgentConfig:
    """Return a deep copy of ``config``."""
    return copy.deepcopy(config)


def validate_config(config: AgentConfig) -> None:
    """Check ``config`` and raise :class:`ConfigError` listing every problem."""
    problems: List[str] = []
    if config.max_tokens < 0:
        problems.append(f"max_tokens must not be negative (got {config.max_tokens})")
    if not 0.0 <= config.temperature <= 2.0:
        problems.append(f"temperature must be within [0, 2] (got {config.temperature})")
    if config.llm.timeout is not None and config.llm.timeout < 0:
        problems.append(f"llm.timeout must not be negative (got {config.llm.timeout})")
    if config.llm.max_retries < 0:
        problems.append(f"llm.max_retries must not be negative (got {config.llm.max_retries})")
    if any(not str(name).strip() for name in config.tools):
        problems.append("tool names must not be empty")
    if problems:
        raise ConfigError(problems)


def config_to_dict(config: AgentConfig, *, redact_secrets: bool = True) -> Dict[str, Any]:
    """Export ``config`` as a plain dictionary.

    The API key is masked unless ``redact_secrets`` is false.
    """
    data = dataclasses.asdict(config)
    if redact_secrets and data["llm"].get("api_key"):
        data["llm"]["api_key"] = "***"
    return data


def config_to_json(config: AgentConfig, *, redact_secrets: bool = True, indent: Optional[int] = 2) -> str:
    return json.dumps(config_to_dict(config, redact_secrets=redact_secrets), indent=indent, default=str)


###############################################################################
# Environment parsing
###############################################################################


def _env(environ: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return os.environ if environ is None else environ


def parse_float_env(name: str, default: Optional[float], environ: Optional[Mapping[str, str]] = None) -> Optional[float]:
    value = _env(environ).get(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def parse_int_env(name: str, default: int, environ: Optional[Mapping[str, str]] = None) -> int:
    value = _env(environ).get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def parse_list_env(name: str, default: Sequence[str], environ: Optional[Mapping[str, str]] = None) -> List[str]:
    value = _env(environ).get(name)
    if value is None:
        return list(default)
    items: List[str] = []
    seen = set()
    for raw in str(value).split(","):
        item = raw.strip()
        if not item or item in seen:
            continue
        items.append(item)
        seen.add(item)
    return items


def config_from_env(
    prefix: str = "AGENT_",
    environ: Optional[Mapping[str, str]] = None,
    base: Optional[AgentConfig] = None,
) -> AgentConfig:
    """Build an :class:`AgentConfig` from ``<prefix>*`` environment variables.

    Unset variables keep the values of ``base`` (the defaults when no
    base is given) and numbers that fail to parse keep them as well.
    Recognised names (after the prefix): ``NAME``, ``PROMPT``,
    ``LLM_TYPE``, ``LLM_MODEL``, ``LLM_API_KEY``, ``LLM_BASE_URL``,
    ``LLM_TIMEOUT``, ``LLM_MAX_RETRIES``, ``MAX_TOKENS``,
    ``TEMPERATURE``, ``WORK_DIR`` and ``TOOLS`` (comma separated).
    """
    env = _env(environ)
    config = clone_config(base) if base is not None else default_config()

    def get(key: str, default: str) -> str:
        return env.get(prefix + key, default)

    config.name = get("NAME", config.name)
    config.system_prompt = get("PROMPT", config.system_prompt)
    config.work_dir = get("WORK_DIR", config.work_dir)
    config.max_tokens = parse_int_env(prefix + "MAX_TOKENS", config.max_tokens, env)
    config.temperature = parse_float_env(prefix + "TEMPERATURE", config.temperature, env)  # type: ignore[assignment]
    config.tools = parse_list_env(prefix + "TOOLS", config.tools, env)

    llm = config.llm
    llm.type = get("LLM_TYPE", llm.type)
    llm.model = get("LLM_MODEL", llm.model)
    llm.api_key = get("LLM_API_KEY", llm.api_key)
    llm.base_url = get("LLM_BASE_URL", llm.base_url)
    llm.timeout = parse_float_env(prefix + "LLM_TIMEOUT", llm.timeout, env)
    llm.max_retries = parse_int_env(prefix + "LLM_MAX_RETRIES", llm.max_retries, env)
    return config


###############################################################################
# Credential sources
###############################################################################


class CredentialSource(Protocol):
    def lookup(self) -> Optional[str]:
        ...  # pragma: no cover


class EnvSource:
    """Look up the first non-empty variable among ``names``."""

    def __init__(self, names: Iterable[str] = DEFAULT_API_KEY_ENV_VARS, environ: Optional[Mapping[str, str]] = None) -> None:
        self.names = tuple(names)
        self._environ = environ

    def lookup(self) -> Optional[str]:
        env = _env(self._environ)
        for name in self.names:
            value = env.get(name)
            if value:
                return value
        return None

    def __repr__(self) -> str:
        return f"EnvSource({', '.join(self.names)})"


class DotenvSource:
    """Read a value from a ``.env`` file without touching ``os.environ``."""

    def __init__(self, path: str = ".env", names: Iterable[str] = DEFAULT_API_KEY_ENV_VARS) -> None:
        self.path = path
        self.names = tuple(names)

    def lookup(self) -> Optional[str]:
        if not os.path.isfile(self.path):
            return None
        values = dotenv_values(self.path)
        for name in self.names:
            value = values.get(name)
            if value:
                return value
        return None

    def __repr__(self) -> str:
        return f"DotenvSource({self.path!r})"


class StaticSource:
    def __init__(self, value: Optional[str]) -> None:
        self.value = value

    def lookup(self) -> Optional[str]:
        return self.value or None

    def __repr__(self) -> str:
        return "StaticSource(***)"


def resolve_first(sources: Iterable[CredentialSource]) -> Optional[str]:
    """Return the first non-empty value produced by ``sources``, in order."""
    for source in sources:
        value = source.lookup()
        if value:
            return value
    return None


def default_key_sources(environ: Optional[Mapping[str, str]] = None) -> List[CredentialSource]:
    return [EnvSource(DEFAULT_API_KEY_ENV_VARS, environ)]


def default_model_sources(environ: Optional[Mapping[str, str]] = None) -> List[CredentialSource]:
    return [EnvSource(DEFAULT_MODEL_ENV_VARS, environ)]


def resolve_api_key(sources: Optional[Iterable[CredentialSource]] = None) -> Optional[str]:
    """Resolve an API key, by default from :data:`DEFAULT_API_KEY_ENV_VARS`."""
    return resolve_first(sources if sources is not None else default_key_sources())


def resolve_model(sources: Optional[Iterable[CredentialSource]] = None) -> Optional[str]:
    return resolve_first(sources if sources is not None else default_model_sources())
