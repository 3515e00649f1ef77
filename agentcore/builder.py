"""Fluent construction of agents.

:class:`AgentBuilder` collects settings through chained calls and
assembles the :class:`~agentcore.agent.Agent` the first time it is
needed.  Setter problems (a non-positive token budget, an unreadable
prompt file, an API key that no source provides) are recorded rather
than raised, and reported together by :meth:`AgentBuilder.build` as a
:class:`~agentcore.errors.BuildError`.

Construction runs at most once per builder: the outcome, agent or
error, is memoised in a :class:`OnceCell` and every later caller
observes the same instance or the same failure.

Example usage::

    agent = await (
        AgentBuilder()
        .name("helper")
        .model("gpt-4o-mini")
        .api_key_from(EnvSource(["OPENAI_API_KEY"]))
        .tools(calculator)
        .build()
    )

:func:`quick` answers a single message with a throwaway agent.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, Set, TypeVar

from .agent import Agent
from .agent_loop import AgentStream
from .agent_types import Provider, Tool, ToolServer, TurnResult
from .config import (
    DEFAULT_QUICK_MODEL,
    AgentConfig,
    CredentialSource,
    clone_config,
    config_from_env,
    default_config,
    resolve_api_key,
    resolve_model,
    validate_config,
)
from .errors import AgentError, BuildError, ConfigError
from .event_stream import DEFAULT_QUEUE_SIZE, EventStream
from .events import AgentEvent
from .logging_utils import make_event_logger
from .proxy import ProxyProvider
from .retry import RetryPolicy, default_retry_policy
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OnceCell(Generic[T]):
    """Single assignment cell memoising a value or a construction error.

    ``get_or_init`` runs its factory at most once, under a lock.  If the
    factory raises, the exception is stored and re-raised to every
    later caller; the factory is never retried.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._async_lock: Optional[asyncio.Lock] = None
        self._initialized = False
        self._value: Optional[T] = None
        self._error: Optional[BaseException] = None

    @property
    def initialized(self) -> bool:
        with self._lock:
            return self._initialized

    def get(self) -> Optional[T]:
        """Return the value if construction succeeded, otherwise ``None``."""
        with self._lock:
            return self._value if self._initialized and self._error is None else None

    def _outcome(self) -> T:
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore[return-value]

    def get_or_init(self, factory: Callable[[], T]) -> T:
        with self._lock:
            if not self._initialized:
                try:
                    self._value = factory()
                except Exception as exc:
                    self._error = exc
                self._initialized = True
            return self._outcome()

    async def get_or_init_async(self, factory: Callable[[], Awaitable[T]]) -> T:
        """Async variant of :meth:`get_or_init` for coroutine factories."""
        if self._async_lock is None:
            self._async_lock = asyncio.Lock()
        async with self._async_lock:
            with self._lock:
                if self._initialized:
                    return self._outcome()
            value: Optional[T] = None
            error: Optional[BaseException] = None
            try:
                value = await factory()
            except Exception as exc:
                error = exc
            with self._lock:
                self._value = value
                self._error = error
                self._initialized = True
                return self._outcome()


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class AgentBuilder:
    """Fluent builder for :class:`~agentcore.agent.Agent`.

    Every setter returns the builder itself.  Nothing is connected or
    created before :meth:`build` (or the first :meth:`run` /
    :meth:`chat`).
    """

    def __init__(self, config: Optional[AgentConfig] = None) -> None:
        self._config = clone_config(config) if config is not None else default_config()
        self._registry: Optional[ToolRegistry] = None
        self._servers: List[ToolServer] = []
        self._provider: Optional[Provider] = None
        self._retry_policy: Optional[RetryPolicy] = None
        self._event_queue_size = DEFAULT_QUEUE_SIZE
        self._log_level: Optional[str] = None
        self._log_sink: Callable[[str], None] = print
        self._errors: List[BaseException] = []
        self._cell: OnceCell[Agent] = OnceCell()
        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_agent(cls, agent: Agent) -> "AgentBuilder":
        """Start from a copy of an existing agent's configuration.

        The identifier is cleared so that the new agent gets its own.
        """
        builder = cls(agent.config)
        builder._config.id = ""
        return builder

    # ------------------------------------------------------------------
    # Identity

    def id(self, agent_id: str) -> "AgentBuilder":
        self._config.id = agent_id
        return self

    def name(self, name: str) -> "AgentBuilder":
        self._config.name = name
        return self

    def parent(self, parent_id: str) -> "AgentBuilder":
        self._config.parent_id = parent_id
        return self

    # ------------------------------------------------------------------
    # LLM

    def model(self, model: str) -> "AgentBuilder":
        self._config.llm.model = model
        return self

    def api_key(self, key: str) -> "AgentBuilder":
        self._config.llm.api_key = key
        return self

    def api_key_from(self, *sources: CredentialSource) -> "AgentBuilder":
        """Resolve the API key now from ``sources`` (default: environment)."""
        key = resolve_api_key(sources or None)
        if key:
            self._config.llm.api_key = key
        else:
            self._errors.append(AgentError("no API key found in the configured sources"))
        return self

    def base_url(self, url: str) -> "AgentBuilder":
        self._config.llm.base_url = url
        return self

    def max_tokens(self, n: int) -> "AgentBuilder":
        if n <= 0:
            self._errors.append(AgentError("max_tokens must be positive"))
            return self
        self._config.max_tokens = n
        return self

    def temperature(self, value: float) -> "AgentBuilder":
        self._config.temperature = value
        return self

    def provider(self, provider: Provider) -> "AgentBuilder":
        self._provider = provider
        return self

    # ------------------------------------------------------------------
    # Prompt and environment

    def system(self, prompt: str) -> "AgentBuilder":
        self._config.system_prompt = prompt
        return self

    def system_from_file(self, path: str) -> "AgentBuilder":
        try:
            with open(path, "r", encoding="utf-8") as handle:
                self._config.system_prompt = handle.read()
        except OSError as exc:
            self._errors.append(AgentError(f"read system prompt file: {exc}"))
        return self

    def work_dir(self, path: str) -> "AgentBuilder":
        self._config.work_dir = path
        return self

    # ------------------------------------------------------------------
    # Tools

    def _ensure_registry(self) -> ToolRegistry:
        if self._registry is None:
            self._registry = ToolRegistry()
        return self._registry

    def tools(self, *tools: Tool) -> "AgentBuilder":
        registry = self._ensure_registry()
        for tool in tools:
            try:
                registry.register(tool)
            except ValueError as exc:
                self._errors.append(exc)
        return self

    def tools_from_registry(self, registry: ToolRegistry, *names: str) -> "AgentBuilder":
        """Copy the named tools out of ``registry``."""
        for name in names:
            tool = registry.get(name)
            if tool is None:
                self._errors.append(AgentError(f"tool not found: {name}"))
                continue
            self._ensure_registry().register(tool)
        return self

    def tool_registry(self, registry: ToolRegistry) -> "AgentBuilder":
        self._registry = registry
        return self

    def tool_server(self, server: ToolServer) -> "AgentBuilder":
        self._servers.append(server)
        return self

    def tool_servers(self, *servers: ToolServer) -> "AgentBuilder":
        self._servers.extend(servers)
        return self

    # ------------------------------------------------------------------
    # Execution settings

    def retry_policy(self, policy: RetryPolicy) -> "AgentBuilder":
        self._retry_policy = policy
        return self

    def max_retries(self, n: int) -> "AgentBuilder":
        base = self._retry_policy if self._retry_policy is not None else default_retry_policy()
        self._retry_policy = base.with_max_retries(n)
        return self

    def event_queue_size(self, n: int) -> "AgentBuilder":
        self._event_queue_size = n
        return self

    def event_logger(self, level: str = "simple", sink: Callable[[str], None] = print) -> "AgentBuilder":
        """Print agent events at ``level`` (quiet, simple, full or debug) to ``sink``."""
        self._log_level = level
        self._log_sink = sink
        return self

    # ------------------------------------------------------------------
    # Configuration sources

    def from_config(self, config: Optional[AgentConfig]) -> "AgentBuilder":
        if config is not None:
            self._config = clone_config(config)
        return self

    def from_env(self, prefix: str = "AGENT_") -> "AgentBuilder":
        self._config = config_from_env(prefix, base=self._config)
        return self

    def to_config(self) -> AgentConfig:
        return clone_config(self._config)

    # ------------------------------------------------------------------
    # Construction

    async def build(self) -> Agent:
        """Assemble the agent, once.

        Raises
        ------
        BuildError
            When a setter recorded a problem, the configuration is
            invalid, configured tool names are missing from the
            registry, or a tool server fails to connect or load.
        """
        return await self._cell.get_or_init_async(self._build_agent)

    async def _build_agent(self) -> Agent:
        errors = list(self._errors)
        try:
            validate_config(self._config)
        except ConfigError as exc:
            errors.append(exc)
        if errors:
            raise BuildError(errors)

        config = clone_config(self._config)
        registry = self._registry

        if config.tools and registry is not None:
            missing = [name for name in config.tools if not registry.has(name)]
            if missing:
                raise BuildError([AgentError(f"tools not found in registry: {', '.join(missing)}")])

        if self._servers:
            registry = self._ensure_registry()
            for server in self._servers:
                name = getattr(server, "name", "") or type(server).__name__
                try:
                    await server.connect()
                    tools = await server.load_tools()
                except Exception as exc:
                    logger.error("tool server setup failed (server=%s): %s", name, exc)
                    await self._close_servers()
                    raise BuildError([AgentError(f"tool server {name}: {exc}")]) from exc
                for tool in tools:
                    try:
                        registry.register(tool)
                    except ValueError as exc:
                        logger.warning("register tool failed (server=%s): %s", name, exc)
                    else:
                        logger.info("registered tool (server=%s, tool=%s)", name, tool.name)

        provider = self._provider
        if provider is None:
            provider = ProxyProvider(
                config.llm.base_url,
                api_key=config.llm.api_key or None,
                model=config.llm.model,
                timeout=config.llm.timeout,
                max_retries=config.llm.max_retries,
            )

        agent = Agent(
            config,
            provider,
            tool_registry=registry,
            tool_servers=self._servers,
            retry_policy=self._retry_policy,
            event_queue_size=self._event_queue_size,
        )
        if self._log_level is not None:
            agent.subscribe(make_event_logger(self._log_level, self._log_sink))
        logger.info("agent built (agent_id=%s, tools=%d)", agent.id, len(registry) if registry is not None else 0)
        return agent

    async def _close_servers(self) -> None:
        for server in self._servers:
            try:
                await _maybe_await(server.close())
            except Exception as exc:
                logger.warning("close tool server failed: %s", exc)

    # ------------------------------------------------------------------
    # Delegation

    def run(self, text: str, **kwargs: Any) -> AgentStream:
        """Start a turn on the built agent.

        The agent is built on first use inside the turn's task.  A
        build failure is reported as the stream's single error event.
        """
        agent = self._cell.get()
        if agent is not None:
            return agent.run(text, **kwargs)

        loop = asyncio.get_running_loop()
        outer: AgentStream = EventStream(self._event_queue_size)

        async def _forward() -> None:
            try:
                try:
                    built = await self.build()
                except Exception as exc:
                    await outer.push(AgentEvent.failed(exc))
                    return
                inner = built.run(text, **kwargs)
                async for event in inner:
                    await outer.push(event)
            finally:
                await outer.end(None)

        task = loop.create_task(_forward())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return outer

    async def chat(self, text: str, **kwargs: Any) -> TurnResult:
        agent = await self.build()
        return await agent.chat(text, **kwargs)

    async def close(self) -> None:
        """Close the built agent, if any."""
        agent = self._cell.get()
        if agent is not None:
            await agent.close()


async def quick(
    message: str,
    *,
    model: Optional[str] = None,
    api_key: Optional[str] = None,
    system: Optional[str] = None,
    max_tokens: Optional[int] = None,
    provider: Optional[Provider] = None,
    model_sources: Optional[Sequence[CredentialSource]] = None,
    key_sources: Optional[Sequence[CredentialSource]] = None,
) -> TurnResult:
    """Answer ``message`` with a temporary agent and close it.

    The model and API key default to the first value found in the
    environment (``LLM_MODEL``, ``OPENAI_MODEL``, ``MODEL`` and the usual
    API key variables), then to ``gpt-4o-mini`` and no key.
    """
    builder = AgentBuilder()
    builder.model(model or resolve_model(model_sources) or DEFAULT_QUICK_MODEL)
    builder.api_key(api_key or resolve_api_key(key_sources) or "")
    if system:
        builder.system(system)
    if max_tokens is not None:
        builder.max_tokens(max_tokens)
    if provider is not None:
        builder.provider(provider)
    try:
        return await builder.chat(message)
    finally:
        await builder.close()
