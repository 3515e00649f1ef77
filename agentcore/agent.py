"""High level Agent class.

This module exposes the :class:`Agent` class which owns the shared
conversation state of one agent: its history, its tool registry, the
provider it talks to and the state machine
``READY -> RUNNING -> READY`` / ``READY|RUNNING -> STOPPING -> STOPPED``.

Each call to :meth:`Agent.run` schedules one turn as an independent
asyncio task and returns the bounded :class:`EventStream` the task
reports through.  The heavy lifting is delegated to the functions in
:mod:`agentcore.agent_loop`.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
import uuid
from typing import Any, Callable, List, Optional, Sequence, Set

from .agent_loop import AgentLoopConfig, AgentStream, run_loop_blocking, run_loop_streaming
from .agent_types import AgentMessage, AgentState, AgentStatus, Provider, ProviderOptions, Tool, ToolServer, TurnResult
from .config import AgentConfig, clone_config, default_config
from .errors import AgentError, AgentPanicError, AgentCancelledError, AgentStoppedError, CloseError, NoToolRegistryError
from .event_stream import DEFAULT_QUEUE_SIZE, EventStream
from .events import EVENT_DONE, EVENT_ERROR, AgentEvent
from .retry import RetryPolicy, default_retry_policy
from .signals import CancelScope
from .tools import ToolRegistry, build_tool_schemas, inject_tool_manual

logger = logging.getLogger(__name__)


def new_agent_id() -> str:
    return "agt-" + str(uuid.uuid4())


EventListener = Callable[[AgentEvent], None]


class _ListenedStream(EventStream):
    """Event stream that also hands every pushed event to the agent's listeners."""

    def __init__(self, maxsize: int, notify: EventListener) -> None:
        super().__init__(maxsize)
        self._notify = notify

    async def push(self, event: AgentEvent) -> None:
        self._notify(event)
        await super().push(event)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class Agent:
    """Stateful conversation manager.

    Parameters
    ----------
    config : AgentConfig, optional
        Agent settings.  A private deep copy is kept.  An empty ``id``
        is replaced with a fresh ``agt-<uuid>`` identifier.
    provider : Provider
        LLM backend.
    tool_registry : ToolRegistry, optional
        Tools the model may call.  Without a registry every requested
        tool call is answered with an error result.
    tool_servers : sequence of ToolServer, optional
        Connections hosting some of the registered tools.  The agent
        owns them and closes them on :meth:`close`.
    retry_policy : RetryPolicy, optional
        Policy applied to tool executions.  Defaults to
        :func:`agentcore.retry.default_retry_policy`.
    event_queue_size : int
        Capacity of the event stream returned by :meth:`run`.
    """

    def __init__(
        self,
        config: Optional[AgentConfig] = None,
        provider: Optional[Provider] = None,
        *,
        tool_registry: Optional[ToolRegistry] = None,
        tool_servers: Optional[Sequence[ToolServer]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        event_queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self._config = clone_config(config) if config is not None else default_config()
        if not self._config.id:
            self._config.id = new_agent_id()
        self._provider = provider
        self._tool_registry = tool_registry
        self._tool_servers: List[ToolServer] = list(tool_servers or ())
        self._retry_policy = retry_policy if retry_policy is not None else default_retry_policy()
        self._event_queue_size = event_queue_size

        self._lock = threading.RLock()
        self._state = AgentState.READY
        self._messages: List[AgentMessage] = []
        self._step_count = 0
        self._last_activity: Optional[float] = None
        self._active_runs = 0
        # Agent wide cancellation token and stop flag, both set by close()
        self._cancel = asyncio.Event()
        self._stop = asyncio.Event()
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[EventListener] = []

    # ------------------------------------------------------------------
    # Accessors

    @property
    def id(self) -> str:
        return self._config.id

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def parent_id(self) -> str:
        return self._config.parent_id

    @property
    def config(self) -> AgentConfig:
        """A deep copy of the agent's configuration."""
        with self._lock:
            return clone_config(self._config)

    @property
    def state(self) -> AgentState:
        with self._lock:
            return self._state

    @property
    def tool_registry(self) -> Optional[ToolRegistry]:
        return self._tool_registry

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    @property
    def provider(self) -> Optional[Provider]:
        return self._provider

    def status(self) -> AgentStatus:
        """Return a consistent snapshot of the agent's state and counters."""
        with self._lock:
            return AgentStatus(
                agent_id=self._config.id,
                state=self._state,
                step_count=self._step_count,
                message_count=len(self._messages),
                last_activity=self._last_activity,
                metadata=dict(self._config.metadata),
            )

    def messages(self) -> List[AgentMessage]:
        """Return a deep copy of the conversation history."""
        with self._lock:
            return [m.copy() for m in self._messages]

    def add_tool(self, tool: Tool) -> None:
        if self._tool_registry is None:
            raise NoToolRegistryError()
        self._tool_registry.register(tool)

    def remove_tool(self, name: str) -> None:
        if self._tool_registry is None:
            raise NoToolRegistryError()
        self._tool_registry.unregister(name)

    def subscribe(self, fn: EventListener) -> Callable[[], None]:
        """Register a listener called synchronously for every event of every run.

        Returns a function that removes the listener again.
        """
        with self._lock:
            self._listeners.append(fn)

        def _unsubscribe() -> None:
            with self._lock:
                if fn in self._listeners:
                    self._listeners.remove(fn)

        return _unsubscribe

    def _emit(self, event: AgentEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.warning("event listener failed (agent_id=%s)", self.id, exc_info=True)

    # ------------------------------------------------------------------
    # History

    def _append_message(self, message: AgentMessage) -> None:
        with self._lock:
            self._messages.append(message)
            self._last_activity = time.time()

    def _messages_since(self, index: int) -> List[AgentMessage]:
        with self._lock:
            return [m.copy() for m in self._messages[index:]]

    def _record_step(self) -> None:
        with self._lock:
            self._step_count += 1
            self._last_activity = time.time()

    def _build_options(self) -> ProviderOptions:
        with self._lock:
            system = self._config.system_prompt
            max_tokens = self._config.max_tokens
            temperature = self._config.temperature
        return ProviderOptions(
            system=inject_tool_manual(system, self._tool_registry),
            max_tokens=max_tokens,
            temperature=temperature,
            tools=build_tool_schemas(self._tool_registry),
        )

    def _loop_config(self, scope: CancelScope) -> AgentLoopConfig:
        return AgentLoopConfig(
            provider=self._provider,  # type: ignore[arg-type]
            snapshot_messages=self.messages,
            append_message=self._append_message,
            messages_since=self._messages_since,
            build_options=self._build_options,
            tool_registry=self._tool_registry,
            retry_policy=self._retry_policy,
            scope=scope,
            on_step=self._record_step,
            agent_id=self._config.id,
        )

    # ------------------------------------------------------------------
    # Running

    def run(
        self,
        text: str,
        *,
        streaming: bool = False,
        signal: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> AgentStream:
        """Start a turn and return its event stream.

        Must be called from a running event loop.  The turn runs as a
        separate task; drain the returned stream with ``async for``.
        The stream always carries exactly one ``done`` or ``error``
        event before it closes.

        Parameters
        ----------
        text : str
            The user message extending the history.
        streaming : bool
            Use the provider's streaming interface and emit text as it
            arrives.
        signal : asyncio.Event, optional
            Setting this event cancels the turn at its next iteration
            boundary or retry wait.
        timeout : float, optional
            Deadline for the whole turn, in seconds.
        """
        loop = asyncio.get_running_loop()
        stream: AgentStream = _ListenedStream(self._event_queue_size, self._emit)

        with self._lock:
            if self._state in (AgentState.STOPPING, AgentState.STOPPED):
                rejected = True
            else:
                rejected = False
                self._state = AgentState.RUNNING
                self._active_runs += 1
                start_index = len(self._messages)
                self._messages.append(AgentMessage.user(text))
                self._last_activity = time.time()

        if rejected:
            logger.warning("run rejected, agent is stopped (agent_id=%s)", self.id)
            task = loop.create_task(self._reject(stream))
        else:
            scope = CancelScope(signal, self._cancel, stop=self._stop, timeout=timeout)
            task = loop.create_task(self._execute(stream, start_index, streaming, scope))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return stream

    async def _reject(self, stream: AgentStream) -> None:
        try:
            await stream.push(AgentEvent.failed(AgentStoppedError()))
        finally:
            await stream.end()

    async def _execute(self, stream: AgentStream, start_index: int, streaming: bool, scope: CancelScope) -> None:
        result: Optional[TurnResult] = None
        try:
            logger.info("turn started (agent_id=%s, streaming=%s)", self.id, streaming)
            if self._provider is None:
                await stream.push(AgentEvent.failed(AgentError("no provider configured")))
                return
            runner = run_loop_streaming if streaming else run_loop_blocking
            result = await runner(self._loop_config(scope), stream, start_index)
            if result is not None:
                await stream.push(AgentEvent.done(result))
                logger.info(
                    "turn finished (agent_id=%s, steps=%d, tools=%d)",
                    self.id,
                    result.step_count,
                    len(result.tools_used),
                )
        except asyncio.CancelledError:
            logger.info("turn task cancelled (agent_id=%s)", self.id)
            await stream.push(AgentEvent.failed(AgentCancelledError()))
            raise
        except Exception as exc:
            logger.error("agent panic (agent_id=%s)", self.id, exc_info=True)
            panic = AgentPanicError(f"agent panic: {exc}")
            panic.__cause__ = exc
            await stream.push(AgentEvent.failed(panic))
        finally:
            with self._lock:
                self._active_runs -= 1
                if self._active_runs == 0 and self._state is AgentState.RUNNING:
                    self._state = AgentState.READY
            await stream.end(result)

    async def chat(
        self,
        text: str,
        *,
        signal: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> TurnResult:
        """Run a blocking turn and return its result.

        Raises the error carried by the terminal ``error`` event.
        """
        stream = self.run(text, signal=signal, timeout=timeout)
        result: Optional[TurnResult] = None
        error: Optional[BaseException] = None
        async for event in stream:
            if event.type == EVENT_DONE:
                result = event.result
            elif event.type == EVENT_ERROR:
                error = event.error
        if error is not None:
            raise error
        if result is None:
            raise AgentError("run ended without a result")
        return result

    # ------------------------------------------------------------------
    # Shutdown

    async def close(self) -> None:
        """Stop the agent and release its resources.

        Running turns observe the stop at their next iteration boundary
        or retry wait.  The provider and every tool server are closed
        even if some of them fail; the failures are raised together as
        a :class:`CloseError`.  Closing an agent that is already
        stopping or stopped does nothing.
        """
        with self._lock:
            if self._state in (AgentState.STOPPING, AgentState.STOPPED):
                return
            self._state = AgentState.STOPPING
        logger.info("stopping agent (agent_id=%s)", self.id)
        self._stop.set()
        self._cancel.set()

        errors: List[BaseException] = []
        if self._provider is not None:
            close = getattr(self._provider, "close", None)
            if close is not None:
                try:
                    await _maybe_await(close())
                except Exception as exc:
                    logger.error("close provider failed (agent_id=%s): %s", self.id, exc)
                    err = AgentError(f"close provider: {exc}")
                    err.__cause__ = exc
                    errors.append(err)
        for server in self._tool_servers:
            name = getattr(server, "name", "") or type(server).__name__
            try:
                await _maybe_await(server.close())
            except Exception as exc:
                logger.error("close tool server failed (server=%s): %s", name, exc)
                err = AgentError(f"close tool server {name}: {exc}")
                err.__cause__ = exc
                errors.append(err)

        with self._lock:
            self._state = AgentState.STOPPED
        logger.info("agent stopped (agent_id=%s, errors=%d)", self.id, len(errors))
        error = CloseError.join(errors)
        if error is not None:
            raise error

    async def __aenter__(self) -> "Agent":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
