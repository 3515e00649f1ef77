"""Core turn loop.

This module contains the functions that drive one turn of a
conversation: call the provider, record its answer, execute the tools
it asked for, feed the results back and repeat until the model answers
without requesting tools.

Two variants share the same body.  :func:`run_loop_blocking` uses the
provider's ``complete`` call and emits the final text as a single
``text`` event.  :func:`run_loop_streaming` consumes the provider's
fragment stream through :class:`~agentcore.aggregator.DeltaAggregator`
and emits text as it arrives.

Both return the :class:`~agentcore.agent_types.TurnResult` on success.
On failure they push exactly one ``error`` event onto the stream and
return ``None``; the caller pushes the ``done`` event for a result.
Unexpected exceptions anywhere in the loop are caught by a guard and
converted into that single error event.

The loop owns no state.  History lives in the agent and is reached
through the callables of :class:`AgentLoopConfig`, which copy on read
and append under the agent's lock.
"""

from __future__ import annotations

import contextlib
import copy
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .agent_types import ROLE_TOOL_RESULT, AgentMessage, Provider, ProviderOptions, TurnResult
from .aggregator import aggregate_stream
from .errors import AgentPanicError
from .event_stream import EventStream
from .events import AgentEvent
from .retry import RetryPolicy
from .signals import CancelScope
from .tool_execution import execute_tool_calls
from .tools import ToolRegistry

logger = logging.getLogger(__name__)


###############################################################################
# Configuration objects
###############################################################################


@dataclass
class AgentLoopConfig:
    """Collaborators of one turn loop.

    Parameters
    ----------
    provider : Provider
        LLM backend called once per iteration.
    snapshot_messages : callable
        Returns a copy of the full history.
    append_message : callable
        Appends one message to the shared history.
    messages_since : callable
        Returns a copy of the history from the given index on.
    build_options : callable
        Returns the :class:`ProviderOptions` for the next call (system
        prompt, token budget, tool schemas).
    tool_registry : ToolRegistry, optional
        Tools the model may call.
    retry_policy : RetryPolicy, optional
        Retry policy for tool executions.
    scope : CancelScope, optional
        Checked at the top of every iteration.
    on_step : callable, optional
        Invoked after every provider call, used for agent wide counters.
    agent_id : str
        Forwarded to tools and used in log records.
    """

    provider: Provider
    snapshot_messages: Callable[[], List[AgentMessage]]
    append_message: Callable[[AgentMessage], None]
    messages_since: Callable[[int], List[AgentMessage]]
    build_options: Callable[[], ProviderOptions]
    tool_registry: Optional[ToolRegistry] = None
    retry_policy: Optional[RetryPolicy] = None
    scope: Optional[CancelScope] = None
    on_step: Optional[Callable[[], None]] = None
    agent_id: str = ""


AgentStream = EventStream[AgentEvent, TurnResult]


###############################################################################
# Helper functions
###############################################################################


def usage_tokens(message: AgentMessage) -> int:
    """Total tokens reported by the provider for ``message``, or 0."""
    usage: Dict[str, Any] = message.usage or {}
    for key in ("total_tokens", "totalTokens"):
        value = usage.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return 0


async def _stream_message(
    provider: Provider,
    messages: List[AgentMessage],
    options: ProviderOptions,
    stream: AgentStream,
) -> AgentMessage:
    chunks = provider.stream(messages, options)
    if inspect.isawaitable(chunks):
        chunks = await chunks
    if hasattr(chunks, "aclose"):
        async with contextlib.aclosing(chunks):
            return await aggregate_stream(chunks, stream.push)
    return await aggregate_stream(chunks, stream.push)


def _build_result(
    config: AgentLoopConfig,
    start_index: int,
    text: str,
    tools_used: List[str],
    step_count: int,
    total_tokens: int,
) -> TurnResult:
    return TurnResult(
        text=text,
        messages=config.messages_since(start_index),
        tools_used=list(tools_used),
        step_count=step_count,
        total_tokens=total_tokens,
    )


###############################################################################
# Main loop functions
###############################################################################


async def _run_loop(
    config: AgentLoopConfig,
    stream: AgentStream,
    start_index: int,
    streaming: bool,
) -> Optional[TurnResult]:
    tools_used: List[str] = []
    step_count = 0
    total_tokens = 0

    while True:
        if config.scope is not None:
            err = config.scope.error()
            if err is not None:
                logger.info("turn loop interrupted (agent_id=%s): %s", config.agent_id, err)
                await stream.push(AgentEvent.failed(err))
                return None

        step_count += 1
        messages = config.snapshot_messages()
        options = config.build_options()
        try:
            if streaming:
                message = await _stream_message(config.provider, messages, options, stream)
            else:
                message = await config.provider.complete(messages, options)
        except Exception as exc:
            logger.error("provider call failed (agent_id=%s, step=%d): %s", config.agent_id, step_count, exc)
            await stream.push(AgentEvent.failed(exc))
            return None
        if config.on_step is not None:
            config.on_step()

        config.append_message(message)
        total_tokens += usage_tokens(message)

        tool_calls = message.tool_calls()
        if not tool_calls:
            text = message.text()
            # Streaming mode already emitted the text chunk by chunk
            if not streaming and text:
                await stream.push(AgentEvent.text_delta(text))
            return _build_result(config, start_index, text, tools_used, step_count, total_tokens)

        for tool_call in tool_calls:
            await stream.push(AgentEvent.tool_call_requested(copy.deepcopy(tool_call)))

        batch = await execute_tool_calls(
            config.tool_registry,
            tool_calls,
            stream.push,
            retry_policy=config.retry_policy,
            scope=config.scope,
            agent_id=config.agent_id,
        )
        tools_used.extend(batch.tools_used)

        config.append_message(AgentMessage(role=ROLE_TOOL_RESULT, content=list(batch.results)))

        if batch.cancelled is not None:
            await stream.push(AgentEvent.failed(batch.cancelled))
            return None


async def _guarded(
    config: AgentLoopConfig,
    stream: AgentStream,
    start_index: int,
    streaming: bool,
    label: str,
) -> Optional[TurnResult]:
    try:
        return await _run_loop(config, stream, start_index, streaming)
    except Exception as exc:
        logger.error("panic in %s (agent_id=%s)", label, config.agent_id, exc_info=True)
        panic = AgentPanicError(f"{label} panic: {exc}")
        panic.__cause__ = exc
        await stream.push(AgentEvent.failed(panic))
        return None


async def run_loop_blocking(config: AgentLoopConfig, stream: AgentStream, start_index: int) -> Optional[TurnResult]:
    """Run a turn with blocking provider calls.

    Events: ``tool_call`` and ``tool_result`` events for every tool
    round, then one ``text`` event with the complete answer (when it is
    not empty).  Returns the turn result, or ``None`` after having
    pushed an ``error`` event.
    """
    return await _guarded(config, stream, start_index, streaming=False, label="execution loop")


async def run_loop_streaming(config: AgentLoopConfig, stream: AgentStream, start_index: int) -> Optional[TurnResult]:
    """Run a turn with streaming provider calls.

    Text and reasoning fragments are pushed as they arrive; tool calls
    are reconstructed from their deltas once each provider stream
    ends.  Returns the turn result, or ``None`` after having pushed an
    ``error`` event.
    """
    return await _guarded(config, stream, start_index, streaming=True, label="streaming loop")
