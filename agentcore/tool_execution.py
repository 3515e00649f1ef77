"""Execution of the tool calls requested in one model turn.

:func:`execute_tool_calls` runs a batch sequentially, in the order the
model requested the calls, and produces exactly one result block and
one ``tool_result`` event per call, whatever happens to it:

* unknown tool - ``Error: tool '<name>' not found``;
* arguments that cannot be JSON encoded - ``Error: failed to marshal
  arguments: ...``;
* application error (:class:`~agentcore.errors.ToolError` raised, or
  :meth:`ToolResult.failure` returned) - ``Error: <message>``;
* any other exception - ``Tool execution panic: <Type>: <message>``.

Every call runs under its own failure boundary, so one broken tool
never aborts its siblings or the turn loop.  When a retry policy with
a positive budget is configured, failures classified as retriable are
retried with backoff.  If the cancellation scope fires while a retry is
waiting, the current and remaining calls are reported as skipped and
the cancellation error is handed back to the loop.
"""

from __future__ import annotations

import inspect
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from .agent_types import Tool, ToolCallContent, ToolResultContent
from .errors import (
    AgentCancelledError,
    AgentError,
    AgentStoppedError,
    NoToolRegistryError,
    ToolError,
    ToolNotFoundError,
    is_transient,
)
from .events import AgentEvent, ToolExecutionResult
from .retry import RetryPolicy, retry_with_backoff
from .signals import CancelScope
from .tools import ToolContext, ToolMetadata, ToolRegistry

logger = logging.getLogger(__name__)

RESULT_PREVIEW_CHARS = 200

Emit = Callable[[AgentEvent], Awaitable[None]]


@dataclass
class ToolBatchResult:
    """Results of one batch, index-aligned with the submitted calls."""

    results: List[ToolResultContent] = field(default_factory=list)
    tools_used: List[str] = field(default_factory=list)
    cancelled: Optional[AgentError] = None


def truncate_string(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."


def format_output(value: Any) -> str:
    """Render a tool's output as the text fed back to the model."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def _invoke(tool: Tool, input_json: str, context: ToolContext, metadata: ToolMetadata) -> Any:
    """Run one attempt of a tool, preferring the result-returning form."""
    execute_result = getattr(tool, "execute_result", None)
    if execute_result is not None:
        result = await _maybe_await(execute_result(input_json, context))
        meta = getattr(result, "metadata", None)
        if meta is not None:
            metadata.tool_name = meta.tool_name or metadata.tool_name
            metadata.duration = meta.duration
            metadata.cached = meta.cached
            metadata.retries = meta.retries
        if getattr(result, "is_error", False):
            err = result.error
            if isinstance(err, ToolError):
                raise err
            raise ToolError(str(err), transient=is_transient(err)) from err
        return getattr(result, "value", None)
    # Legacy tools
    return await _maybe_await(tool.execute(input_json, context))


class _Outcome:
    __slots__ = ("content", "is_error")

    def __init__(self, content: str, is_error: bool) -> None:
        self.content = content
        self.is_error = is_error


async def _execute_one(
    registry: ToolRegistry,
    tool_call: ToolCallContent,
    retry_policy: Optional[RetryPolicy],
    scope: Optional[CancelScope],
    agent_id: str,
) -> _Outcome:
    tool = registry.get(tool_call.name)
    if tool is None:
        logger.warning("tool not found: %s", tool_call.name)
        return _Outcome(f"Error: {ToolNotFoundError(tool_call.name)}", True)

    try:
        input_json = json.dumps(tool_call.arguments, ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as exc:
        logger.error("failed to marshal arguments for %s: %s", tool_call.name, exc)
        return _Outcome(f"Error: failed to marshal arguments: {exc}", True)

    context = ToolContext(agent_id=agent_id, tool_call_id=tool_call.id, scope=scope)
    metadata = ToolMetadata()
    started = time.monotonic()

    async def operation() -> Any:
        return await _invoke(tool, input_json, context, metadata)

    logger.debug("executing tool %s", tool_call.name)
    retries = 0
    try:
        if retry_policy is not None and retry_policy.max_retries > 0:
            output, retries = await retry_with_backoff(operation, retry_policy, scope)
        else:
            output = await operation()
    except (AgentCancelledError, AgentStoppedError):
        raise
    except ToolError as exc:
        logger.error("tool execution failed (tool=%s): %s", tool_call.name, exc)
        return _Outcome(f"Error: {exc}", True)
    except Exception as exc:
        logger.error("panic in tool execution (tool=%s, agent_id=%s)", tool_call.name, agent_id, exc_info=True)
        return _Outcome(f"Tool execution panic: {type(exc).__name__}: {exc}", True)

    if metadata.retries == 0:
        metadata.retries = retries
    if metadata.duration <= 0:
        metadata.duration = time.monotonic() - started
    logger.debug(
        "tool metadata (tool=%s, duration=%.3fs, cached=%s, retries=%d)",
        tool_call.name,
        metadata.duration,
        metadata.cached,
        metadata.retries,
    )
    return _Outcome(format_output(output), False)


async def execute_tool_calls(
    registry: Optional[ToolRegistry],
    tool_calls: Sequence[ToolCallContent],
    emit: Emit,
    *,
    retry_policy: Optional[RetryPolicy] = None,
    scope: Optional[CancelScope] = None,
    agent_id: str = "",
) -> ToolBatchResult:
    """Execute a batch of tool calls and report every outcome.

    Parameters
    ----------
    registry : ToolRegistry or None
        Tools available to the model.  Without a registry every call
        is answered with a ``tool registry not initialized`` error.
    tool_calls : sequence of ToolCallContent
        The calls from one assistant message, in the model's order.
    emit : coroutine function
        Receives one ``tool_result`` event per call as soon as its
        outcome, retries included, is known.
    retry_policy : RetryPolicy, optional
        Applied when its ``max_retries`` is positive.
    scope : CancelScope, optional
        Raced against retry waits and handed to tools.
    agent_id : str
        Forwarded to tools through :class:`ToolContext`.

    Returns
    -------
    ToolBatchResult
        One result block and one used-name entry per call.
        ``cancelled`` is set when the batch was interrupted.
    """
    batch = ToolBatchResult()
    if registry is None:
        logger.error("tool registry not configured")

    logger.info("executing tools (count=%d)", len(tool_calls))
    for tool_call in tool_calls:
        batch.tools_used.append(tool_call.name)
        logger.info("tool call (tool=%s, id=%s)", tool_call.name, tool_call.id)

        if batch.cancelled is not None:
            outcome = _Outcome(f"Error: skipped, {batch.cancelled}", True)
        elif registry is None:
            outcome = _Outcome(f"Error: {NoToolRegistryError()}", True)
        else:
            try:
                outcome = await _execute_one(registry, tool_call, retry_policy, scope, agent_id)
            except (AgentCancelledError, AgentStoppedError) as exc:
                logger.info("tool execution cancelled (tool=%s): %s", tool_call.name, exc)
                batch.cancelled = exc
                outcome = _Outcome(f"Error: {exc}", True)

        logger.info("tool result (tool=%s): %s", tool_call.name, truncate_string(outcome.content, RESULT_PREVIEW_CHARS))
        block = ToolResultContent(tool_call_id=tool_call.id, content=outcome.content, is_error=outcome.is_error)
        batch.results.append(block)
        await emit(
            AgentEvent.tool_result_ready(
                ToolExecutionResult(
                    tool_call_id=tool_call.id,
                    name=tool_call.name,
                    content=outcome.content,
                    is_error=outcome.is_error,
                )
            )
        )

    logger.info("tools executed (count=%d)", len(batch.results))
    return batch
