"""agentcore Python package.

This package implements the execution core of a tool using LLM agent:
a turn loop that calls the model, runs the tools it requests, feeds
the results back and repeats until the model answers, in blocking or
streaming mode, with cancellation, retries and failure isolation.

The primary entry points are:

* :class:`agentcore.agent.Agent` - owns the conversation and exposes
  :meth:`~agentcore.agent.Agent.run` returning an event stream.
* :class:`agentcore.builder.AgentBuilder` - fluent assembly of agents.
* :func:`agentcore.builder.quick` - one-shot question to a temporary
  agent.
* :func:`agentcore.agent_loop.run_loop_blocking` and
  :func:`agentcore.agent_loop.run_loop_streaming` - the turn loop
  itself.
* :class:`agentcore.proxy.ProxyProvider` - HTTP provider talking to a
  proxy server.
* :func:`agentcore.logging_utils.setup_logging` and
  :func:`agentcore.logging_utils.make_event_logger` - log configuration
  and console rendering of agent events.

"""

from .agent import Agent
from .agent_loop import AgentLoopConfig, run_loop_blocking, run_loop_streaming
from .agent_types import (
    AgentMessage,
    AgentState,
    AgentStatus,
    ProviderOptions,
    StreamChunk,
    TextContent,
    ThinkingContent,
    ToolCallContent,
    ToolCallDelta,
    ToolResultContent,
    ToolSchema,
    TurnResult,
)
from .aggregator import DeltaAggregator
from .builder import AgentBuilder, OnceCell, quick
from .config import (
    AgentConfig,
    DotenvSource,
    EnvSource,
    LLMConfig,
    StaticSource,
    config_from_env,
    default_config,
    resolve_api_key,
    validate_config,
)
from .errors import (
    AgentCancelledError,
    AgentError,
    AgentStoppedError,
    AgentTimeoutError,
    BuildError,
    CloseError,
    ConfigError,
    NoToolRegistryError,
    ToolError,
    ToolNotFoundError,
)
from .event_stream import EventStream
from .events import AgentEvent, ToolExecutionResult
from .logging_utils import LOG_LEVELS, make_event_logger, resolve_log_level, setup_logging
from .proxy import ProxyProvider
from .retry import RetryPolicy, default_retry_policy, is_retriable, retry_with_backoff
from .tool_execution import execute_tool_calls
from .tools import ToolContext, ToolMetadata, ToolRegistry, ToolResult

__all__ = [
    "Agent",
    "AgentLoopConfig",
    "run_loop_blocking",
    "run_loop_streaming",
    "AgentMessage",
    "AgentState",
    "AgentStatus",
    "ProviderOptions",
    "StreamChunk",
    "TextContent",
    "ThinkingContent",
    "ToolCallContent",
    "ToolCallDelta",
    "ToolResultContent",
    "ToolSchema",
    "TurnResult",
    "DeltaAggregator",
    "AgentBuilder",
    "OnceCell",
    "quick",
    "AgentConfig",
    "DotenvSource",
    "EnvSource",
    "LLMConfig",
    "StaticSource",
    "config_from_env",
    "default_config",
    "resolve_api_key",
    "validate_config",
    "AgentCancelledError",
    "AgentError",
    "AgentStoppedError",
    "AgentTimeoutError",
    "BuildError",
    "CloseError",
    "ConfigError",
    "NoToolRegistryError",
    "ToolError",
    "ToolNotFoundError",
    "EventStream",
    "AgentEvent",
    "ToolExecutionResult",
    "LOG_LEVELS",
    "make_event_logger",
    "resolve_log_level",
    "setup_logging",
    "ProxyProvider",
    "RetryPolicy",
    "default_retry_policy",
    "is_retriable",
    "retry_with_backoff",
    "execute_tool_calls",
    "ToolContext",
    "ToolMetadata",
    "ToolRegistry",
    "ToolResult",
]
