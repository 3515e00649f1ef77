"""Type definitions for agentcore.

This module contains the dataclasses, enums and protocols used
throughout the agent implementation: message content blocks,
conversation messages, streaming fragments produced by providers,
the result of a turn and the status snapshot of an agent.

The emphasis here is on clarity rather than strict type checking.
All value classes are plain Python dataclasses.  Collaborators that
live outside the core (LLM providers, tools and tool hosting servers)
are described with :class:`typing.Protocol` classes so that any
object with the right shape can be plugged in.
"""

from __future__ import annotations

import copy
import dataclasses
import enum
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence, Union


###############################################################################
# Message content types
###############################################################################


@dataclass
class TextContent:
    """A chunk of plain text written by the user or the assistant."""

    type: str = "text"
    text: str = ""


@dataclass
class ThinkingContent:
    """Reasoning text surfaced by models that expose it."""

    type: str = "thinking"
    thinking: str = ""


@dataclass
class ToolCallContent:
    """A tool call requested by the assistant.

    ``arguments`` holds the structured input.  In blocking mode it
    arrives whole from the provider; in streaming mode it is parsed
    by :class:`agentcore.aggregator.DeltaAggregator` once the stream
    has ended.
    """

    type: str = "toolCall"
    id: str = ""
    name: str = ""
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResultContent:
    """The outcome of one tool call, fed back to the model."""

    type: str = "toolResult"
    tool_call_id: str = ""
    content: str = ""
    is_error: bool = False


# Union of all content item types
ContentItem = Union[TextContent, ThinkingContent, ToolCallContent, ToolResultContent]


###############################################################################
# Messages
###############################################################################

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_TOOL_RESULT = "toolResult"


@dataclass
class AgentMessage:
    """A message in the conversation history.

    ``role`` is one of ``"user"``, ``"assistant"`` or ``"toolResult"``.
    A tool result message bundles every result of one tool batch.
    ``usage`` is filled by providers that report token consumption and
    ``extras`` carries any provider specific metadata.
    """

    role: str
    content: List[ContentItem]
    timestamp: float = field(default_factory=time.time)
    usage: Optional[Dict[str, Any]] = None
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def user(cls, text: str) -> "AgentMessage":
        return cls(role=ROLE_USER, content=[TextContent(text=text)])

    @classmethod
    def assistant(cls, text: str = "", tool_calls: Sequence[ToolCallContent] = ()) -> "AgentMessage":
        content: List[ContentItem] = []
        if text:
            content.append(TextContent(text=text))
        content.extend(tool_calls)
        return cls(role=ROLE_ASSISTANT, content=content)

    def text(self) -> str:
        """Concatenate every text block of the message."""
        return "".join(item.text for item in self.content if isinstance(item, TextContent))

    def tool_calls(self) -> List[ToolCallContent]:
        """Return the tool call blocks in the order the model emitted them."""
        return [item for item in self.content if isinstance(item, ToolCallContent)]

    def copy(self) -> "AgentMessage":
        """Return an independent deep copy.

        History snapshots handed to callers and providers go through
        this method so that nobody outside the agent can mutate the
        stored messages.
        """
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Return a dictionary representation of the message.

        Content items are flattened with :func:`dataclasses.asdict`.
        ``usage`` is omitted when ``None`` and ``extras`` are merged
        last so that user defined keys override defaults.
        """
        data: Dict[str, Any] = {
            "role": self.role,
            "content": [dataclasses.asdict(item) for item in self.content],
            "timestamp": self.timestamp,
        }
        if self.usage is not None:
            data["usage"] = dict(self.usage)
        data.update(self.extras)
        return data


###############################################################################
# Streaming fragments
###############################################################################

CHUNK_TEXT = "text"
CHUNK_REASONING = "reasoning"
CHUNK_TOOL_CALL = "tool_call"
CHUNK_DONE = "done"


@dataclass
class ToolCallDelta:
    """Partial tool call data keyed by the call's position index.

    ``id`` and ``name`` overwrite previously seen values when present;
    ``arguments_delta`` is appended to the argument buffer.
    """

    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments_delta: Optional[str] = None


@dataclass
class StreamChunk:
    """One incremental fragment of a streaming provider response."""

    type: str
    delta: str = ""
    tool_call: Optional[ToolCallDelta] = None
    usage: Optional[Dict[str, Any]] = None

    @classmethod
    def text(cls, delta: str) -> "StreamChunk":
        return cls(type=CHUNK_TEXT, delta=delta)

    @classmethod
    def reasoning(cls, delta: str) -> "StreamChunk":
        return cls(type=CHUNK_REASONING, delta=delta)

    @classmethod
    def tool_call_delta(
        cls,
        index: int,
        id: Optional[str] = None,
        name: Optional[str] = None,
        arguments_delta: Optional[str] = None,
    ) -> "StreamChunk":
        return cls(
            type=CHUNK_TOOL_CALL,
            tool_call=ToolCallDelta(index=index, id=id, name=name, arguments_delta=arguments_delta),
        )


###############################################################################
# Provider options
###############################################################################


@dataclass
class ToolSchema:
    """Description of a tool as advertised to the model."""

    name: str
    description: str
    input_schema: Dict[str, Any]
    input_examples: List[Any] = field(default_factory=list)


@dataclass
class ProviderOptions:
    system: str = ""
    max_tokens: int = 0
    temperature: float = 0.7
    tools: List[ToolSchema] = field(default_factory=list)


###############################################################################
# Turn result and status
###############################################################################


@dataclass(frozen=True)
class TurnResult:
    """The finalized output of one successful turn.

    ``messages`` is the slice of history produced during the turn,
    starting with the user message that opened it.  ``step_count`` is
    the number of provider calls made.
    """

    text: str
    messages: List[AgentMessage] = field(default_factory=list)
    tools_used: List[str] = field(default_factory=list)
    step_count: int = 0
    total_tokens: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


class AgentState(str, enum.Enum):
    READY = "ready"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class AgentStatus:
    agent_id: str
    state: AgentState
    step_count: int
    message_count: int
    last_activity: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


###############################################################################
# Collaborator protocols
###############################################################################


class Provider(Protocol):
    """Protocol for LLM backends.

    ``complete`` performs one blocking call and returns the assistant
    message.  ``stream`` returns an async iterable of
    :class:`StreamChunk` (an async generator, or a coroutine resolving
    to one).  ``close`` may be a regular or an async method.
    """

    async def complete(self, messages: List[AgentMessage], options: ProviderOptions) -> AgentMessage:
        ...  # pragma: no cover

    def stream(self, messages: List[AgentMessage], options: ProviderOptions) -> AsyncIterator[StreamChunk]:
        ...  # pragma: no cover

    def close(self) -> Any:
        ...  # pragma: no cover


class Tool(Protocol):
    """Protocol for tools that the agent can execute.

    The fields ``name``, ``description`` and ``parameters`` (a JSON
    Schema) describe the tool for the benefit of the LLM.  A tool
    implements either ``execute_result`` returning a
    :class:`agentcore.tools.ToolResult`, or the legacy ``execute``
    returning any JSON serialisable value (``bytes`` are passed through
    verbatim).  Both receive the JSON encoded input and a
    :class:`agentcore.tools.ToolContext`, and may be coroutines.
    """

    name: str
    description: str
    parameters: Dict[str, Any]

    def execute(self, input_json: str, context: Any) -> Any:
        ...  # pragma: no cover


class ToolServer(Protocol):
    """A remote server hosting tools (for example an MCP server)."""

    name: str

    async def connect(self) -> None:
        ...  # pragma: no cover

    async def load_tools(self) -> List[Tool]:
        ...  # pragma: no cover

    def close(self) -> Any:
        ...  # pragma: no cover
