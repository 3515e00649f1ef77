"""Reassembly of a streamed assistant response.

Streaming providers deliver an answer as a sequence of
:class:`~agentcore.agent_types.StreamChunk` fragments: text deltas,
reasoning deltas and partial tool calls keyed by a position index.
:class:`DeltaAggregator` folds them back into one assistant message:

* text and reasoning deltas are forwarded immediately as events and
  appended to running buffers;
* each tool call index owns a :class:`ToolCallSlot`.  An ``id`` or
  ``name`` delta overwrites the stored value, argument deltas are
  appended; nothing is ever retracted;
* when the stream ends every slot's argument buffer is parsed as one
  JSON object.  A buffer that does not parse to an object is logged
  and replaced with ``{}``; an empty buffer yields ``{}`` as well;
* tool calls are emitted in ascending index order regardless of the
  order their deltas arrived in.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, Awaitable, Callable, Dict, List, Optional

from .agent_types import (
    CHUNK_DONE,
    CHUNK_REASONING,
    CHUNK_TEXT,
    CHUNK_TOOL_CALL,
    ROLE_ASSISTANT,
    AgentMessage,
    ContentItem,
    StreamChunk,
    TextContent,
    ThinkingContent,
    ToolCallContent,
)
from .events import AgentEvent

logger = logging.getLogger(__name__)


@dataclass
class ToolCallSlot:
    """Scratch state for one tool call while its deltas arrive."""

    index: int
    id: str = ""
    name: str = ""
    arguments: List[str] = field(default_factory=list)

    def argument_text(self) -> str:
        return "".join(self.arguments)

    def finalize(self) -> ToolCallContent:
        return ToolCallContent(id=self.id, name=self.name, arguments=parse_arguments(self.argument_text(), self.name))


def parse_arguments(raw: str, tool_name: str = "") -> Dict[str, Any]:
    """Parse an accumulated argument buffer into a dictionary."""
    if not raw.strip():
        return {}
    try:
        value = json.loads(raw)
    except ValueError as exc:
        logger.warning("failed to parse tool call arguments (name=%s): %s", tool_name, exc)
        return {}
    if not isinstance(value, dict):
        logger.warning(
            "tool call arguments are not an object (name=%s, type=%s)", tool_name, type(value).__name__
        )
        return {}
    return value


class DeltaAggregator:
    """Accumulates the fragments of one streaming provider call."""

    def __init__(self) -> None:
        self._text: List[str] = []
        self._reasoning: List[str] = []
        self._slots: Dict[int, ToolCallSlot] = {}
        self._usage: Optional[Dict[str, Any]] = None

    @property
    def text(self) -> str:
        return "".join(self._text)

    @property
    def reasoning(self) -> str:
        return "".join(self._reasoning)

    def slot(self, index: int) -> Optional[ToolCallSlot]:
        return self._slots.get(index)

    def feed(self, chunk: StreamChunk) -> Optional[AgentEvent]:
        """Absorb one fragment.

        Returns the event to forward to the caller for text and
        reasoning deltas, ``None`` for everything else.
        """
        if chunk.usage is not None:
            self._usage = dict(chunk.usage)
        ctype = chunk.type
        if ctype == CHUNK_TEXT:
            if not chunk.delta:
                return None
            self._text.append(chunk.delta)
            return AgentEvent.text_delta(chunk.delta)
        if ctype == CHUNK_REASONING:
            if not chunk.delta:
                return None
            self._reasoning.append(chunk.delta)
            return AgentEvent.reasoning_delta(chunk.delta)
        if ctype == CHUNK_TOOL_CALL and chunk.tool_call is not None:
            delta = chunk.tool_call
            entry = self._slots.get(delta.index)
            if entry is None:
                entry = ToolCallSlot(index=delta.index)
                self._slots[delta.index] = entry
            if delta.id:
                entry.id = delta.id
            if delta.name:
                entry.name = delta.name
            if delta.arguments_delta:
                entry.arguments.append(delta.arguments_delta)
            return None
        if ctype == CHUNK_DONE:
            return None
        # Unknown fragment types are ignored to avoid breaking the stream
        return None

    def finalize(self) -> AgentMessage:
        """Build the assistant message and discard the slots."""
        content: List[ContentItem] = []
        reasoning = self.reasoning
        if reasoning:
            content.append(ThinkingContent(thinking=reasoning))
        text = self.text
        if text:
            content.append(TextContent(text=text))
        for index in sorted(self._slots):
            content.append(self._slots[index].finalize())
        self._slots.clear()
        return AgentMessage(role=ROLE_ASSISTANT, content=content, usage=self._usage)


async def aggregate_stream(
    chunks: AsyncIterable[StreamChunk],
    emit: Callable[[AgentEvent], Awaitable[None]],
) -> AgentMessage:
    """Consume a fragment stream, forwarding deltas through ``emit``."""
    aggregator = DeltaAggregator()
    async for chunk in chunks:
        event = aggregator.feed(chunk)
        if event is not None:
            await emit(event)
    return aggregator.finalize()
