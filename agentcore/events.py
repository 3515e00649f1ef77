"""Events describing the progress of an agent run.

A run produces a sequence of :class:`AgentEvent` values on its event
stream.  The ``type`` field selects which payload attribute is set:

* ``text`` - ``text`` holds a text fragment (streaming) or the full
  answer (blocking).
* ``reasoning`` - ``reasoning`` holds a reasoning fragment.
* ``tool_call`` - ``tool_call`` is the :class:`ToolCallContent` the
  model requested.
* ``tool_result`` - ``tool_result`` is the :class:`ToolExecutionResult`
  of one call.
* ``done`` - ``result`` is the :class:`TurnResult`.
* ``error`` - ``error`` is the exception that ended the run.

Every run ends with exactly one ``done`` or ``error`` event.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .agent_types import ToolCallContent, TurnResult

EVENT_TEXT = "text"
EVENT_REASONING = "reasoning"
EVENT_TOOL_CALL = "tool_call"
EVENT_TOOL_RESULT = "tool_result"
EVENT_DONE = "done"
EVENT_ERROR = "error"

TERMINAL_EVENTS = {EVENT_DONE, EVENT_ERROR}


@dataclass(frozen=True)
class ToolExecutionResult:
    """Outcome of a single tool call as reported to the caller."""

    tool_call_id: str
    name: str
    content: str
    is_error: bool = False


@dataclass(frozen=True)
class AgentEvent:
    type: str
    text: str = ""
    reasoning: str = ""
    tool_call: Optional[ToolCallContent] = None
    tool_result: Optional[ToolExecutionResult] = None
    result: Optional[TurnResult] = None
    error: Optional[BaseException] = None

    @classmethod
    def text_delta(cls, text: str) -> "AgentEvent":
        return cls(type=EVENT_TEXT, text=text)

    @classmethod
    def reasoning_delta(cls, reasoning: str) -> "AgentEvent":
        return cls(type=EVENT_REASONING, reasoning=reasoning)

    @classmethod
    def tool_call_requested(cls, tool_call: ToolCallContent) -> "AgentEvent":
        return cls(type=EVENT_TOOL_CALL, tool_call=tool_call)

    @classmethod
    def tool_result_ready(cls, tool_result: ToolExecutionResult) -> "AgentEvent":
        return cls(type=EVENT_TOOL_RESULT, tool_result=tool_result)

    @classmethod
    def done(cls, result: TurnResult) -> "AgentEvent":
        return cls(type=EVENT_DONE, result=result)

    @classmethod
    def failed(cls, error: BaseException) -> "AgentEvent":
        return cls(type=EVENT_ERROR, error=error)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    def to_dict(self) -> Dict[str, Any]:
        """Flatten the event into a JSON friendly dictionary."""
        data: Dict[str, Any] = {"type": self.type}
        if self.type == EVENT_TEXT:
            data["text"] = self.text
        elif self.type == EVENT_REASONING:
            data["reasoning"] = self.reasoning
        elif self.type == EVENT_TOOL_CALL and self.tool_call is not None:
            data["toolCall"] = {
                "id": self.tool_call.id,
                "name": self.tool_call.name,
                "arguments": self.tool_call.arguments,
            }
        elif self.type == EVENT_TOOL_RESULT and self.tool_result is not None:
            data["toolResult"] = {
                "toolCallId": self.tool_result.tool_call_id,
                "name": self.tool_result.name,
                "content": self.tool_result.content,
                "isError": self.tool_result.is_error,
            }
        elif self.type == EVENT_DONE and self.result is not None:
            data["result"] = {
                "text": self.result.text,
                "toolsUsed": list(self.result.tools_used),
                "stepCount": self.result.step_count,
                "totalTokens": self.result.total_tokens,
            }
        elif self.type == EVENT_ERROR:
            data["error"] = str(self.error) if self.error is not None else ""
        return data
