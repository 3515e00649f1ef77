"""Tool registry and the value types exchanged with tools.

:class:`ToolRegistry` maps tool names to tool objects.  It is shared
between the agent (which may add or remove tools while it lives) and
the turn loop (which reads it before every provider call and for every
tool call), so every access goes through a lock.

Tools implementing the result-returning form return a
:class:`ToolResult` carrying either a value or an error together with
:class:`ToolMetadata` about the execution.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .agent_types import Tool, ToolSchema
from .errors import ToolError, ToolNotFoundError
from .signals import CancelScope

TOOL_MANUAL_HEADER = "### Tools Manual"


@dataclass
class ToolMetadata:
    tool_name: str = ""
    duration: float = 0.0
    cached: bool = False
    retries: int = 0


@dataclass
class ToolResult:
    """Outcome of a result-returning tool execution."""

    value: Any = None
    error: Optional[BaseException] = None
    metadata: ToolMetadata = field(default_factory=ToolMetadata)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def ok(cls, value: Any, **metadata: Any) -> "ToolResult":
        return cls(value=value, metadata=ToolMetadata(**metadata))

    @classmethod
    def failure(cls, error: Any, **metadata: Any) -> "ToolResult":
        if not isinstance(error, BaseException):
            error = ToolError(str(error))
        return cls(error=error, metadata=ToolMetadata(**metadata))


@dataclass
class ToolContext:
    """Per-call context handed to tool executions."""

    agent_id: str = ""
    tool_call_id: str = ""
    scope: Optional[CancelScope] = None

    def cancelled(self) -> bool:
        return self.scope is not None and self.scope.cancelled()


class ToolRegistry:
    """Thread-safe registry of tools keyed by name.

    Registration order is preserved; registering a name twice replaces
    the earlier tool in place.
    """

    def __init__(self, tools: Optional[Iterable[Tool]] = None) -> None:
        self._lock = threading.RLock()
        self._tools: Dict[str, Tool] = {}
        for tool in tools or ():
            self.register(tool)

    def register(self, tool: Tool) -> None:
        name = getattr(tool, "name", None)
        if not name:
            raise ValueError("tool must define a non-empty name")
        with self._lock:
            self._tools[name] = tool

    def unregister(self, name: str) -> None:
        with self._lock:
            if name not in self._tools:
                raise ToolNotFoundError(name)
            del self._tools[name]

    def get(self, name: str) -> Optional[Tool]:
        with self._lock:
            return self._tools.get(name)

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._tools

    def list(self) -> List[Tool]:
        with self._lock:
            return list(self._tools.values())

    def names(self) -> List[str]:
        with self._lock:
            return list(self._tools)

    def count(self) -> int:
        with self._lock:
            return len(self._tools)

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has(name)


def _tool_examples(tool: Tool) -> List[Any]:
    examples = getattr(tool, "examples", None)
    if not examples:
        return []
    inputs: List[Any] = []
    for example in examples:
        if isinstance(example, dict) and "input" in example:
            inputs.append(example["input"])
        else:
            inputs.append(getattr(example, "input", example))
    return inputs


def build_tool_schemas(registry: Optional[ToolRegistry]) -> List[ToolSchema]:
    """Describe every registered tool for the provider."""
    if registry is None:
        return []
    return [
        ToolSchema(
            name=tool.name,
            description=getattr(tool, "description", ""),
            input_schema=dict(getattr(tool, "parameters", None) or {}),
            input_examples=_tool_examples(tool),
        )
        for tool in registry.list()
    ]


def inject_tool_manual(system: str, registry: Optional[ToolRegistry]) -> str:
    """Append a short manual listing the tools to a system prompt.

    The manual is added once; prompts that already contain it are
    returned unchanged.
    """
    if registry is None or TOOL_MANUAL_HEADER in system:
        return system
    lines = [f"- `{tool.name}`: {getattr(tool, 'description', '')}" for tool in registry.list()]
    if not lines:
        return system
    return (
        system
        + "\n\n"
        + TOOL_MANUAL_HEADER
        + "\n\nThe following tools are available:\n\n"
        + "\n".join(lines)
    )
