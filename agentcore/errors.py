"""Exception types raised and reported by the agent core.

The hierarchy is intentionally shallow.  Control errors
(:class:`AgentStoppedError`, :class:`NoToolRegistryError`) signal
misuse of the lifecycle API.  Cancellation (:class:`AgentCancelledError`
and its timeout subclass) is always reported with its own type so that
callers can tell an aborted run apart from a failing provider or tool.
Tool failures never escape the tool orchestrator; they are converted
into error result blocks, see :mod:`agentcore.tool_execution`.

Transient versus permanent failures are described structurally: any
exception may carry a boolean ``transient`` attribute, and the
:class:`TransientError` / :class:`PermanentError` mixins set it for
you.  :func:`agentcore.retry.is_retriable` reads this attribute before
falling back to inspecting the error text.
"""

from __future__ import annotations

from typing import Iterable, List, Optional


class AgentError(Exception):
    """Base class for every error defined by this package."""


###############################################################################
# Transient / permanent markers
###############################################################################


class TransientError(Exception):
    """Mixin marking a failure as safe to retry."""

    transient = True


class PermanentError(Exception):
    """Mixin marking a failure as never worth retrying."""

    transient = False


def is_transient(exc: BaseException) -> Optional[bool]:
    """Return the structural classification of ``exc``.

    ``True``/``False`` when the exception (or the exception it was
    raised from) declares a ``transient`` attribute, ``None`` when it
    does not and the caller has to fall back to a heuristic.
    """
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        flag = getattr(current, "transient", None)
        if isinstance(flag, bool):
            return flag
        current = current.__cause__
    return None


###############################################################################
# Control errors
###############################################################################


class AgentStoppedError(AgentError):
    """Raised when a run is requested from a stopping or stopped agent."""

    def __init__(self, message: str = "agent is stopped") -> None:
        super().__init__(message)


class NoToolRegistryError(AgentError):
    def __init__(self, message: str = "tool registry not initialized") -> None:
        super().__init__(message)


class BuildError(AgentError):
    """Collected configuration problems reported by the builder."""

    def __init__(self, errors: Iterable[BaseException]) -> None:
        self.errors: List[BaseException] = list(errors)
        super().__init__("; ".join(str(e) for e in self.errors) or "agent build failed")


class ConfigError(AgentError):
    """Invalid agent configuration."""

    def __init__(self, problems: Iterable[str]) -> None:
        self.problems: List[str] = list(problems)
        super().__init__("; ".join(self.problems))


class AgentPanicError(AgentError):
    """An unexpected failure inside the run machinery itself.

    The original exception is available as ``__cause__``.
    """


###############################################################################
# Cancellation
###############################################################################


class AgentCancelledError(AgentError):
    """The run was cancelled through its cancellation signal."""

    def __init__(self, message: str = "context canceled") -> None:
        super().__init__(message)


class AgentTimeoutError(AgentCancelledError):
    """The run deadline expired."""

    def __init__(self, message: str = "context deadline exceeded") -> None:
        super().__init__(message)


###############################################################################
# Tool errors
###############################################################################


class ToolError(AgentError):
    """Application level failure reported by a tool.

    Tools raise this (or return :meth:`agentcore.tools.ToolResult.failure`)
    to report an expected error.  Pass ``transient=True`` when the
    failure is worth retrying under the agent's retry policy.
    """

    def __init__(self, message: str, transient: Optional[bool] = None) -> None:
        super().__init__(message)
        if transient is not None:
            self.transient = transient


class ToolNotFoundError(AgentError, PermanentError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"tool '{name}' not found")


###############################################################################
# Shutdown
###############################################################################


class CloseError(AgentError):
    """Aggregate of the failures met while releasing agent resources."""

    def __init__(self, errors: Iterable[BaseException]) -> None:
        self.errors: List[BaseException] = list(errors)
        super().__init__("\n".join(str(e) for e in self.errors))

    @classmethod
    def join(cls, errors: Iterable[BaseException]) -> Optional["CloseError"]:
        """Return a :class:`CloseError` for ``errors`` or ``None`` when empty."""
        collected = list(errors)
        if not collected:
            return None
        return cls(collected)
