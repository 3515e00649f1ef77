"""Logging helpers.

Library modules log through ``logging.getLogger(__name__)`` and never
install handlers themselves.  Applications call :func:`setup_logging`
once at startup.

:func:`make_event_logger` is the user facing counterpart: it renders
the :class:`~agentcore.events.AgentEvent` values of a run as short
lines for a console.
"""

import logging
from pathlib import Path
from typing import Callable, Optional

from .events import (
    EVENT_DONE,
    EVENT_ERROR,
    EVENT_REASONING,
    EVENT_TEXT,
    EVENT_TOOL_CALL,
    EVENT_TOOL_RESULT,
    AgentEvent,
)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

LOG_LEVELS = {
    "quiet": 0,
    "simple": 1,
    "full": 2,
    "debug": 3,
}

PREVIEW_CHARS = 120


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> None:
    """Configure the root logger for console and optional file output."""
    handlers = [logging.StreamHandler()]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, mode="a", encoding="utf-8"))

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,
    )

    # Suppress noisy third-party logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def resolve_log_level(value: str) -> int:
    if not value:
        return LOG_LEVELS["quiet"]
    key = str(value).strip().lower()
    if key.isdigit():
        return int(key)
    aliases = {
        "messages": "simple",
        "stream": "full",
    }
    key = aliases.get(key, key)
    return LOG_LEVELS.get(key, LOG_LEVELS["quiet"])


def _preview(text: str, limit: int = PREVIEW_CHARS) -> str:
    text = " ".join(str(text).split())
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def make_event_logger(level: str = "quiet", sink: Callable[[str], None] = print):
    """Create a user-visible logger function for agent events.
    Levels:
    - quiet: no user-visible logging
    - simple: log tool calls and tool results
    - full: log simple output plus text, reasoning and the terminal event
    - debug: log all events in dictionary form
    """
    level_value = resolve_log_level(level)

    def _emit(text: str) -> None:
        try:
            sink(text)
        except Exception:
            pass

    def log(event: AgentEvent) -> None:
        if level_value <= LOG_LEVELS["quiet"]:
            return
        if level_value >= LOG_LEVELS["debug"]:
            _emit(f"[debug] {event.to_dict()}")
            return

        etype = event.type
        if etype == EVENT_TOOL_CALL and event.tool_call is not None:
            call = event.tool_call
            suffix = f" id={call.id}" if call.id else ""
            if level_value >= LOG_LEVELS["full"] and call.arguments:
                _emit(f"[tool:call] {call.name}{suffix} args={call.arguments}")
            else:
                _emit(f"[tool:call] {call.name}{suffix}")
            return
        if etype == EVENT_TOOL_RESULT and event.tool_result is not None:
            result = event.tool_result
            line = f"[tool:end] {result.name} error={result.is_error}"
            if level_value >= LOG_LEVELS["full"]:
                line += f" output={_preview(result.content)}"
            _emit(line)
            return
        if level_value < LOG_LEVELS["full"]:
            return
        if etype == EVENT_TEXT and event.text:
            _emit(f"[stream] {event.text}")
        elif etype == EVENT_REASONING and event.reasoning:
            _emit(f"[thinking] {event.reasoning}")
        elif etype == EVENT_DONE and event.result is not None:
            result = event.result
            _emit(
                f"[done] steps={result.step_count} tools={len(result.tools_used)} tokens={result.total_tokens}"
            )
        elif etype == EVENT_ERROR:
            _emit(f"[error] {event.error}")

    return log
