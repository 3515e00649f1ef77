import asyncio
import logging

from agentcore.agent_types import AgentMessage, ToolCallContent, TurnResult
from agentcore.builder import AgentBuilder
from agentcore.events import AgentEvent, ToolExecutionResult
from agentcore.logging_utils import make_event_logger, resolve_log_level, setup_logging


def test_resolve_log_level_accepts_aliases_and_digits():
    assert resolve_log_level("messages") == resolve_log_level("simple")
    assert resolve_log_level("stream") == resolve_log_level("full")
    assert resolve_log_level("3") == 3
    assert resolve_log_level("") == 0
    assert resolve_log_level("nonsense") == 0


def test_quiet_level_suppresses_output(capsys):
    logger = make_event_logger("quiet")
    logger(AgentEvent.tool_call_requested(ToolCallContent(id="c1", name="calculator", arguments={"a": 1})))
    logger(AgentEvent.text_delta("hello"))
    assert capsys.readouterr().out == ""


def test_simple_level_logs_tool_calls_and_results(capsys):
    logger = make_event_logger("simple")
    logger(AgentEvent.tool_call_requested(ToolCallContent(id="c1", name="calculator", arguments={"a": 1})))
    logger(AgentEvent.tool_result_ready(ToolExecutionResult(tool_call_id="c1", name="calculator", content="3")))
    logger(AgentEvent.text_delta("not shown"))
    captured = capsys.readouterr().out.strip().splitlines()
    assert captured == [
        "[tool:call] calculator id=c1",
        "[tool:end] calculator error=False",
    ]


def test_full_level_adds_text_arguments_and_terminal_event(capsys):
    logger = make_event_logger("full")
    logger(AgentEvent.tool_call_requested(ToolCallContent(id="c1", name="calculator", arguments={"a": 1})))
    logger(AgentEvent.text_delta("Hel"))
    logger(AgentEvent.reasoning_delta("thinking"))
    logger(AgentEvent.done(TurnResult(text="Hello", step_count=2, tools_used=["calculator"], total_tokens=7)))
    logger(AgentEvent.failed(RuntimeError("boom")))
    captured = capsys.readouterr().out.strip().splitlines()
    assert captured[0] == "[tool:call] calculator id=c1 args={'a': 1}"
    assert captured[1] == "[stream] Hel"
    assert captured[2] == "[thinking] thinking"
    assert captured[3] == "[done] steps=2 tools=1 tokens=7"
    assert captured[4] == "[error] boom"


def test_debug_level_logs_event_dicts():
    lines = []
    logger = make_event_logger("debug", sink=lines.append)
    logger(AgentEvent.text_delta("hi"))
    assert lines == ["[debug] {'type': 'text', 'text': 'hi'}"]


def test_sink_failures_do_not_propagate():
    def _broken_sink(text):
        raise IOError("closed")

    logger = make_event_logger("full", sink=_broken_sink)
    logger(AgentEvent.text_delta("hi"))


def test_setup_logging_configures_root_and_quiets_http(tmp_path):
    log_file = tmp_path / "logs" / "agent.log"
    root = logging.getLogger()
    previous_level = root.level
    setup_logging(logging.DEBUG, log_file=str(log_file))
    try:
        logging.getLogger("agentcore.test").info("written")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert log_file.exists()
        assert "written" in log_file.read_text(encoding="utf-8")
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for handler in list(root.handlers):
            handler.close()
            root.removeHandler(handler)
        root.setLevel(previous_level)


class _EchoProvider:
    def __init__(self):
        self.calls = 0

    async def complete(self, messages, options):
        self.calls += 1
        if self.calls == 1:
            return AgentMessage.assistant("", tool_calls=[ToolCallContent(id="c1", name="echo", arguments={"x": 1})])
        return AgentMessage.assistant("done")

    async def stream(self, messages, options):
        yield  # pragma: no cover


class _Echo:
    name = "echo"
    description = "echoes its input"
    parameters = {}

    def execute(self, input_json, context):
        return input_json


def test_builder_event_logger_renders_agent_run():
    lines = []

    async def _main():
        builder = AgentBuilder().provider(_EchoProvider()).tools(_Echo()).event_logger("full", sink=lines.append)
        result = await builder.chat("go")
        await builder.close()
        return result

    result = asyncio.run(_main())
    assert result.text == "done"
    assert lines == [
        "[tool:call] echo id=c1 args={'x': 1}",
        '[tool:end] echo error=False output="{\\"x\\": 1}"',
        "[stream] done",
        "[done] steps=2 tools=1 tokens=0",
    ]


def test_package_exports_logging_helpers():
    import agentcore

    assert agentcore.make_event_logger is make_event_logger
    assert agentcore.setup_logging is setup_logging
    assert agentcore.resolve_log_level("debug") == agentcore.LOG_LEVELS["debug"]
