from __future__ import annotations

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from agentcore.agent import Agent
from agentcore.agent_types import AgentMessage
from agentcore.builder import AgentBuilder, OnceCell, quick
from agentcore.config import AgentConfig, StaticSource
from agentcore.errors import BuildError
from agentcore.proxy import ProxyProvider
from agentcore.retry import RetryPolicy
from agentcore.tools import ToolRegistry


class _Provider:
    def __init__(self, text: str = "ok") -> None:
        self.text = text
        self.seen = []
        self.closed = 0

    async def complete(self, messages, options):
        self.seen.append((messages, options))
        return AgentMessage.assistant(self.text)

    async def stream(self, messages, options):
        yield  # pragma: no cover

    def close(self):
        self.closed += 1


class _Tool:
    def __init__(self, name: str) -> None:
        self.name = name
        self.description = f"{name} tool"
        self.parameters = {}

    def execute(self, input_json, context):
        return self.name


class _Server:
    def __init__(self, name, tools, fail_on=None):
        self.name = name
        self.tools = tools
        self.fail_on = fail_on
        self.connected = False
        self.closed = 0

    async def connect(self):
        if self.fail_on == "connect":
            raise ConnectionError("refused")
        self.connected = True

    async def load_tools(self):
        if self.fail_on == "load":
            raise RuntimeError("bad manifest")
        return list(self.tools)

    async def close(self):
        self.closed += 1


def test_once_cell_constructs_at_most_once_across_threads():
    cell = OnceCell()
    calls = []
    barrier = threading.Barrier(8)

    def _factory():
        calls.append(1)
        return object()

    def _get():
        barrier.wait()
        return cell.get_or_init(_factory)

    with ThreadPoolExecutor(max_workers=8) as pool:
        values = list(pool.map(lambda _: _get(), range(8)))

    assert len(calls) == 1
    assert all(v is values[0] for v in values)


def test_once_cell_memoises_construction_error():
    cell = OnceCell()
    calls = []

    def _factory():
        calls.append(1)
        raise ValueError("cannot build")

    for _ in range(3):
        with pytest.raises(ValueError, match="cannot build"):
            cell.get_or_init(_factory)
    assert len(calls) == 1
    assert cell.initialized
    assert cell.get() is None


def test_once_cell_async_variant_runs_factory_once():
    async def _main():
        cell = OnceCell()
        calls = []

        async def _factory():
            calls.append(1)
            await asyncio.sleep(0.01)
            return "agent"

        values = await asyncio.gather(*(cell.get_or_init_async(_factory) for _ in range(5)))
        return calls, values

    calls, values = asyncio.run(_main())
    assert calls == [1]
    assert values == ["agent"] * 5


def test_build_collects_setter_errors(tmp_path):
    builder = (
        AgentBuilder()
        .max_tokens(0)
        .system_from_file(str(tmp_path / "missing.txt"))
        .api_key_from(StaticSource(None))
        .provider(_Provider())
    )
    with pytest.raises(BuildError) as info:
        asyncio.run(builder.build())
    messages = str(info.value)
    assert "max_tokens must be positive" in messages
    assert "read system prompt file" in messages
    assert "no API key found" in messages
    assert len(info.value.errors) == 3


def test_build_applies_settings_and_is_memoised(tmp_path):
    prompt_file = tmp_path / "prompt.txt"
    prompt_file.write_text("You are terse.", encoding="utf-8")
    provider = _Provider()
    policy = RetryPolicy(max_retries=1)

    async def _main():
        builder = (
            AgentBuilder()
            .id("agt-fixed")
            .name("helper")
            .parent("agt-root")
            .model("gpt-4o-mini")
            .api_key_from(StaticSource(""), StaticSource("sk-test"))
            .max_tokens(256)
            .system_from_file(str(prompt_file))
            .work_dir(str(tmp_path))
            .tools(_Tool("echo"))
            .provider(provider)
            .retry_policy(policy)
        )
        first = await builder.build()
        second = await builder.build()
        return first, second

    first, second = asyncio.run(_main())
    assert first is second
    assert isinstance(first, Agent)
    config = first.config
    assert config.id == "agt-fixed"
    assert config.name == "helper"
    assert config.parent_id == "agt-root"
    assert config.llm.model == "gpt-4o-mini"
    assert config.llm.api_key == "sk-test"
    assert config.max_tokens == 256
    assert config.system_prompt == "You are terse."
    assert first.tool_registry.names() == ["echo"]
    assert first.retry_policy is policy
    assert first.provider is provider


def test_missing_configured_tools_fail_fast():
    config = AgentConfig(tools=["echo", "search", "fetch"])
    builder = AgentBuilder(config).tools(_Tool("echo")).provider(_Provider())
    with pytest.raises(BuildError, match="search, fetch"):
        asyncio.run(builder.build())


def test_tools_from_registry_copies_named_tools():
    source = ToolRegistry([_Tool("a"), _Tool("b")])
    builder = AgentBuilder().tools_from_registry(source, "b", "zzz").provider(_Provider())
    with pytest.raises(BuildError, match="tool not found: zzz"):
        asyncio.run(builder.build())

    ok = AgentBuilder().tools_from_registry(source, "b").provider(_Provider())
    agent = asyncio.run(ok.build())
    assert agent.tool_registry.names() == ["b"]


def test_tool_servers_are_connected_and_their_tools_registered():
    server = _Server("remote", [_Tool("fetch"), _Tool("list")])

    async def _main():
        builder = AgentBuilder().tool_server(server).provider(_Provider())
        agent = await builder.build()
        names = agent.tool_registry.names()
        await agent.close()
        return names

    names = asyncio.run(_main())
    assert server.connected
    assert names == ["fetch", "list"]
    assert server.closed == 1


def test_failing_tool_server_closes_all_servers():
    good = _Server("good", [_Tool("ok")])
    bad = _Server("bad", [], fail_on="load")
    builder = AgentBuilder().tool_servers(good, bad).provider(_Provider())
    with pytest.raises(BuildError, match="tool server bad: bad manifest"):
        asyncio.run(builder.build())
    assert good.closed == 1
    assert bad.closed == 1


def test_default_provider_is_proxy_from_llm_config():
    async def _main():
        builder = AgentBuilder().base_url("https://proxy.example.com/v1/").api_key("sk").model("m")
        agent = await builder.build()
        provider = agent.provider
        await builder.close()
        return provider

    provider = asyncio.run(_main())
    assert isinstance(provider, ProxyProvider)
    assert provider.base_url == "https://proxy.example.com/v1"
    assert provider.model == "m"


def test_run_reports_build_failure_as_single_error_event():
    async def _main():
        builder = AgentBuilder().max_tokens(-1).provider(_Provider())
        return [e async for e in builder.run("hi")]

    events = asyncio.run(_main())
    assert [e.type for e in events] == ["error"]
    assert isinstance(events[0].error, BuildError)


def test_run_and_chat_delegate_to_built_agent():
    provider = _Provider("pong")

    async def _main():
        builder = AgentBuilder().provider(provider)
        events = [e async for e in builder.run("ping")]
        result = await builder.chat("again")
        await builder.close()
        return events, result

    events, result = asyncio.run(_main())
    assert events[-1].type == "done"
    assert events[-1].result.text == "pong"
    assert result.text == "pong"
    assert provider.closed == 1


def test_from_env_overrides_only_set_variables(monkeypatch):
    monkeypatch.setenv("BOT_NAME", "env-bot")
    monkeypatch.setenv("BOT_MAX_TOKENS", "not-a-number")
    monkeypatch.setenv("BOT_LLM_MODEL", "env-model")
    builder = AgentBuilder().system("custom prompt").max_tokens(512).from_env("BOT_")
    config = builder.to_config()
    assert config.name == "env-bot"
    assert config.llm.model == "env-model"
    assert config.max_tokens == 512
    assert config.system_prompt == "custom prompt"


def test_from_agent_copies_config_with_fresh_id():
    original = Agent(AgentConfig(id="agt-1", name="a", system_prompt="be brief"), _Provider())
    builder = AgentBuilder.from_agent(original).provider(_Provider())
    clone = asyncio.run(builder.build())
    assert clone.id != "agt-1"
    assert clone.id.startswith("agt-")
    assert clone.config.system_prompt == "be brief"


def test_max_retries_adjusts_default_policy():
    agent = asyncio.run(AgentBuilder().max_retries(5).provider(_Provider()).build())
    assert agent.retry_policy.max_retries == 5
    assert agent.retry_policy.initial_backoff == 0.5


def test_quick_uses_sources_and_closes_agent():
    provider = _Provider("4")
    result = asyncio.run(
        quick(
            "2+2?",
            provider=provider,
            system="math only",
            max_tokens=64,
            model_sources=[StaticSource("quick-model")],
            key_sources=[StaticSource("sk-quick")],
        )
    )
    assert result.text == "4"
    assert provider.closed == 1
    _, options = provider.seen[0]
    assert options.system == "math only"
    assert options.max_tokens == 64
