from __future__ import annotations

import asyncio
import threading

import pytest

from agentcore.agent import Agent
from agentcore.agent_types import AgentMessage, AgentState
from agentcore.config import AgentConfig
from agentcore.errors import AgentStoppedError, CloseError, NoToolRegistryError, ToolNotFoundError
from agentcore.tools import ToolRegistry


class _Provider:
    def __init__(self, text: str = "ok", close_error: Exception | None = None) -> None:
        self.text = text
        self.calls = 0
        self.closed = 0
        self.close_error = close_error
        self.release = None

    async def complete(self, messages, options):
        self.calls += 1
        if self.release is not None:
            await self.release.wait()
        return AgentMessage.assistant(self.text)

    async def stream(self, messages, options):
        yield  # pragma: no cover

    async def close(self):
        self.closed += 1
        if self.close_error is not None:
            raise self.close_error


class _Server:
    def __init__(self, name: str, close_error: Exception | None = None) -> None:
        self.name = name
        self.closed = 0
        self.close_error = close_error

    async def connect(self):
        return None

    async def load_tools(self):
        return []

    def close(self):
        self.closed += 1
        if self.close_error is not None:
            raise self.close_error


class _Noop:
    name = "noop"
    description = "does nothing"
    parameters = {}

    def execute(self, input_json, context):
        return None


def test_agent_gets_generated_id_and_keeps_configured_one():
    assert Agent(provider=_Provider()).id.startswith("agt-")
    agent = Agent(AgentConfig(id="custom", name="helper", parent_id="root"), _Provider())
    assert (agent.id, agent.name, agent.parent_id) == ("custom", "helper", "root")


def test_run_after_close_is_rejected_without_provider_call():
    async def _main():
        provider = _Provider()
        agent = Agent(provider=provider)
        await agent.close()
        events = [e async for e in agent.run("hello")]
        return agent, provider, events

    agent, provider, events = asyncio.run(_main())
    assert [e.type for e in events] == ["error"]
    assert isinstance(events[0].error, AgentStoppedError)
    assert str(events[0].error) == "agent is stopped"
    assert provider.calls == 0
    assert agent.messages() == []
    assert agent.status().state is AgentState.STOPPED


def test_close_twice_releases_resources_once():
    async def _main():
        provider = _Provider()
        server = _Server("files")
        agent = Agent(provider=provider, tool_servers=[server])
        await agent.close()
        await agent.close()
        return provider, server

    provider, server = asyncio.run(_main())
    assert provider.closed == 1
    assert server.closed == 1


def test_close_collects_every_release_error():
    async def _main():
        provider = _Provider(close_error=RuntimeError("socket busy"))
        healthy = _Server("healthy")
        broken = _Server("broken", close_error=OSError("pipe closed"))
        agent = Agent(provider=provider, tool_servers=[broken, healthy])
        with pytest.raises(CloseError) as info:
            await agent.close()
        await agent.close()
        return agent, healthy, info.value

    agent, healthy, error = asyncio.run(_main())
    assert len(error.errors) == 2
    assert "close provider: socket busy" in str(error)
    assert "close tool server broken: pipe closed" in str(error)
    assert healthy.closed == 1
    assert agent.status().state is AgentState.STOPPED


def test_state_is_running_during_turn_and_ready_after():
    async def _main():
        provider = _Provider()
        provider.release = asyncio.Event()
        agent = Agent(provider=provider)
        stream = agent.run("hi")
        during = agent.status()
        provider.release.set()
        events = [e async for e in stream]
        return during, agent.status(), events

    during, after, events = asyncio.run(_main())
    assert during.state is AgentState.RUNNING
    assert during.message_count == 1
    assert after.state is AgentState.READY
    assert after.message_count == 2
    assert after.step_count == 1
    assert after.last_activity is not None
    assert events[-1].type == "done"


def test_close_during_run_stops_loop_and_keeps_stopped_state():
    async def _main():
        provider = _Provider()
        provider.release = asyncio.Event()
        registry = ToolRegistry([_Noop()])
        agent = Agent(provider=provider, tool_registry=registry)
        stream = agent.run("hi")
        await asyncio.sleep(0)
        await agent.close()
        stopping_state = agent.status().state
        provider.release.set()
        events = [e async for e in stream]
        return agent, stopping_state, events

    agent, stopping_state, events = asyncio.run(_main())
    assert stopping_state is AgentState.STOPPED
    # the in-flight call completes on its own terms and the turn ends without tools
    assert events[-1].type == "done"
    assert agent.status().state is AgentState.STOPPED


def test_close_is_safe_when_never_run():
    async def _main():
        agent = Agent(provider=_Provider())
        await agent.close()
        return agent.status().state

    assert asyncio.run(_main()) is AgentState.STOPPED


def test_messages_and_config_are_copies():
    agent = Agent(AgentConfig(name="original"), _Provider("answer"))

    async def _main():
        return await agent.chat("question")

    result = asyncio.run(_main())
    assert result.text == "answer"

    snapshot = agent.messages()
    snapshot[0].content.clear()
    snapshot.append(AgentMessage.user("injected"))
    assert agent.messages()[0].text() == "question"
    assert len(agent.messages()) == 2

    config = agent.config
    config.name = "changed"
    assert agent.name == "original"


def test_chat_raises_terminal_error():
    async def _main():
        agent = Agent(provider=_Provider())
        await agent.close()
        await agent.chat("hello")

    with pytest.raises(AgentStoppedError):
        asyncio.run(_main())


def test_tool_management_requires_registry():
    agent = Agent(provider=_Provider())
    with pytest.raises(NoToolRegistryError, match="tool registry not initialized"):
        agent.add_tool(_Noop())
    with pytest.raises(NoToolRegistryError):
        agent.remove_tool("noop")

    with_registry = Agent(provider=_Provider(), tool_registry=ToolRegistry())
    with_registry.add_tool(_Noop())
    assert "noop" in with_registry.tool_registry
    with_registry.remove_tool("noop")
    with pytest.raises(ToolNotFoundError):
        with_registry.remove_tool("noop")


def test_run_requires_running_event_loop():
    agent = Agent(provider=_Provider())
    with pytest.raises(RuntimeError):
        agent.run("hi")


def test_async_context_manager_closes_agent():
    async def _main():
        provider = _Provider()
        async with Agent(provider=provider) as agent:
            await agent.chat("hi")
        return agent, provider

    agent, provider = asyncio.run(_main())
    assert provider.closed == 1
    assert agent.status().state is AgentState.STOPPED


def test_status_snapshots_are_consistent_under_concurrent_reads():
    async def _main():
        provider = _Provider()
        agent = Agent(provider=provider)
        snapshots = []
        stop = threading.Event()

        def _reader():
            while not stop.is_set() and len(snapshots) < 5000:
                snapshots.append(agent.status())

        thread = threading.Thread(target=_reader)
        thread.start()
        try:
            for i in range(20):
                await agent.chat(f"message {i}")
        finally:
            stop.set()
            thread.join()
        return agent, snapshots

    agent, snapshots = asyncio.run(_main())
    assert agent.status().message_count == 40
    assert agent.status().step_count == 20
    for snapshot in snapshots:
        assert snapshot.agent_id == agent.id
        assert 0 <= snapshot.message_count <= 40
        assert snapshot.state in (AgentState.READY, AgentState.RUNNING)


def test_concurrent_runs_share_history():
    async def _main():
        agent = Agent(provider=_Provider())
        results = await asyncio.gather(agent.chat("one"), agent.chat("two"))
        return agent, results

    agent, results = asyncio.run(_main())
    assert [r.text for r in results] == ["ok", "ok"]
    assert len(agent.messages()) == 4
    assert agent.status().state is AgentState.READY
