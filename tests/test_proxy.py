import asyncio
import json

import httpx
import pytest

from agentcore.agent import Agent
from agentcore.agent_types import (
    AgentMessage,
    ProviderOptions,
    ToolCallContent,
    ToolResultContent,
    ToolSchema,
)
from agentcore.proxy import (
    ProviderHTTPError,
    ProviderStreamError,
    ProxyProvider,
    message_from_dict,
    message_to_dict,
)
from agentcore.retry import is_retriable


def _provider(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ProxyProvider("https://proxy.test/api/", api_key="tok", model="m-1", client=client, **kwargs), client


def _sse(*events):
    lines = []
    for event in events:
        payload = event if isinstance(event, str) else json.dumps(event)
        lines.append(f"data: {payload}\n\n")
    return "".join(lines).encode("utf-8")


def test_complete_posts_history_and_options():
    seen = {}

    def _handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "role": "assistant",
                "content": [
                    {"type": "text", "text": "checking"},
                    {"type": "toolCall", "id": "c1", "name": "calc", "arguments": {"a": 1}},
                ],
                "usage": {"total_tokens": 30},
            },
        )

    async def _main():
        provider, client = _provider(_handler)
        options = ProviderOptions(
            system="sys",
            max_tokens=100,
            tools=[ToolSchema(name="calc", description="adds", input_schema={"type": "object"})],
        )
        message = await provider.complete([AgentMessage.user("hi")], options)
        await client.aclose()
        return message

    message = asyncio.run(_main())
    assert seen["url"] == "https://proxy.test/api/complete"
    assert seen["auth"] == "Bearer tok"
    body = seen["body"]
    assert body["model"] == "m-1"
    assert body["system"] == "sys"
    assert body["maxTokens"] == 100
    assert body["messages"][0]["content"] == [{"type": "text", "text": "hi"}]
    assert body["tools"][0]["name"] == "calc"
    assert message.text() == "checking"
    assert message.tool_calls() == [ToolCallContent(id="c1", name="calc", arguments={"a": 1})]
    assert message.usage == {"total_tokens": 30}


def test_stream_parses_sse_fragments_until_done_marker():
    def _handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/stream"
        content = _sse(
            {"type": "text", "delta": "Hel"},
            {"type": "tool_call", "index": 0, "id": "c1", "name": "calc", "argumentsDelta": '{"a":'},
            {"type": "tool_call", "index": 0, "argumentsDelta": " 2}"},
            {"type": "done", "usage": {"total_tokens": 4}},
            "[DONE]",
            {"type": "text", "delta": "ignored"},
        )
        return httpx.Response(200, content=content, headers={"content-type": "text/event-stream"})

    async def _main():
        provider, client = _provider(_handler)
        chunks = [c async for c in provider.stream([AgentMessage.user("hi")], ProviderOptions())]
        await client.aclose()
        return chunks

    chunks = asyncio.run(_main())
    assert [c.type for c in chunks] == ["text", "tool_call", "tool_call", "done"]
    assert chunks[0].delta == "Hel"
    assert chunks[1].tool_call.name == "calc"
    assert chunks[2].tool_call.arguments_delta == " 2}"
    assert chunks[3].usage == {"total_tokens": 4}


def test_stream_error_fragment_raises():
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_sse({"type": "error", "error": "upstream failed"}))

    async def _main():
        provider, client = _provider(_handler)
        try:
            return [c async for c in provider.stream([], ProviderOptions())]
        finally:
            await client.aclose()

    with pytest.raises(ProviderStreamError, match="upstream failed"):
        asyncio.run(_main())


@pytest.mark.parametrize("status, transient", [(503, True), (429, True), (400, False)])
def test_http_errors_are_classified(status, transient):
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"error": {"message": "nope"}})

    async def _main():
        provider, client = _provider(_handler)
        try:
            await provider.complete([], ProviderOptions())
        finally:
            await client.aclose()

    with pytest.raises(ProviderHTTPError) as info:
        asyncio.run(_main())
    assert info.value.status_code == status
    assert info.value.transient is transient
    assert is_retriable(info.value) is transient
    assert "nope" in str(info.value)


def test_injected_client_is_not_closed_by_provider():
    async def _main():
        provider, client = _provider(lambda request: httpx.Response(200, json={}))
        await provider.close()
        closed = client.is_closed
        await client.aclose()
        return closed

    assert asyncio.run(_main()) is False


def test_owned_client_is_closed():
    async def _main():
        provider = ProxyProvider("https://proxy.test")
        await provider.close()
        return provider._client.is_closed

    assert asyncio.run(_main()) is True


def test_message_wire_format_uses_camel_case_keys():
    message = AgentMessage(
        role="toolResult",
        content=[ToolResultContent(tool_call_id="c1", content="3", is_error=True)],
        timestamp=1.5,
    )
    data = message_to_dict(message)
    assert data["content"][0] == {"type": "toolResult", "toolCallId": "c1", "content": "3", "isError": True}
    parsed = message_from_dict(data)
    assert parsed.content[0] == message.content[0]
    assert parsed.timestamp == 1.5


def test_message_from_dict_accepts_string_content_and_string_arguments():
    message = message_from_dict(
        {
            "content": [
                {"type": "toolCall", "id": "c", "name": "t", "arguments": '{"x": 1}'},
                {"type": "image", "url": "ignored"},
            ]
        }
    )
    assert message.role == "assistant"
    assert message.tool_calls()[0].arguments == {"x": 1}
    assert message_from_dict({"role": "assistant", "content": "plain"}).text() == "plain"


def test_agent_streams_through_proxy_provider():
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_sse({"type": "text", "delta": "Hi"}, {"type": "text", "delta": "!"}, "[DONE]"))

    async def _main():
        provider, client = _provider(_handler)
        agent = Agent(provider=provider)
        events = [e async for e in agent.run("hello", streaming=True)]
        await agent.close()
        await client.aclose()
        return events

    events = asyncio.run(_main())
    assert [e.type for e in events] == ["text", "text", "done"]
    assert events[-1].result.text == "Hi!"
