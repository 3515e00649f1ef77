"""HTTP provider routing LLM calls through a proxy server.

:class:`ProxyProvider` implements the :class:`~agentcore.agent_types.Provider`
protocol on top of a small JSON protocol.  The client authenticates
with the proxy using a bearer token; the proxy holds the real provider
credentials and forwards the request.

``POST {base_url}/complete``
    Request body (see :func:`build_request_body`) with the model, the
    history and the options.  The response body is one assistant
    message in the format of :func:`message_to_dict`.

``POST {base_url}/stream``
    Same request body.  The response is a Server-Sent-Events stream
    of ``data: {...}`` lines, each holding one fragment::

        {"type": "text", "delta": "Hel"}
        {"type": "reasoning", "delta": "..."}
        {"type": "tool_call", "index": 0, "id": "call_1", "name": "calc",
         "argumentsDelta": "{\\"a\\": 1"}
        {"type": "done", "usage": {"total_tokens": 42}}
        {"type": "error", "error": "upstream failed"}

    A ``data: [DONE]`` line ends the stream.

HTTP failures raise :class:`ProviderHTTPError`.  Statuses 408, 429 and
5xx are marked transient so the retry classification treats them as
temporary.

Example usage::

    provider = ProxyProvider("https://proxy.example.com", api_key="...")
    agent = Agent(config, provider)
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .agent_types import (
    CHUNK_DONE,
    CHUNK_REASONING,
    CHUNK_TEXT,
    CHUNK_TOOL_CALL,
    ROLE_ASSISTANT,
    AgentMessage,
    ContentItem,
    ProviderOptions,
    StreamChunk,
    TextContent,
    ThinkingContent,
    ToolCallContent,
    ToolCallDelta,
    ToolResultContent,
)
from .config import DEFAULT_MODEL
from .errors import AgentError

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = {408, 429}


class ProviderHTTPError(AgentError):
    """Non-success response from the proxy."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.transient = status_code in TRANSIENT_STATUS_CODES or status_code >= 500
        super().__init__(f"proxy error {status_code}: {message}")


class ProviderStreamError(AgentError):
    """Error fragment received in the middle of a stream."""


###############################################################################
# Wire format
###############################################################################


def content_to_dict(item: ContentItem) -> Dict[str, Any]:
    if isinstance(item, TextContent):
        return {"type": "text", "text": item.text}
    if isinstance(item, ThinkingContent):
        return {"type": "thinking", "thinking": item.thinking}
    if isinstance(item, ToolCallContent):
        return {"type": "toolCall", "id": item.id, "name": item.name, "arguments": item.arguments}
    if isinstance(item, ToolResultContent):
        return {
            "type": "toolResult",
            "toolCallId": item.tool_call_id,
            "content": item.content,
            "isError": item.is_error,
        }
    raise TypeError(f"unsupported content item: {type(item).__name__}")


def content_from_dict(data: Dict[str, Any]) -> Optional[ContentItem]:
    """Parse one content block.  Unknown block types return ``None``."""
    ctype = data.get("type")
    if ctype == "text":
        return TextContent(text=str(data.get("text", "")))
    if ctype == "thinking":
        return ThinkingContent(thinking=str(data.get("thinking", "")))
    if ctype == "toolCall":
        arguments = data.get("arguments") or {}
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except ValueError:
                arguments = {}
        if not isinstance(arguments, dict):
            arguments = {}
        return ToolCallContent(id=str(data.get("id", "")), name=str(data.get("name", "")), arguments=arguments)
    if ctype == "toolResult":
        return ToolResultContent(
            tool_call_id=str(data.get("toolCallId", data.get("tool_call_id", ""))),
            content=str(data.get("content", "")),
            is_error=bool(data.get("isError", data.get("is_error", False))),
        )
    return None


def message_to_dict(message: AgentMessage) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "role": message.role,
        "content": [content_to_dict(item) for item in message.content],
        "timestamp": message.timestamp,
    }
    if message.usage is not None:
        data["usage"] = dict(message.usage)
    return data


def message_from_dict(data: Dict[str, Any]) -> AgentMessage:
    """Build an :class:`AgentMessage` from its wire form.

    A plain string ``content`` is accepted as a single text block.
    """
    raw_content = data.get("content") or []
    if isinstance(raw_content, str):
        raw_content = [{"type": "text", "text": raw_content}]
    content: List[ContentItem] = []
    for block in raw_content:
        if not isinstance(block, dict):
            continue
        item = content_from_dict(block)
        if item is not None:
            content.append(item)
    message = AgentMessage(role=str(data.get("role") or ROLE_ASSISTANT), content=content)
    if isinstance(data.get("timestamp"), (int, float)):
        message.timestamp = float(data["timestamp"])
    if isinstance(data.get("usage"), dict):
        message.usage = dict(data["usage"])
    return message


def chunk_from_dict(data: Dict[str, Any]) -> Optional[StreamChunk]:
    """Translate one SSE fragment into a :class:`StreamChunk`.

    Raises :class:`ProviderStreamError` for ``error`` fragments.
    """
    ctype = data.get("type")
    usage = data.get("usage") if isinstance(data.get("usage"), dict) else None
    if ctype == CHUNK_TEXT:
        return StreamChunk(type=CHUNK_TEXT, delta=str(data.get("delta", "")), usage=usage)
    if ctype == CHUNK_REASONING:
        return StreamChunk(type=CHUNK_REASONING, delta=str(data.get("delta", "")), usage=usage)
    if ctype == CHUNK_TOOL_CALL:
        return StreamChunk(
            type=CHUNK_TOOL_CALL,
            tool_call=ToolCallDelta(
                index=int(data.get("index", 0)),
                id=data.get("id"),
                name=data.get("name"),
                arguments_delta=data.get("argumentsDelta", data.get("arguments_delta")),
            ),
            usage=usage,
        )
    if ctype in (CHUNK_DONE, "usage"):
        return StreamChunk(type=CHUNK_DONE, usage=usage)
    if ctype == "error":
        raise ProviderStreamError(str(data.get("error") or "stream error"))
    return None


def build_request_body(model: str, messages: List[AgentMessage], options: ProviderOptions) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "model": model,
        "messages": [message_to_dict(m) for m in messages],
        "system": options.system,
        "temperature": options.temperature,
        "tools": [
            {
                "name": schema.name,
                "description": schema.description,
                "inputSchema": schema.input_schema,
                "inputExamples": schema.input_examples,
            }
            for schema in options.tools
        ],
    }
    if options.max_tokens > 0:
        body["maxTokens"] = options.max_tokens
    return body


###############################################################################
# Provider
###############################################################################


class ProxyProvider:
    """Provider talking to a proxy server over HTTP.

    Parameters
    ----------
    base_url : str
        Root URL of the proxy (``/complete`` and ``/stream`` are
        appended).
    api_key : str, optional
        Bearer token sent in the ``Authorization`` header.
    model : str
        Model identifier forwarded to the proxy.
    timeout : float, optional
        Request timeout in seconds.  ``None`` disables it.
    client : httpx.AsyncClient, optional
        Client to use.  A client passed in is not closed by
        :meth:`close`; one created here is.
    max_retries : int
        Connection attempts retried by the transport of a client
        created here.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: int = 0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._api_key = api_key
        self._owns_client = client is None
        if client is None:
            transport = httpx.AsyncHTTPTransport(retries=max_retries) if max_retries > 0 else None
            client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._client = client

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    @staticmethod
    def _error_message(response: httpx.Response, body: bytes) -> str:
        message = response.reason_phrase or "request failed"
        try:
            data = json.loads(body)
        except ValueError:
            return message
        if isinstance(data, dict) and "error" in data:
            error = data["error"]
            if isinstance(error, dict):
                return str(error.get("message", error))
            return str(error)
        return message

    async def complete(self, messages: List[AgentMessage], options: ProviderOptions) -> AgentMessage:
        body = build_request_body(self.model, messages, options)
        logger.debug("proxy complete (model=%s, messages=%d)", self.model, len(messages))
        response = await self._client.post(f"{self.base_url}/complete", json=body, headers=self._headers())
        if response.status_code >= 400:
            raise ProviderHTTPError(response.status_code, self._error_message(response, response.content))
        data = response.json()
        if isinstance(data, dict) and isinstance(data.get("message"), dict):
            data = data["message"]
        if not isinstance(data, dict):
            raise ProviderStreamError("proxy returned a malformed message")
        return message_from_dict(data)

    async def stream(self, messages: List[AgentMessage], options: ProviderOptions) -> AsyncIterator[StreamChunk]:
        body = build_request_body(self.model, messages, options)
        logger.debug("proxy stream (model=%s, messages=%d)", self.model, len(messages))
        async with self._client.stream(
            "POST", f"{self.base_url}/stream", json=body, headers=self._headers()
        ) as response:
            if response.status_code >= 400:
                content = await response.aread()
                raise ProviderHTTPError(response.status_code, self._error_message(response, content))
            async for line in response.aiter_lines():
                if not line or not line.startswith("data:"):
                    continue
                data_str = line[5:].strip()
                if not data_str:
                    continue
                if data_str == "[DONE]":
                    break
                try:
                    data = json.loads(data_str)
                except ValueError:
                    logger.warning("skipping malformed stream line: %s", data_str[:200])
                    continue
                if not isinstance(data, dict):
                    continue
                chunk = chunk_from_dict(data)
                if chunk is not None:
                    yield chunk

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
