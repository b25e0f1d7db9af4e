"""Tests for ChatTransport with mocked httpx responses."""

from __future__ import annotations

import json

import httpx
import pytest

from toolstream.config import ProfileSpec, TurnSpec
from toolstream.errors import ProtocolError, TransportError
from toolstream.llm.transport import ChatTransport
from toolstream.types import FunctionCall, FunctionSchema, Message


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def openai_profile() -> ProfileSpec:
    return ProfileSpec(
        provider="lmstudio",
        url="http://localhost:1234/v1",
        api_key="test-key",
        api_type="openai",
        model="small-model",
    )


@pytest.fixture
def dashscope_profile() -> ProfileSpec:
    return ProfileSpec(api_key="sk-dash", extra_params={"enable_thinking": True})


@pytest.fixture
def ollama_profile() -> ProfileSpec:
    return ProfileSpec(
        provider="ollama",
        url="http://localhost:11434/v1",
        api_type="ollama",
        model="qwen3-8b",
    )


class _Recorder:
    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response


def _transport(profile: ProfileSpec, response: httpx.Response) -> tuple[ChatTransport, _Recorder]:
    recorder = _Recorder(response)
    return ChatTransport(profile, TurnSpec(), transport=httpx.MockTransport(recorder)), recorder


SSE_BODY = (
    'data: {"choices":[{"delta":{"content":"Hel"}}]}\n\n'
    'data: {"choices":[{"delta":{"content":"lo"}}]}\n\n'
    "data: [DONE]\n\n"
)


# ---------------------------------------------------------------------------
# Payload
# ---------------------------------------------------------------------------

class TestBuildPayload:
    def test_openai_payload(self, openai_profile):
        client = ChatTransport(openai_profile, TurnSpec(temperature=0.2, max_tokens=100))
        schema = FunctionSchema(name="f", description="d", parameters={"type": "object"})
        payload = client.build_payload(
            [Message(role="user", content="hi")], [schema], stream=True,
        )
        assert payload["model"] == "small-model"
        assert payload["stream"] is True
        assert payload["temperature"] == 0.2
        assert payload["max_tokens"] == 100
        assert payload["messages"] == [{"role": "user", "content": "hi"}]
        assert payload["tools"][0]["function"]["name"] == "f"

    def test_no_tools_key_without_tools(self, openai_profile):
        payload = ChatTransport(openai_profile).build_payload([Message(role="user", content="hi")])
        assert "tools" not in payload

    def test_ollama_options(self, ollama_profile):
        payload = ChatTransport(ollama_profile).build_payload([])
        assert payload["options"]["num_predict"] == 4096
        assert "max_tokens" not in payload

    def test_ollama_tool_call_arguments_sent_as_object(self, ollama_profile):
        call = FunctionCall(id="call_0", name="search", arguments='{"query": "hz"}')
        history = [Message(role="assistant", content=None, tool_calls=[call])]
        payload = ChatTransport(ollama_profile).build_payload(history)
        sent = payload["messages"][0]["tool_calls"][0]["function"]
        assert sent == {"name": "search", "arguments": {"query": "hz"}}
        assert history[0].tool_calls[0].arguments == '{"query": "hz"}'

    def test_openai_tool_call_arguments_stay_text(self, openai_profile):
        call = FunctionCall(id="c", name="search", arguments='{"query": "hz"}')
        payload = ChatTransport(openai_profile).build_payload(
            [Message(role="assistant", content=None, tool_calls=[call])],
        )
        assert payload["messages"][0]["tool_calls"][0]["function"]["arguments"] == '{"query": "hz"}'

    def test_extra_params_merged(self, dashscope_profile):
        payload = ChatTransport(dashscope_profile).build_payload([])
        assert payload["enable_thinking"] is True

    def test_tool_messages_on_the_wire(self, openai_profile):
        call = FunctionCall(id="c1", name="f", arguments="{}")
        payload = ChatTransport(openai_profile).build_payload([
            Message(role="assistant", content=None, tool_calls=[call]),
            Message(role="tool", content="ok", tool_call_id="c1"),
        ])
        assert payload["messages"][0]["tool_calls"] == [
            {"id": "c1", "type": "function", "function": {"name": "f", "arguments": "{}"}},
        ]
        assert payload["messages"][1]["tool_call_id"] == "c1"


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class TestStream:
    async def test_lines_yielded(self, openai_profile):
        client, recorder = _transport(openai_profile, httpx.Response(200, text=SSE_BODY))
        async with client.stream({"messages": []}) as lines:
            received = [line async for line in lines]
        await client.close()

        assert [l for l in received if l] == [
            'data: {"choices":[{"delta":{"content":"Hel"}}]}',
            'data: {"choices":[{"delta":{"content":"lo"}}]}',
            "data: [DONE]",
        ]
        (request,) = recorder.requests
        assert request.url == "http://localhost:1234/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer test-key"

    async def test_dashscope_sse_header(self, dashscope_profile):
        client, recorder = _transport(dashscope_profile, httpx.Response(200, text=SSE_BODY))
        async with client.stream({}) as lines:
            [line async for line in lines]
        assert recorder.requests[0].headers["X-DashScope-SSE"] == "enable"

    async def test_ollama_native_path(self, ollama_profile):
        client, recorder = _transport(ollama_profile, httpx.Response(200, text=""))
        async with client.stream({}) as lines:
            [line async for line in lines]
        assert recorder.requests[0].url == "http://localhost:11434/api/chat"

    async def test_error_status(self, openai_profile):
        client, _ = _transport(openai_profile, httpx.Response(429, text="rate limited"))
        with pytest.raises(TransportError, match="HTTP 429: rate limited") as exc:
            async with client.stream({}):
                pass
        assert exc.value.status_code == 429

    async def test_connection_error(self, openai_profile):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = ChatTransport(openai_profile, transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError, match="ConnectError"):
            async with client.stream({}):
                pass

    async def test_timeout(self, openai_profile):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = ChatTransport(openai_profile, transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError, match="timed out"):
            async with client.stream({}):
                pass


class TestComplete:
    async def test_json_body(self, openai_profile):
        body = {"choices": [{"message": {"content": "hi"}}]}
        client, recorder = _transport(openai_profile, httpx.Response(200, json=body))
        assert await client.complete({"stream": False}) == body
        assert json.loads(recorder.requests[0].content) == {"stream": False}

    async def test_dashscope_disables_sse(self, dashscope_profile):
        client, recorder = _transport(dashscope_profile, httpx.Response(200, json={}))
        await client.complete({})
        assert recorder.requests[0].headers["X-DashScope-SSE"] == "disable"

    async def test_invalid_json(self, openai_profile):
        client, _ = _transport(openai_profile, httpx.Response(200, text="<html>"))
        with pytest.raises(ProtocolError, match="invalid JSON"):
            await client.complete({})

    async def test_error_status_body_truncated(self, openai_profile):
        client, _ = _transport(openai_profile, httpx.Response(500, text="x" * 1000))
        with pytest.raises(TransportError) as exc:
            await client.complete({})
        assert str(exc.value) == "HTTP 500: " + "x" * 300
