"""Async chat-completion transport.

Sends one request per streaming phase and hands the raw body back to the
decoder: an async line iterator when streaming, a parsed JSON object
otherwise.  Failures are reported as ``TransportError``; retrying is left
to the caller.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Sequence

import httpx

from toolstream.config import ProfileSpec, TurnSpec
from toolstream.errors import ProtocolError, TransportError
from toolstream.types import FunctionSchema, Message

_logger = logging.getLogger(__name__)

_ERROR_BODY_LIMIT = 300


def _status_error(status_code: int, body: str) -> TransportError:
    snippet = body.strip()[:_ERROR_BODY_LIMIT]
    return TransportError(f"HTTP {status_code}: {snippet}", status_code=status_code)


def _ollama_message(message: Message) -> dict[str, Any]:
    """Wire shape for Ollama: tool-call arguments go out as JSON objects."""
    data = message.to_dict()
    for call in data.get("tool_calls", []):
        func = call["function"]
        try:
            args = json.loads(func["arguments"] or "{}")
        except json.JSONDecodeError:
            _logger.debug("Sending unparsable arguments for %s as text", func["name"])
            continue
        if isinstance(args, dict):
            func["arguments"] = args
    return data


class ChatTransport:
    """Async client for OpenAI-compatible, DashScope and Ollama chat APIs.

    Parameters
    ----------
    profile:
        Provider profile (URL, key, wire flavour, model).
    turn:
        Sampling settings and request timeout.
    transport:
        Optional ``httpx`` transport, mainly for tests.
    """

    def __init__(
        self,
        profile: ProfileSpec,
        turn: TurnSpec | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.profile = profile
        self.turn = turn or TurnSpec()
        self._api_type = profile.api_type  # "openai", "dashscope" or "ollama"

        headers = {
            "Authorization": f"Bearer {profile.api_key}",
            "Content-Type": "application/json",
        }

        # For Ollama native API, strip /v1 from url
        base_url = profile.url
        if self._api_type == "ollama":
            base_url = base_url.rstrip("/").removesuffix("/v1")

        timeout = self.turn.request_timeout
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=min(timeout, 30)),
            transport=transport,
        )

    @property
    def path(self) -> str:
        return "/api/chat" if self._api_type == "ollama" else "/chat/completions"

    def _headers(self, stream: bool) -> dict[str, str]:
        if self._api_type == "dashscope":
            return {"X-DashScope-SSE": "enable" if stream else "disable"}
        return {}

    # ------------------------------------------------------------------
    # Payload
    # ------------------------------------------------------------------

    def build_payload(
        self,
        messages: Sequence[Message],
        tools: Sequence[FunctionSchema] | None = None,
        stream: bool = True,
    ) -> dict[str, Any]:
        """Assemble the request body for one streaming phase."""
        to_wire = _ollama_message if self._api_type == "ollama" else Message.to_dict
        payload: dict[str, Any] = {
            "model": self.profile.model,
            "messages": [to_wire(m) for m in messages],
            "stream": stream,
        }
        if self._api_type == "ollama":
            payload["options"] = {
                "temperature": self.turn.temperature,
                "top_p": self.turn.top_p,
                "num_predict": self.turn.max_tokens,
            }
        else:
            payload["temperature"] = self.turn.temperature
            payload["top_p"] = self.turn.top_p
            payload["max_tokens"] = self.turn.max_tokens
        if tools:
            payload["tools"] = [t.to_openai_schema() for t in tools]
        if self.profile.extra_params:
            payload.update(self.profile.extra_params)
        return payload

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def stream(self, payload: dict[str, Any]) -> AsyncIterator[AsyncIterator[str]]:
        """Open a streaming request and yield its body as an async line iterator.

        Leaving the context closes the response, which is how an in-flight
        read is aborted on cancellation.
        """
        _logger.debug(
            "POST %s (stream, %d messages)", self.path, len(payload.get("messages", [])),
        )
        try:
            async with self._client.stream(
                "POST", self.path, json=payload, headers=self._headers(True),
            ) as resp:
                if resp.status_code >= 400:
                    body = (await resp.aread()).decode(errors="replace")
                    raise _status_error(resp.status_code, body)
                yield self._lines(resp)
        except httpx.TimeoutException as e:
            raise TransportError(f"request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e

    @staticmethod
    async def _lines(resp: httpx.Response) -> AsyncIterator[str]:
        try:
            async for line in resp.aiter_lines():
                yield line
        except httpx.TimeoutException as e:
            raise TransportError(f"stream timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"stream interrupted: {e}") from e

    async def complete(self, payload: dict[str, Any]) -> Any:
        """Send a non-streaming request and return the parsed JSON body."""
        _logger.debug(
            "POST %s (%d messages)", self.path, len(payload.get("messages", [])),
        )
        try:
            resp = await self._client.post(
                self.path, json=payload, headers=self._headers(False),
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e

        if resp.status_code >= 400:
            raise _status_error(resp.status_code, resp.text)
        try:
            return resp.json()
        except json.JSONDecodeError as e:
            raise ProtocolError(f"invalid JSON response: {e}") from e

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
