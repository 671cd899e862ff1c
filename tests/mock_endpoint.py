"""
Mock chat-completion endpoint for testing.

Wraps ``httpx.MockTransport`` so tests can exercise the streaming client
without hitting real APIs.  Streaming bodies are async generators, so a test
can hold the connection open mid-stream and cancel it.
"""

from __future__ import annotations

import asyncio
import json
from typing import AsyncIterator, Callable

import httpx

DONE_FRAME = b"data: [DONE]\n\n"

ResponseFactory = Callable[[httpx.Request], httpx.Response]


def frame(content: str | None) -> bytes:
    """Encode one streaming chunk carrying *content* as an SSE frame."""
    chunk = {
        "id": "chatcmpl-test",
        "object": "chat.completion.chunk",
        "choices": [{"index": 0, "delta": {"content": content}, "finish_reason": None}],
    }
    return f"data: {json.dumps(chunk)}\n\n".encode("utf-8")


async def _body(
    chunks: list[bytes],
    hold: asyncio.Event | None = None,
    error: Exception | None = None,
) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk
        await asyncio.sleep(0)
    if hold is not None:
        await hold.wait()
    if error is not None:
        raise error


def streaming_response(
    chunks: list[bytes],
    status_code: int = 200,
    headers: dict[str, str] | None = None,
    hold: asyncio.Event | None = None,
    error: Exception | None = None,
) -> ResponseFactory:
    """
    Build a factory for an SSE response streaming *chunks* in order.

    *hold* keeps the connection open after the last chunk until the event is
    set; *error* is raised from the body once the chunks are exhausted.
    """

    def factory(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            status_code,
            headers={"Content-Type": "text/event-stream", **(headers or {})},
            content=_body(chunks, hold, error),
        )

    return factory


def text_stream(*deltas: str) -> ResponseFactory:
    """Convenience: stream each delta as a frame, then ``[DONE]``."""
    return streaming_response([frame(d) for d in deltas] + [DONE_FRAME])


def error_response(
    status_code: int,
    body: str = "",
    headers: dict[str, str] | None = None,
) -> ResponseFactory:
    def factory(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, headers=headers, text=body)

    return factory


def raising(exc_type: type[httpx.TransportError], message: str) -> ResponseFactory:
    def factory(request: httpx.Request) -> httpx.Response:
        raise exc_type(message, request=request)

    return factory


class MockEndpoint:
    """
    Serve canned responses in order and record every request.

    The last factory is reused once the list is exhausted.

    Usage::

        endpoint = MockEndpoint(text_stream("Hello ", "world!"))
        client = StreamingChatClient(transport=endpoint.transport)
    """

    def __init__(self, *responses: ResponseFactory) -> None:
        self._responses = list(responses) or [text_stream()]
        self.requests: list[httpx.Request] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self._responses)) - 1
        return self._responses[index](request)
