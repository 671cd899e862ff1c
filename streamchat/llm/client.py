"""
Streaming chat-completion client.

Works with any endpoint that speaks the OpenAI ``/chat/completions`` wire
protocol with ``stream: true``.

One client holds at most one request in flight.  ``send`` cancels the
previous request, waits for it to unwind, and only then opens the next
connection.  Each request runs in its own task and feeds a queue; every event
is checked against the request's cancellation token, its generation and its
terminal flag before it is queued, so a stale request can never deliver
events to the caller.

Dependencies: ``httpx`` (async HTTP client).  No ``openai`` SDK needed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable

import httpx

from streamchat.llm.errors import (
    AuthenticationError,
    ChatError,
    InvalidURL,
    ModelNotFound,
    NetworkTimeout,
    RateLimitExceeded,
    ServerError,
    StreamingError,
)
from streamchat.llm.sse import DONE, SSELineBuffer, parse_sse_line
from streamchat.llm.types import RequestEnvelope, RequestState, StreamEvent

logger = logging.getLogger(__name__)

COMPLETIONS_PATH = "/chat/completions"
_VERBATIM_MARKERS = (COMPLETIONS_PATH, "/external/")
DEFAULT_RETRY_AFTER = 60
DEFAULT_TIMEOUT = httpx.Timeout(60.0, connect=10.0, write=30.0, pool=10.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def resolve_endpoint(base_url: str) -> str:
    """Use *base_url* verbatim if it is already a full endpoint, else append the path."""
    if any(marker in base_url for marker in _VERBATIM_MARKERS):
        return base_url
    return f"{base_url.rstrip('/')}{COMPLETIONS_PATH}"


def validate_url(url: str) -> httpx.URL:
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError, ValueError) as exc:
        raise InvalidURL(url) from exc
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise InvalidURL(url)
    return parsed


def retry_after_seconds(headers: httpx.Headers, default: int = DEFAULT_RETRY_AFTER) -> int:
    """Parse a ``Retry-After`` header given in seconds."""
    value = headers.get("retry-after")
    if value is None:
        return default
    try:
        seconds = int(float(value.strip()))
    except ValueError:
        return default
    return seconds if seconds >= 0 else default


def build_headers(api_key: str, accept: str = "text/event-stream") -> dict[str, str]:
    headers: dict[str, str] = {
        "Content-Type": "application/json",
        "Accept": accept,
    }
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


async def error_for_response(response: httpx.Response, model_id: str) -> ChatError | None:
    """Map a response status line onto the error taxonomy (``None`` for 2xx)."""
    status = response.status_code
    if 200 <= status < 300:
        return None
    if status == 401:
        return AuthenticationError("Invalid API key")
    if status == 404:
        return ModelNotFound(model_id)
    if status == 429:
        return RateLimitExceeded(retry_after_seconds(response.headers))

    body = await response.aread()
    message = body.decode("utf-8", errors="replace").strip() or response.reason_phrase
    return ServerError(status, message)


def _mask(api_key: str | None) -> str:
    if not api_key:
        return "(none)"
    return f"{api_key[:6]}..."


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class CancellationToken:
    """
    Cooperative cancellation flag.

    Callbacks registered with ``add_callback`` run once, synchronously, when
    ``cancel`` is first called (or immediately if it already was).  Use it
    from the event-loop thread only.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> None:
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)


# ---------------------------------------------------------------------------
# Stream handle
# ---------------------------------------------------------------------------


class ChatStream:
    """
    Handle for one in-flight request; iterate it for ``StreamEvent`` objects.

    Iteration ends after the terminal event, or silently as soon as the
    request is cancelled.
    """

    def __init__(self, generation: int, token: CancellationToken) -> None:
        self.generation = generation
        self._token = token
        self._queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._state = RequestState.IDLE
        self._terminated = False
        self._closed = False
        token.add_callback(self._on_cancel)

    @property
    def state(self) -> RequestState:
        return self._state

    @property
    def cancelled(self) -> bool:
        return self._token.cancelled

    def cancel(self) -> None:
        """Abort the request; no further events are delivered."""
        self._token.cancel()

    async def wait_closed(self) -> None:
        """Wait until the underlying request task has unwound."""
        if self._task is not None:
            await asyncio.wait([self._task])

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamEvent]:
        while not self._token.cancelled:
            event = await self._queue.get()
            if event is None or self._token.cancelled:
                return
            if event.done:
                self._closed = True
            yield event
            if event.done:
                return

    async def collect(self) -> str:
        """Consume the stream and return the full text, raising on failure."""
        parts: list[str] = []
        async for event in self:
            if event.error is not None:
                raise event.error
            parts.append(event.delta)
        return "".join(parts)

    # -- internal --------------------------------------------------------

    def _on_cancel(self) -> None:
        if not self._closed:
            self._state = RequestState.CANCELLED
        self._queue.put_nowait(None)
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _advance(self, state: RequestState) -> None:
        if not self._token.cancelled and not self._state.is_final:
            self._state = state


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class StreamingChatClient:
    """
    Stream-capable client for any OpenAI-API-compatible endpoint.

    Parameters
    ----------
    timeout:
        ``httpx.Timeout`` applied to every request.  The read timeout bounds
        the gap between two received chunks, not the whole response.
    transport:
        Optional ``httpx`` transport, e.g. ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        timeout: httpx.Timeout | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout or DEFAULT_TIMEOUT
        self._transport = transport
        self._generation = 0
        self._current: ChatStream | None = None
        self._lock = asyncio.Lock()

    @property
    def current(self) -> ChatStream | None:
        """The request in flight, if any."""
        if self._current is not None and self._current.state.is_final:
            return None
        return self._current

    async def send(
        self,
        envelope: RequestEnvelope,
        endpoint: str,
        api_key: str | None,
        token: CancellationToken | None = None,
    ) -> ChatStream:
        """
        Start a completion and return its stream.

        Any request already in flight on this client is cancelled first and
        awaited, so at most one connection is ever open.
        """
        async with self._lock:
            await self._cancel_current()
            self._generation += 1
            stream = ChatStream(self._generation, token or CancellationToken())
            self._current = stream
            if not stream.cancelled:
                stream._task = asyncio.create_task(
                    self._run(stream, envelope, endpoint, api_key),
                    name=f"chat-stream-{stream.generation}",
                )
            return stream

    async def cancel(self) -> None:
        """Cancel the request in flight, if any."""
        async with self._lock:
            await self._cancel_current()

    async def _cancel_current(self) -> None:
        previous, self._current = self._current, None
        if previous is None:
            return
        previous.cancel()
        await previous.wait_closed()

    # ------------------------------------------------------------------
    # Event delivery
    # ------------------------------------------------------------------

    def _deliverable(self, stream: ChatStream) -> bool:
        return (
            not stream.cancelled
            and not stream._terminated
            and stream.generation == self._generation
        )

    def _emit_delta(self, stream: ChatStream, text: str) -> None:
        if self._deliverable(stream):
            stream._queue.put_nowait(StreamEvent(delta=text))

    def _complete(self, stream: ChatStream) -> None:
        if self._deliverable(stream):
            stream._terminated = True
            stream._advance(RequestState.COMPLETED)
            stream._queue.put_nowait(StreamEvent(done=True))

    def _fail(self, stream: ChatStream, error: ChatError) -> None:
        if self._deliverable(stream):
            stream._terminated = True
            stream._advance(RequestState.FAILED)
            stream._queue.put_nowait(StreamEvent(done=True, error=error))

    # ------------------------------------------------------------------
    # Request task
    # ------------------------------------------------------------------

    async def _run(
        self,
        stream: ChatStream,
        envelope: RequestEnvelope,
        endpoint: str,
        api_key: str | None,
    ) -> None:
        stream._advance(RequestState.CONNECTING)
        try:
            if api_key is None:
                raise AuthenticationError("API key not found")
            url = resolve_endpoint(endpoint)
            validate_url(url)
            body = envelope.encode()
            logger.info(
                "REQUEST: model=%s messages=%d url=%s api_key=%s",
                envelope.model,
                len(envelope.messages),
                url,
                _mask(api_key),
            )
            await self._stream_request(stream, url, body, build_headers(api_key), envelope.model)
        except ChatError as exc:
            self._fail(stream, exc)
        except httpx.TimeoutException as exc:
            logger.warning("Request timed out: %s", exc)
            self._fail(stream, NetworkTimeout(str(exc) or type(exc).__name__))
        except httpx.HTTPError as exc:
            logger.warning("Transport error: %s", exc)
            self._fail(stream, StreamingError(str(exc) or type(exc).__name__))
        except Exception as exc:
            logger.exception("Unexpected error while streaming")
            self._fail(stream, StreamingError(str(exc) or type(exc).__name__))
        finally:
            if not stream._terminated:
                stream._queue.put_nowait(None)

    async def _stream_request(
        self,
        stream: ChatStream,
        url: str,
        body: bytes,
        headers: dict[str, str],
        model_id: str,
    ) -> None:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            async with client.stream("POST", url, content=body, headers=headers) as response:
                stream._advance(RequestState.STATUS_RECEIVED)
                error = await error_for_response(response, model_id)
                if error is not None:
                    logger.warning("HTTP %d from %s: %s", response.status_code, url, error)
                    self._fail(stream, error)
                    return

                stream._advance(RequestState.STREAMING)
                buffer = SSELineBuffer()
                async for raw_bytes in response.aiter_bytes():
                    for line in buffer.feed(raw_bytes):
                        if stream.cancelled:
                            return
                        if self._handle_line(stream, line):
                            return
                for line in buffer.flush():
                    if self._handle_line(stream, line):
                        return

        # Connection closed without [DONE]: treat as completion.
        self._complete(stream)

    def _handle_line(self, stream: ChatStream, line: str) -> bool:
        """Relay one line; return ``True`` once the end marker is seen."""
        frame = parse_sse_line(line)
        if frame is DONE:
            self._complete(stream)
            return True
        if isinstance(frame, str):
            self._emit_delta(stream, frame)
        return False
