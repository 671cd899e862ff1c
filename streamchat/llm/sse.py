"""
Server-Sent Events framing for chat-completion streams.

The network hands us arbitrary byte chunks; a single SSE line (or even a
single UTF-8 character) may be split across two reads.  ``SSELineBuffer``
carries the incomplete tail between reads and only releases complete lines.
``parse_sse_line`` turns one complete line into a text delta.

Each SSE event has the form::

    data: {"choices":[{"delta":{"content":"..."}}]}

The sentinel ``data: [DONE]`` terminates the stream.
"""

from __future__ import annotations

import codecs
import json
import logging

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_PAYLOAD = "[DONE]"


class _Done:
    def __repr__(self) -> str:
        return "DONE"


DONE = _Done()


class SSELineBuffer:
    """Split a byte stream into complete text lines."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> list[str]:
        """Add *chunk* and return every line it completed."""
        self._pending += self._decoder.decode(chunk)
        if "\n" not in self._pending:
            return []
        *lines, self._pending = self._pending.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        """Return the trailing unterminated line once the stream has ended."""
        self._pending += self._decoder.decode(b"", final=True)
        tail, self._pending = self._pending, ""
        return [tail.rstrip("\r")] if tail.strip() else []


def parse_sse_line(line: str) -> str | _Done | None:
    """
    Interpret one complete SSE line.

    Returns ``DONE`` for the end marker, the text delta for a content frame,
    or ``None`` for anything to skip (blank lines, comments, other fields,
    frames without content, malformed JSON).
    """
    line = line.strip()
    if not line or not line.startswith(DATA_PREFIX):
        return None

    data_str = line[len(DATA_PREFIX):].strip()
    if data_str == DONE_PAYLOAD:
        return DONE

    try:
        data = json.loads(data_str)
    except json.JSONDecodeError:
        logger.warning("Failed to parse SSE data: %s", data_str[:200])
        return None

    return _delta_content(data)


def _delta_content(data: object) -> str | None:
    """Pull ``choices[0].delta.content`` out of a streaming chunk."""
    if not isinstance(data, dict):
        return None
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    choice = choices[0]
    if not isinstance(choice, dict):
        return None
    delta = choice.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if not isinstance(content, str) or not content:
        return None
    return content
