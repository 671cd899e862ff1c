"""
Conversation title generation.

Asks the configured endpoint for a short title summarising the first
exchange of a conversation, using a single non-streaming completion.
"""

from __future__ import annotations

import logging

import httpx

from streamchat.llm.client import (
    DEFAULT_TIMEOUT,
    build_headers,
    error_for_response,
    resolve_endpoint,
    validate_url,
)
from streamchat.llm.errors import (
    AuthenticationError,
    InvalidResponseFormat,
    NetworkTimeout,
    StreamingError,
)

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 50
FALLBACK_TITLE = "New Conversation"
_TITLE_PREFIXES = ("Title:", "title:", "TITLE:")
_QUOTES = "\"'“”‘’"


def build_title_prompt(user_message: str, ai_response: str | None = None) -> str:
    context = f"User: {user_message}"
    if ai_response:
        context += f"\nAssistant: {ai_response}"
    return (
        "Based on the following conversation, generate a short, concise title "
        "(maximum 6 words, in the same language as the user's message):\n\n"
        f"{context}\n\n"
        "Title:"
    )


def cleanup_title(raw: str) -> str:
    """Strip quotes and prefixes, cap the length, and never return blank."""
    title = raw.strip()
    for quote in _QUOTES:
        title = title.replace(quote, "")

    for prefix in _TITLE_PREFIXES:
        if title.startswith(prefix):
            title = title[len(prefix):].strip()

    if len(title) > MAX_TITLE_LENGTH:
        title = title[:MAX_TITLE_LENGTH] + "..."

    return title or FALLBACK_TITLE


class TitleGenerator:
    """
    Generate conversation titles through a chat-completion endpoint.

    Parameters
    ----------
    timeout:
        ``httpx.Timeout`` for the request.
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

    async def generate(
        self,
        user_message: str,
        endpoint: str,
        model_id: str,
        api_key: str | None,
        ai_response: str | None = None,
    ) -> str:
        """
        Return a cleaned-up title for the exchange.

        Raises a ``ChatError`` subclass when the request fails or the reply
        does not carry ``choices[0].message.content``.
        """
        if api_key is None:
            raise AuthenticationError("API key not found")

        url = resolve_endpoint(endpoint)
        validate_url(url)
        body = {
            "model": model_id,
            "messages": [
                {"role": "user", "content": build_title_prompt(user_message, ai_response)}
            ],
            "max_tokens": 50,
            "temperature": 0.7,
            "stream": False,
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(
                    url, json=body, headers=build_headers(api_key, accept="application/json")
                )
                error = await error_for_response(resp, model_id)
                if error is not None:
                    raise error
                try:
                    data = resp.json()
                except ValueError as exc:
                    raise InvalidResponseFormat() from exc
        except httpx.TimeoutException as exc:
            raise NetworkTimeout(str(exc) or type(exc).__name__) from exc
        except httpx.HTTPError as exc:
            raise StreamingError(str(exc) or type(exc).__name__) from exc

        content = _message_content(data)
        if content is None:
            logger.warning("Title response without message content: %.200s", data)
            raise InvalidResponseFormat()
        return cleanup_title(content)


def _message_content(data: object) -> str | None:
    if not isinstance(data, dict):
        return None
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    return content if isinstance(content, str) else None
