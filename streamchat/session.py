"""
Conversation session -- ties the builder, client and credentials together.

The session:
1. Validates user input (text and/or images)
2. Looks up the API key for the active endpoint
3. Builds the request envelope from its history
4. Streams the reply through the client, relaying events in order
5. Records the exchange in history once the reply completes

Only completed replies are recorded.  When a request fails the user turn is
kept and any partial assistant text is discarded; when it is cancelled the
assistant side is not recorded at all.
"""

from __future__ import annotations

import logging
from contextlib import aclosing
from typing import AsyncIterator, Sequence

from streamchat.config import EndpointConfig
from streamchat.credentials import CredentialStore
from streamchat.llm.client import StreamingChatClient
from streamchat.llm.errors import AuthenticationError, ChatError
from streamchat.llm.request_builder import RequestBuilder
from streamchat.llm.types import ChatTurn, Role, StreamEvent
from streamchat.types import ConfigurationTestResult, ImageAttachment

logger = logging.getLogger(__name__)

PROBE_MESSAGE = "tell me a joke"


class ChatSession:
    """
    One conversation against one endpoint.

    Parameters
    ----------
    endpoint : EndpointConfig
        Base URL, model and system prompts to use.
    client : StreamingChatClient
        Client owned by this session; one request in flight at a time.
    builder : RequestBuilder
        Builds request envelopes, resolving image attachments.
    credentials : CredentialStore
        Source of the endpoint's API key.
    max_image_count : int
        Maximum number of images attached to one message.
    history : list of ChatTurn
        Prior turns to continue from.
    """

    def __init__(
        self,
        endpoint: EndpointConfig,
        client: StreamingChatClient,
        builder: RequestBuilder,
        credentials: CredentialStore,
        max_image_count: int = 4,
        history: Sequence[ChatTurn] | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.client = client
        self.builder = builder
        self.credentials = credentials
        self.max_image_count = max_image_count
        self._history: list[ChatTurn] = list(history or [])

    @property
    def history(self) -> list[ChatTurn]:
        return list(self._history)

    def clear(self) -> None:
        self._history.clear()

    async def cancel(self) -> None:
        await self.client.cancel()

    async def send(
        self,
        text: str,
        attachments: Sequence[ImageAttachment] = (),
    ) -> AsyncIterator[StreamEvent]:
        """
        Send a user message and yield the reply as ``StreamEvent`` objects.

        Raises ``ValueError`` for an empty message or too many images.
        Every other failure arrives as a single terminal event.
        """
        user_turn = ChatTurn.with_attachments(Role.USER, text, attachments)
        user_turn.validate()
        if len(attachments) > self.max_image_count:
            raise ValueError(
                f"At most {self.max_image_count} images can be attached to a message"
            )

        async with aclosing(self._exchange(user_turn, text, attachments)) as events:
            async for event in events:
                yield event

    async def _exchange(
        self,
        user_turn: ChatTurn,
        text: str,
        attachments: Sequence[ImageAttachment],
    ) -> AsyncIterator[StreamEvent]:
        api_key = self.credentials.get_api_key(self.endpoint.id)
        if api_key is None:
            yield StreamEvent(done=True, error=AuthenticationError("API key not found"))
            return

        try:
            envelope = await self.builder.build(
                history=self._history,
                system_prompts=self.endpoint.system_prompts,
                current_text=text,
                attachments=attachments,
                model_id=self.endpoint.model_id,
            )
        except ChatError as exc:
            logger.warning("Could not build request: %s", exc)
            yield StreamEvent(done=True, error=exc)
            return

        self._history.append(user_turn)
        stream = await self.client.send(envelope, self.endpoint.base_url, api_key)

        content_parts: list[str] = []
        finished = False
        try:
            async for event in stream:
                if event.delta:
                    content_parts.append(event.delta)
                if event.succeeded:
                    self._history.append(
                        ChatTurn(role=Role.ASSISTANT, content="".join(content_parts))
                    )
                elif event.error is not None:
                    logger.info(
                        "Discarding %d partial characters after %s",
                        sum(len(p) for p in content_parts),
                        type(event.error).__name__,
                    )
                finished = event.done
                yield event
        finally:
            # Caller stopped iterating early: release the connection now.
            if not finished:
                stream.cancel()


async def probe_configuration(
    endpoint: EndpointConfig,
    client: StreamingChatClient,
    builder: RequestBuilder,
    credentials: CredentialStore,
) -> ConfigurationTestResult:
    """Send a throwaway message to check that an endpoint answers."""
    api_key = credentials.get_api_key(endpoint.id)
    try:
        envelope = await builder.build(
            history=[],
            system_prompts=[],
            current_text=PROBE_MESSAGE,
            attachments=[],
            model_id=endpoint.model_id,
        )
        stream = await client.send(envelope, endpoint.base_url, api_key)
        content = await stream.collect()
    except ChatError as exc:
        return ConfigurationTestResult(
            successful=False,
            content=exc.description,
            endpoint_name=endpoint.name,
            error=exc,
        )

    return ConfigurationTestResult(
        successful=bool(content),
        content=content or "No response received",
        endpoint_name=endpoint.name,
    )
