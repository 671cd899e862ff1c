"""
Assemble the outgoing chat-completion payload.

The builder turns conversation state plus the current user input into a
``RequestEnvelope``:

  1. System prompts first (only when history does not already open with one).
  2. Prior turns, oldest first.
  3. The current user turn, multipart when images are attached.

Image attachments are read through the image store and inlined as
``data:<mime>;base64,...`` URLs.  That read is the only suspension point.
"""

from __future__ import annotations

import logging
from typing import Sequence

from streamchat.images import AttachmentSource
from streamchat.llm.errors import AttachmentResolutionError
from streamchat.llm.types import (
    ChatTurn,
    ContentPart,
    ImageDetail,
    ImagePart,
    RequestEnvelope,
    Role,
    TextPart,
)
from streamchat.types import ImageAttachment

logger = logging.getLogger(__name__)


def mime_type_for(filename: str) -> str:
    """``.png`` maps to ``image/png``; everything else is sent as JPEG."""
    return ImageAttachment(id="", filename=filename).media_type


def data_url(mime_type: str, b64: str) -> str:
    return f"data:{mime_type};base64,{b64}"


class RequestBuilder:
    """
    Build ``RequestEnvelope`` objects for the streaming client.

    Parameters
    ----------
    image_store:
        Source of attachment metadata and base64 image data.
    detail:
        Detail level sent with every image part of the current turn.
    """

    def __init__(
        self,
        image_store: AttachmentSource,
        detail: ImageDetail = ImageDetail.AUTO,
    ) -> None:
        self._images = image_store
        self._detail = detail

    async def build(
        self,
        history: Sequence[ChatTurn],
        system_prompts: Sequence[str],
        current_text: str,
        attachments: Sequence[ImageAttachment],
        model_id: str,
    ) -> RequestEnvelope:
        """
        Assemble and validate the payload for one send.

        Raises ``AttachmentResolutionError`` when an image cannot be read and
        ``EncodingError`` when the result cannot be serialized.
        """
        messages: list[ChatTurn] = []

        if system_prompts and not (history and history[0].role is Role.SYSTEM):
            for prompt in system_prompts:
                if prompt.strip():
                    messages.append(ChatTurn(role=Role.SYSTEM, content=prompt))

        for turn in history:
            messages.append(await self._resolve_turn(turn))

        messages.append(await self._current_turn(current_text, attachments))

        envelope = RequestEnvelope(model=model_id, messages=tuple(messages), stream=True)
        envelope.encode()

        logger.debug(
            "Built request: model=%s messages=%d images=%d",
            model_id,
            len(messages),
            len(attachments),
        )
        return envelope

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _current_turn(
        self,
        text: str,
        attachments: Sequence[ImageAttachment],
    ) -> ChatTurn:
        if not attachments:
            return ChatTurn(role=Role.USER, content=text)

        parts: list[ContentPart] = []
        if text.strip():
            parts.append(TextPart(text=text))
        for attachment in attachments:
            url = await self._inline(attachment)
            parts.append(ImagePart(url=url, detail=self._detail))
        return ChatTurn(role=Role.USER, content=tuple(parts))

    async def _resolve_turn(self, turn: ChatTurn) -> ChatTurn:
        """Copy *turn*, inlining any ``attachment:`` placeholders it still holds."""
        if not turn.has_images:
            return ChatTurn(role=turn.role, content=turn.content)

        parts: list[ContentPart] = []
        for part in turn.content:
            if isinstance(part, ImagePart) and part.attachment_id is not None:
                attachment = self._lookup(part.attachment_id)
                url = await self._inline(attachment)
                parts.append(ImagePart(url=url, detail=part.detail))
            else:
                parts.append(part)
        return ChatTurn(role=turn.role, content=tuple(parts))

    def _lookup(self, attachment_id: str) -> ImageAttachment:
        try:
            attachment = self._images.get(attachment_id)
        except ValueError as exc:
            raise AttachmentResolutionError(attachment_id, str(exc)) from exc
        if attachment is None:
            raise AttachmentResolutionError(attachment_id, "not found")
        return attachment

    async def _inline(self, attachment: ImageAttachment) -> str:
        try:
            b64 = await self._images.read_base64(attachment.id)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read image %s: %s", attachment.id, exc)
            raise AttachmentResolutionError(attachment.id, str(exc)) from exc
        return data_url(mime_type_for(attachment.filename), b64)
