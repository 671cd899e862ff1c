"""Core types for the chat subsystem."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Union

from streamchat.llm.errors import ChatError, EncodingError
from streamchat.types import ImageAttachment

ATTACHMENT_SCHEME = "attachment:"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ImageDetail(str, Enum):
    LOW = "low"
    HIGH = "high"
    AUTO = "auto"


# ---------------------------------------------------------------------------
# Content parts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextPart:
    text: str

    def to_wire(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ImagePart:
    """
    An image reference inside a multipart turn.

    *url* is either a transmittable URL (``data:`` or ``https:``) or an
    ``attachment:<id>`` placeholder that the request builder resolves.
    """

    url: str
    detail: ImageDetail = ImageDetail.AUTO

    @property
    def attachment_id(self) -> str | None:
        if self.url.startswith(ATTACHMENT_SCHEME):
            return self.url[len(ATTACHMENT_SCHEME):]
        return None

    def to_wire(self) -> dict[str, Any]:
        return {
            "type": "image_url",
            "image_url": {"url": self.url, "detail": self.detail.value},
        }


ContentPart = Union[TextPart, ImagePart]


def content_part_from_wire(data: dict[str, Any]) -> ContentPart:
    """Decode one ``{"type": ...}`` object from a multipart content array."""
    part_type = data.get("type")
    if part_type == "text":
        return TextPart(text=data.get("text") or "")
    if part_type == "image_url":
        image = data.get("image_url") or {}
        if "url" not in image:
            raise ValueError("image_url part without a url")
        detail = image.get("detail") or ImageDetail.AUTO.value
        return ImagePart(url=image["url"], detail=ImageDetail(detail))
    raise ValueError(f"Unknown content part type: {part_type!r}")


# ---------------------------------------------------------------------------
# Turns
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChatTurn:
    """
    A single role-tagged message in a conversation.

    *content* is either plain text or a non-empty tuple of content parts.
    """

    role: Role
    content: str | tuple[ContentPart, ...]

    def __post_init__(self) -> None:
        if not isinstance(self.role, Role):
            object.__setattr__(self, "role", Role(self.role))
        if not isinstance(self.content, str):
            parts = tuple(self.content)
            if not parts:
                raise ValueError("Multipart content must contain at least one part")
            object.__setattr__(self, "content", parts)

    @classmethod
    def with_attachments(
        cls,
        role: Role,
        text: str,
        attachments: Iterable[ImageAttachment],
        detail: ImageDetail = ImageDetail.AUTO,
    ) -> ChatTurn:
        """
        Build a turn carrying image placeholders for later resolution.

        Without attachments the turn is plain text.  A blank *text* is left
        out of the multipart content.
        """
        images = [
            ImagePart(url=f"{ATTACHMENT_SCHEME}{a.id}", detail=detail)
            for a in attachments
        ]
        if not images:
            return cls(role=role, content=text)
        parts: list[ContentPart] = []
        if text.strip():
            parts.append(TextPart(text=text))
        parts.extend(images)
        return cls(role=role, content=tuple(parts))

    @property
    def is_multipart(self) -> bool:
        return not isinstance(self.content, str)

    @property
    def text(self) -> str:
        """Plain text of the turn; text parts are joined with a space."""
        if isinstance(self.content, str):
            return self.content
        return " ".join(p.text for p in self.content if isinstance(p, TextPart))

    @property
    def attachment_ids(self) -> list[str]:
        if isinstance(self.content, str):
            return []
        return [
            p.attachment_id
            for p in self.content
            if isinstance(p, ImagePart) and p.attachment_id is not None
        ]

    @property
    def has_images(self) -> bool:
        return bool(self.attachment_ids)

    def validate(self) -> None:
        """Raise ``ValueError`` for a turn with nothing to send."""
        if self.text.strip():
            return
        if self.is_multipart and any(isinstance(p, ImagePart) for p in self.content):
            return
        raise ValueError("Message content cannot be empty")

    def to_wire(self) -> dict[str, Any]:
        if isinstance(self.content, str):
            content: Any = self.content
        else:
            content = [p.to_wire() for p in self.content]
        return {"role": self.role.value, "content": content}

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> ChatTurn:
        try:
            role = Role(data.get("role"))
        except ValueError:
            role = Role.USER
        content = data.get("content")
        if isinstance(content, str):
            return cls(role=role, content=content)
        if isinstance(content, list):
            return cls(
                role=role,
                content=tuple(content_part_from_wire(p) for p in content),
            )
        raise ValueError("Content must be either a string or an array of content parts")


# ---------------------------------------------------------------------------
# Envelope and stream events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RequestEnvelope:
    """The fully assembled payload for one completion call."""

    model: str
    messages: tuple[ChatTurn, ...]
    stream: bool = True

    def to_wire(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [m.to_wire() for m in self.messages],
            "stream": self.stream,
        }

    def encode(self) -> bytes:
        """Serialize to UTF-8 JSON, raising ``EncodingError`` on failure."""
        try:
            return json.dumps(self.to_wire(), ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise EncodingError(str(exc)) from exc


@dataclass
class StreamEvent:
    """
    A single event relayed by the streaming client.

    *delta* carries new assistant text.
    *done* is ``True`` on the terminal event; *error* is set when the
    request failed.
    """

    delta: str = ""
    done: bool = False
    error: ChatError | None = None

    @property
    def is_terminal(self) -> bool:
        return self.done

    @property
    def succeeded(self) -> bool:
        return self.done and self.error is None


class RequestState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STATUS_RECEIVED = "status_received"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_final(self) -> bool:
        return self in (RequestState.COMPLETED, RequestState.FAILED, RequestState.CANCELLED)

