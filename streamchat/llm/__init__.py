"""Chat subsystem -- content model, request building and SSE streaming."""

from streamchat.llm.types import (
    ChatTurn,
    ImageDetail,
    ImagePart,
    RequestEnvelope,
    RequestState,
    Role,
    StreamEvent,
    TextPart,
)
from streamchat.llm.client import CancellationToken, ChatStream, StreamingChatClient
from streamchat.llm.request_builder import RequestBuilder
from streamchat.llm.titles import TitleGenerator

__all__ = [
    "CancellationToken",
    "ChatStream",
    "ChatTurn",
    "ImageDetail",
    "ImagePart",
    "RequestBuilder",
    "RequestEnvelope",
    "RequestState",
    "Role",
    "StreamEvent",
    "StreamingChatClient",
    "TextPart",
    "TitleGenerator",
]
