"""Tests for the chat content model: turns, parts and the request envelope."""

from __future__ import annotations

import json

import pytest

from streamchat.llm.errors import EncodingError
from streamchat.llm.types import (
    ChatTurn,
    ImageDetail,
    ImagePart,
    RequestEnvelope,
    RequestState,
    Role,
    StreamEvent,
    TextPart,
    content_part_from_wire,
)
from streamchat.types import ImageAttachment


# ---------------------------------------------------------------------------
# Wire shape
# ---------------------------------------------------------------------------


class TestChatTurnWire:
    def test_plain_text(self):
        turn = ChatTurn(role=Role.USER, content="Hello")
        assert turn.to_wire() == {"role": "user", "content": "Hello"}

    def test_multipart(self):
        turn = ChatTurn(
            role=Role.USER,
            content=(
                TextPart(text="What is this?"),
                ImagePart(url="data:image/png;base64,AAAA", detail=ImageDetail.LOW),
            ),
        )
        assert turn.to_wire() == {
            "role": "user",
            "content": [
                {"type": "text", "text": "What is this?"},
                {
                    "type": "image_url",
                    "image_url": {"url": "data:image/png;base64,AAAA", "detail": "low"},
                },
            ],
        }

    def test_no_extra_fields(self):
        wire = ChatTurn(role=Role.ASSISTANT, content="ok").to_wire()
        assert set(wire) == {"role", "content"}

    def test_role_coerced_from_string(self):
        assert ChatTurn(role="system", content="x").role is Role.SYSTEM

    def test_list_content_becomes_tuple(self):
        turn = ChatTurn(role=Role.USER, content=[TextPart(text="a")])
        assert turn.content == (TextPart(text="a"),)
        assert turn.is_multipart

    def test_empty_multipart_rejected(self):
        with pytest.raises(ValueError):
            ChatTurn(role=Role.USER, content=())


class TestChatTurnFromWire:
    def test_round_trip_multipart(self):
        data = {
            "role": "user",
            "content": [
                {"type": "text", "text": "Look"},
                {"type": "image_url", "image_url": {"url": "https://img.test/a.png", "detail": "high"}},
            ],
        }
        turn = ChatTurn.from_wire(data)
        assert turn.content[1] == ImagePart(url="https://img.test/a.png", detail=ImageDetail.HIGH)
        assert turn.to_wire() == data

    def test_missing_detail_defaults_to_auto(self):
        part = content_part_from_wire({"type": "image_url", "image_url": {"url": "https://x.test/i.jpg"}})
        assert part.detail is ImageDetail.AUTO

    def test_unknown_part_type(self):
        with pytest.raises(ValueError, match="Unknown content part type"):
            content_part_from_wire({"type": "audio", "audio": {}})

    def test_unknown_role_decodes_as_user(self):
        assert ChatTurn.from_wire({"role": "tool", "content": "x"}).role is Role.USER

    def test_bad_content(self):
        with pytest.raises(ValueError):
            ChatTurn.from_wire({"role": "user", "content": 42})


# ---------------------------------------------------------------------------
# Accessors
# ---------------------------------------------------------------------------


class TestChatTurnAccessors:
    def test_text_joins_text_parts(self):
        turn = ChatTurn(
            role=Role.USER,
            content=(TextPart(text="one"), ImagePart(url="attachment:abc"), TextPart(text="two")),
        )
        assert turn.text == "one two"

    def test_with_attachments_builds_placeholders(self):
        attachments = [ImageAttachment(id="a" * 32, filename="a.png")]
        turn = ChatTurn.with_attachments(Role.USER, "Describe", attachments)
        assert turn.attachment_ids == ["a" * 32]
        assert turn.has_images
        assert turn.content[0] == TextPart(text="Describe")

    def test_with_attachments_skips_blank_text(self):
        attachments = [ImageAttachment(id="b" * 32, filename="b.jpg")]
        turn = ChatTurn.with_attachments(Role.USER, "   ", attachments)
        assert len(turn.content) == 1
        assert isinstance(turn.content[0], ImagePart)

    def test_with_attachments_without_images_is_plain(self):
        turn = ChatTurn.with_attachments(Role.USER, "hi", [])
        assert turn.content == "hi"
        assert not turn.is_multipart

    def test_inline_urls_are_not_attachment_ids(self):
        turn = ChatTurn(role=Role.USER, content=(ImagePart(url="data:image/png;base64,AA"),))
        assert turn.attachment_ids == []

    @pytest.mark.parametrize("content", ["", "   \n"])
    def test_validate_rejects_empty(self, content):
        with pytest.raises(ValueError, match="cannot be empty"):
            ChatTurn(role=Role.USER, content=content).validate()

    def test_validate_accepts_image_only(self):
        ChatTurn(role=Role.USER, content=(ImagePart(url="attachment:abc"),)).validate()


# ---------------------------------------------------------------------------
# Envelope and events
# ---------------------------------------------------------------------------


class TestRequestEnvelope:
    def test_encode(self):
        envelope = RequestEnvelope(
            model="gpt-4o",
            messages=(
                ChatTurn(role=Role.SYSTEM, content="Be brief"),
                ChatTurn(role=Role.USER, content="Grüß dich"),
            ),
        )
        body = envelope.encode()
        assert "Grüß".encode("utf-8") in body
        assert json.loads(body) == {
            "model": "gpt-4o",
            "messages": [
                {"role": "system", "content": "Be brief"},
                {"role": "user", "content": "Grüß dich"},
            ],
            "stream": True,
        }

    def test_unencodable_text(self):
        envelope = RequestEnvelope(
            model="gpt-4o",
            messages=(ChatTurn(role=Role.USER, content="broken \ud800 surrogate"),),
        )
        with pytest.raises(EncodingError):
            envelope.encode()


class TestStreamEvent:
    def test_delta_is_not_terminal(self):
        event = StreamEvent(delta="x")
        assert not event.is_terminal
        assert not event.succeeded

    def test_success(self):
        assert StreamEvent(done=True).succeeded

    def test_failure(self):
        event = StreamEvent(done=True, error=EncodingError("x"))
        assert event.is_terminal
        assert not event.succeeded


def test_final_states():
    assert {s for s in RequestState if s.is_final} == {
        RequestState.COMPLETED,
        RequestState.FAILED,
        RequestState.CANCELLED,
    }
