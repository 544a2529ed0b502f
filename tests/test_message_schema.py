import pytest
from pydantic import ValidationError

from app.schemas.message import (
    DocumentContentBlock,
    Message,
    MessageEndPart,
    ProcessDocumentToolCallBlock,
    ReadDocumentToolCallResultPart,
    TextContentBlock,
    TextDeltaPart,
    parse_content_blocks,
    parse_message_part,
)


def test_parts_are_dispatched_on_type() -> None:
    part = parse_message_part({"type": "text-delta", "id": "p1", "delta": "hi", "messageId": "m2"})
    assert isinstance(part, TextDeltaPart)

    part = parse_message_part(
        {
            "type": "tool-call-result",
            "id": "c1",
            "name": "readDocument",
            "input": {"id": "d1", "name": "a.pdf", "query": "totals"},
            "output": {"success": False, "error": "unreadable"},
            "messageId": "m2",
        }
    )
    assert isinstance(part, ReadDocumentToolCallResultPart)
    assert part.input.query == "totals"
    assert part.output.error == "unreadable"


def test_unknown_part_type_is_rejected() -> None:
    with pytest.raises(ValidationError):
        parse_message_part({"type": "reasoning-delta", "id": "r", "messageId": "m2"})


def test_message_end_error_string_only_for_error_reason() -> None:
    assert MessageEndPart(messageId="m2", finishReason="error", error="boom").error == "boom"

    with pytest.raises(ValidationError):
        MessageEndPart(messageId="m2", finishReason="error")
    with pytest.raises(ValidationError):
        MessageEndPart(messageId="m2", finishReason="stop", error="boom")


def test_tool_call_blocks_are_dispatched_on_name() -> None:
    blocks = parse_content_blocks(
        [
            {"type": "text", "id": "t1", "text": "x"},
            {"type": "tool-call", "id": "c1", "name": "processDocument"},
        ]
    )

    assert isinstance(blocks[0], TextContentBlock)
    assert isinstance(blocks[1], ProcessDocumentToolCallBlock)
    assert blocks[1].input is None and blocks[1].output is None


def test_blocks_must_match_role() -> None:
    with pytest.raises(ValidationError):
        Message(id="m1", role="user", chatId="c1", content=[ProcessDocumentToolCallBlock(id="c1")])
    with pytest.raises(ValidationError):
        Message(
            id="m2",
            role="assistant",
            chatId="c1",
            content=[DocumentContentBlock(id="d1", name="a.pdf")],
        )


def test_feedback_only_on_assistant_messages() -> None:
    with pytest.raises(ValidationError):
        Message(id="m1", role="user", chatId="c1", feedback="like")

    message = Message(id="m2", role="assistant", chatId="c1", feedback="neutral")
    assert message.model_dump(exclude_none=True)["childrenMessageIds"] == []
