"""Upstream producer: turns a conversation into a stream of message parts.

``MockAssistantService`` is the default producer. It answers every message
with a canned reply streamed word by word, runs one ``processDocument``
tool call per attached document first, and stops yielding as soon as the
abort signal is raised.
"""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from typing import AsyncIterator, Protocol, Sequence

from app.core.guardrails import check_content_policy
from app.schemas.message import (
    DocumentContentBlock,
    Message,
    MessageEndPart,
    MessagePart,
    MessageStartPart,
    ProcessDocumentInput,
    ProcessDocumentToolCallPart,
    ProcessDocumentToolCallResultPart,
    TextContentBlock,
    TextDeltaPart,
    TextEndPart,
    TextStartPart,
    ToolCallEndPart,
    ToolCallStartPart,
    ToolSuccess,
)
from app.services.run_control import AbortSignal


logger = logging.getLogger("chatstream.assistant")

FALLBACK_TITLE = "Imagine a title here"

MOCK_CHATS: list[dict[str, str]] = [
    {
        "title": "Squirrel Support Team",
        "message": "Unfortunately, I can't answer your message right now... but don't worry, "
        "I've hired a team of squirrels to type a response for me. They're just a little slow.",
    },
    {
        "title": "Express Pigeon Delivery",
        "message": "Unfortunately, I can't answer your message right now... but I've sent a carrier "
        "pigeon with my reply. Estimated delivery: 3-5 business days.",
    },
    {
        "title": "Mug Standoff",
        "message": "Unfortunately, I can't answer your message right now... but I'm currently in a "
        "very intense staring contest with my coffee mug.",
    },
    {
        "title": "Time-Travel Delay",
        "message": "Unfortunately, I can't answer your message right now... but I accidentally "
        "replied yesterday. Check your inbox in the past.",
    },
    {
        "title": "Penguin Conference",
        "message": "Unfortunately, I can't answer your message right now... but I'm attending a "
        "very serious penguin conference in Antarctica.",
    },
    {
        "title": "Portal Maintenance",
        "message": "Unfortunately, I can't answer your message right now... but I'm fixing a glitchy "
        "portal before my socks get lost in another dimension again.",
    },
]


class AssistantService(Protocol):
    def is_content_valid(self, message: Message) -> bool: ...

    def stream_reply(
        self,
        previous_messages: Sequence[Message],
        user_message: Message,
        signal: AbortSignal,
    ) -> AsyncIterator[MessagePart]: ...

    async def generate_chat_title(self, messages: Sequence[Message]) -> str: ...


def message_text(message: Message) -> str:
    return "\n".join(block.text for block in message.content if isinstance(block, TextContentBlock))


class MockAssistantService:
    def __init__(
        self,
        delay_ms: int = 30,
        max_text_length: int = 12000,
        rng: random.Random | None = None,
    ) -> None:
        self.delay_seconds = max(0, delay_ms) / 1000
        self.max_text_length = max_text_length
        self.rng = rng or random.Random()

    def is_content_valid(self, message: Message) -> bool:
        result = check_content_policy(message_text(message), max_length=self.max_text_length)
        if result.warnings:
            logger.info("Content policy warnings for message_id=%s: %s", message.id, result.warnings)
        return result.allowed

    async def stream_reply(
        self,
        previous_messages: Sequence[Message],
        user_message: Message,
        signal: AbortSignal,
    ) -> AsyncIterator[MessagePart]:
        message_id = str(uuid.uuid4())
        reply = self.rng.choice(MOCK_CHATS)["message"]
        logger.debug(
            "Mock reply for message_id=%s context=%d messages", user_message.id, len(previous_messages)
        )

        yield MessageStartPart(messageId=message_id)
        await self._pause()

        for block in user_message.content:
            if not isinstance(block, DocumentContentBlock):
                continue
            if signal.is_aborted:
                return
            call_id = str(uuid.uuid4())
            tool_input = ProcessDocumentInput(id=block.id, name=block.name)
            yield ToolCallStartPart(id=call_id, name="processDocument", messageId=message_id)
            await self._pause()
            yield ProcessDocumentToolCallPart(id=call_id, input=tool_input, messageId=message_id)
            await self._pause()
            yield ProcessDocumentToolCallResultPart(
                id=call_id,
                input=tool_input,
                output=ToolSuccess(data=f"Document '{block.name}' is ready."),
                messageId=message_id,
            )
            yield ToolCallEndPart(id=call_id, name="processDocument", messageId=message_id)

        if signal.is_aborted:
            return
        text_id = str(uuid.uuid4())
        yield TextStartPart(id=text_id, messageId=message_id)
        await self._pause()

        words = reply.split(" ")
        for index, word in enumerate(words):
            if signal.is_aborted:
                return
            delta = word if index == len(words) - 1 else word + " "
            yield TextDeltaPart(id=text_id, delta=delta, messageId=message_id)
            await self._pause()

        yield TextEndPart(id=text_id, messageId=message_id)
        yield MessageEndPart(messageId=message_id, finishReason="stop")

    async def generate_chat_title(self, messages: Sequence[Message]) -> str:
        assistant_message = next((message for message in messages if message.role == "assistant"), None)
        if assistant_message is None:
            return FALLBACK_TITLE
        text = message_text(assistant_message)
        for chat in MOCK_CHATS:
            if chat["message"] == text:
                return chat["title"]
        return FALLBACK_TITLE

    async def _pause(self) -> None:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        else:
            await asyncio.sleep(0)
