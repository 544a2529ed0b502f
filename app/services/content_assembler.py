"""Fold a streamed assistant turn into a persisted assistant message.

``apply_part`` is the pure transition ``(state, part) -> (state, block)``;
``ContentAssembler`` drives it over the producer's async stream, forwards
every applied part to the live channel, and closes the turn on abort,
protocol violation or producer failure so a message can always be stored.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import AsyncIterable, AsyncIterator, Callable, Iterable, Union

from app.schemas.message import (
    ContentBlock,
    FinishReason,
    Message,
    MessageEndPart,
    MessagePart,
    MessageStartPart,
    ProcessDocumentInput,
    ProcessDocumentToolCallBlock,
    ReadDocumentInput,
    ReadDocumentToolCallBlock,
    TextContentBlock,
    TextDeltaPart,
    TextEndPart,
    TextStartPart,
    ToolCallDeltaPart,
    ToolCallEndPart,
    ToolCallStartPart,
    ToolResult,
)
from app.services.run_control import AbortSignal


logger = logging.getLogger("chatstream.assembler")

PartCallback = Callable[[MessagePart], None]

_TOOL_CALL_BLOCKS = {
    "processDocument": ProcessDocumentToolCallBlock,
    "readDocument": ReadDocumentToolCallBlock,
}

_STREAM_END = object()


class ProtocolViolation(Exception):
    """The producer broke the part ordering rules."""

    def __init__(self, message: str, part_id: str | None = None) -> None:
        super().__init__(message)
        self.part_id = part_id


@dataclass(frozen=True)
class TextBuilder:
    id: str
    text: str = ""


@dataclass(frozen=True)
class ToolCallBuilder:
    id: str
    name: str
    input: Union[ProcessDocumentInput, ReadDocumentInput, None] = None
    output: ToolResult | None = None
    raw_input: str = ""


Builder = Union[TextBuilder, ToolCallBuilder]


@dataclass(frozen=True)
class AssemblerState:
    message_id: str | None = None
    # insertion ordered; never mutated in place
    open_blocks: dict[str, Builder] = field(default_factory=dict)
    finalized: tuple[ContentBlock, ...] = ()
    seen_ids: frozenset[str] = frozenset()
    finish_reason: FinishReason | None = None
    error: str | None = None

    @property
    def started(self) -> bool:
        return self.message_id is not None

    @property
    def finished(self) -> bool:
        return self.finish_reason is not None


def _part_id(part: MessagePart) -> str | None:
    return getattr(part, "id", None)


def _open_builder(state: AssemblerState, part_id: str, kind: type) -> Builder:
    builder = state.open_blocks.get(part_id)
    if builder is None:
        if part_id in state.seen_ids:
            raise ProtocolViolation(f"sub-part '{part_id}' is already finalized", part_id)
        raise ProtocolViolation(f"unknown sub-part '{part_id}'", part_id)
    if not isinstance(builder, kind):
        raise ProtocolViolation(f"sub-part '{part_id}' is not a {kind.__name__}", part_id)
    return builder


def _with_builder(state: AssemblerState, builder: Builder) -> AssemblerState:
    return replace(state, open_blocks={**state.open_blocks, builder.id: builder})


def _finalize(state: AssemblerState, part_id: str, block: ContentBlock) -> AssemblerState:
    remaining = {key: value for key, value in state.open_blocks.items() if key != part_id}
    return replace(state, open_blocks=remaining, finalized=state.finalized + (block,))


def _build_tool_call_block(builder: ToolCallBuilder) -> ContentBlock:
    block_cls = _TOOL_CALL_BLOCKS[builder.name]
    return block_cls(id=builder.id, input=builder.input, output=builder.output)


def apply_part(state: AssemblerState, part: MessagePart) -> tuple[AssemblerState, ContentBlock | None]:
    """Apply one part; return the new state and the block it finalized, if any."""

    if state.finished:
        raise ProtocolViolation(f"'{part.type}' after message-end", _part_id(part))

    if isinstance(part, MessageStartPart):
        if state.started:
            raise ProtocolViolation("duplicate message-start")
        return replace(state, message_id=part.messageId), None

    if not state.started:
        raise ProtocolViolation(f"'{part.type}' before message-start", _part_id(part))
    if part.messageId != state.message_id:
        raise ProtocolViolation(
            f"'{part.type}' belongs to message '{part.messageId}', not '{state.message_id}'",
            _part_id(part),
        )

    if isinstance(part, MessageEndPart):
        if state.open_blocks:
            open_ids = ", ".join(state.open_blocks)
            raise ProtocolViolation(f"message-end while sub-parts are still open: {open_ids}")
        return replace(state, finish_reason=part.finishReason, error=part.error), None

    if isinstance(part, (TextStartPart, ToolCallStartPart)):
        if part.id in state.seen_ids:
            raise ProtocolViolation(f"sub-part id '{part.id}' reused", part.id)
        if isinstance(part, TextStartPart):
            builder: Builder = TextBuilder(id=part.id)
        else:
            builder = ToolCallBuilder(id=part.id, name=part.name)
        return replace(_with_builder(state, builder), seen_ids=state.seen_ids | {part.id}), None

    if isinstance(part, TextDeltaPart):
        text_builder = _open_builder(state, part.id, TextBuilder)
        return _with_builder(state, replace(text_builder, text=text_builder.text + part.delta)), None

    if isinstance(part, TextEndPart):
        text_builder = _open_builder(state, part.id, TextBuilder)
        block = TextContentBlock(id=text_builder.id, text=text_builder.text)
        return _finalize(state, part.id, block), block

    # tool-call-delta, tool-call, tool-call-result, tool-call-end
    tool_builder = _open_builder(state, part.id, ToolCallBuilder)
    if part.name != tool_builder.name:
        raise ProtocolViolation(
            f"sub-part '{part.id}' started as '{tool_builder.name}', got '{part.name}'",
            part.id,
        )

    if isinstance(part, ToolCallDeltaPart):
        return _with_builder(state, replace(tool_builder, raw_input=tool_builder.raw_input + part.delta)), None

    if isinstance(part, ToolCallEndPart):
        block = _build_tool_call_block(tool_builder)
        return _finalize(state, part.id, block), block

    if part.type == "tool-call":
        return _with_builder(state, replace(tool_builder, input=part.input)), None

    # tool-call-result
    return _with_builder(state, replace(tool_builder, input=part.input, output=part.output)), None


def fold_parts(parts: Iterable[MessagePart], state: AssemblerState | None = None) -> AssemblerState:
    current = state or AssemblerState()
    for part in parts:
        current, _ = apply_part(current, part)
    return current


def synthesize_end_parts(state: AssemblerState) -> list[MessagePart]:
    """End parts that close every open sub-part, in start order."""

    if state.message_id is None:
        return []
    parts: list[MessagePart] = []
    for builder in state.open_blocks.values():
        if isinstance(builder, TextBuilder):
            parts.append(TextEndPart(id=builder.id, messageId=state.message_id))
        else:
            parts.append(ToolCallEndPart(id=builder.id, name=builder.name, messageId=state.message_id))
    return parts


class ContentAssembler:
    """Consume one turn's part stream and produce the assistant message."""

    def __init__(self, user_message: Message, signal: AbortSignal | None = None) -> None:
        self.user_message = user_message
        self.signal = signal or AbortSignal()
        self.state = AssemblerState()

    async def assemble(self, parts: AsyncIterable[MessagePart], on_event: PartCallback) -> Message:
        iterator = parts.__aiter__()
        try:
            while True:
                if self.signal.is_aborted:
                    self._close_turn(on_event, "interrupted")
                    break

                try:
                    part = await self._next_part(iterator)
                except Exception as exc:
                    logger.exception("Producer failed for message_id=%s", self.state.message_id)
                    self._close_turn(on_event, "error", f"producer failed: {exc}")
                    break

                if part is None:
                    self._close_turn(on_event, "interrupted")
                    break
                if part is _STREAM_END:
                    self._close_turn(on_event, "error", "stream ended without message-end")
                    break

                try:
                    self.state, _ = apply_part(self.state, part)
                except ProtocolViolation as exc:
                    logger.warning(
                        "Protocol violation in message_id=%s part_id=%s: %s",
                        self.state.message_id,
                        exc.part_id,
                        exc,
                    )
                    self._close_turn(on_event, "error", f"protocol violation: {exc}")
                    break

                on_event(part)
                if self.state.finished:
                    break
        finally:
            await _close_iterator(iterator)

        if self.state.finish_reason == "interrupted":
            logger.info(
                "Turn interrupted message_id=%s reason=%s blocks=%d",
                self.state.message_id,
                self.signal.reason,
                len(self.state.finalized),
            )
        return self.to_message()

    async def _next_part(self, iterator: AsyncIterator[MessagePart]) -> object:
        """Next part, ``_STREAM_END`` when exhausted, ``None`` if aborted while waiting."""

        async def _pull() -> object:
            try:
                return await iterator.__anext__()
            except StopAsyncIteration:
                return _STREAM_END

        next_task = asyncio.ensure_future(_pull())
        abort_task = asyncio.ensure_future(self.signal.wait())
        try:
            await asyncio.wait({next_task, abort_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            abort_task.cancel()

        if self.signal.is_aborted:
            if not next_task.done():
                next_task.cancel()
                await asyncio.wait({next_task})
            if not next_task.cancelled() and next_task.exception() is not None:
                logger.warning("Producer failed after abort", exc_info=next_task.exception())
            return None
        return next_task.result()

    def _close_turn(self, on_event: PartCallback, finish_reason: FinishReason, error: str | None = None) -> None:
        if not self.state.started:
            start = MessageStartPart(messageId=str(uuid.uuid4()))
            self.state, _ = apply_part(self.state, start)
            on_event(start)

        for end_part in synthesize_end_parts(self.state):
            self.state, _ = apply_part(self.state, end_part)
            on_event(end_part)

        end = MessageEndPart(messageId=self.state.message_id, finishReason=finish_reason, error=error)
        self.state, _ = apply_part(self.state, end)
        on_event(end)

    def to_message(self) -> Message:
        return Message(
            id=self.state.message_id or str(uuid.uuid4()),
            role="assistant",
            content=list(self.state.finalized),
            finishReason=self.state.finish_reason or "unknown",
            feedback=None,
            parentMessageId=self.user_message.id,
            chatId=self.user_message.chatId,
        )


async def _close_iterator(iterator: AsyncIterator[MessagePart]) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except RuntimeError:
        # generator still running on another task; nothing left to release
        logger.debug("Producer iterator could not be closed", exc_info=True)
