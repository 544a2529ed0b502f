"""Message-part protocol and persisted content blocks.

A streamed assistant turn is a sequence of parts. Parts sharing an ``id``
describe one sub-part (a text span or a tool call) and arrive in the order
start -> delta* -> end; parts for different ids may interleave. The
assembler folds parts into ``ContentBlock`` values that are stored on the
message.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator


FinishReason = Literal[
    "stop",
    "length",
    "content-filter",
    "tool-calls",
    "error",
    "other",
    "unknown",
    "interrupted",
]
ToolName = Literal["processDocument", "readDocument"]
MessageRole = Literal["user", "assistant"]
MessageFeedback = Literal["like", "dislike", "neutral"]


class ToolSuccess(BaseModel):
    success: Literal[True] = True
    data: str


class ToolFailure(BaseModel):
    success: Literal[False] = False
    error: str


ToolResult = Union[ToolSuccess, ToolFailure]


class ProcessDocumentInput(BaseModel):
    id: str
    name: str


class ReadDocumentInput(BaseModel):
    id: str
    name: str
    query: str


# ---------------------------------------------------------------------------
# Parts
# ---------------------------------------------------------------------------


class MessageStartPart(BaseModel):
    type: Literal["message-start"] = "message-start"
    messageId: str


class TextStartPart(BaseModel):
    type: Literal["text-start"] = "text-start"
    id: str
    messageId: str


class TextDeltaPart(BaseModel):
    type: Literal["text-delta"] = "text-delta"
    id: str
    delta: str
    messageId: str


class TextEndPart(BaseModel):
    type: Literal["text-end"] = "text-end"
    id: str
    messageId: str


class ToolCallStartPart(BaseModel):
    type: Literal["tool-call-start"] = "tool-call-start"
    id: str
    name: ToolName
    messageId: str


class ToolCallDeltaPart(BaseModel):
    type: Literal["tool-call-delta"] = "tool-call-delta"
    id: str
    name: ToolName
    delta: str
    messageId: str


class ProcessDocumentToolCallPart(BaseModel):
    type: Literal["tool-call"] = "tool-call"
    id: str
    name: Literal["processDocument"] = "processDocument"
    input: ProcessDocumentInput
    messageId: str


class ReadDocumentToolCallPart(BaseModel):
    type: Literal["tool-call"] = "tool-call"
    id: str
    name: Literal["readDocument"] = "readDocument"
    input: ReadDocumentInput
    messageId: str


ToolCallPart = Annotated[
    Union[ProcessDocumentToolCallPart, ReadDocumentToolCallPart],
    Field(discriminator="name"),
]


class ProcessDocumentToolCallResultPart(BaseModel):
    type: Literal["tool-call-result"] = "tool-call-result"
    id: str
    name: Literal["processDocument"] = "processDocument"
    input: ProcessDocumentInput
    output: ToolResult
    messageId: str


class ReadDocumentToolCallResultPart(BaseModel):
    type: Literal["tool-call-result"] = "tool-call-result"
    id: str
    name: Literal["readDocument"] = "readDocument"
    input: ReadDocumentInput
    output: ToolResult
    messageId: str


ToolCallResultPart = Annotated[
    Union[ProcessDocumentToolCallResultPart, ReadDocumentToolCallResultPart],
    Field(discriminator="name"),
]


class ToolCallEndPart(BaseModel):
    type: Literal["tool-call-end"] = "tool-call-end"
    id: str
    name: ToolName
    messageId: str


class MessageEndPart(BaseModel):
    type: Literal["message-end"] = "message-end"
    messageId: str
    finishReason: FinishReason
    error: str | None = None

    @model_validator(mode="after")
    def _error_only_with_error_reason(self) -> "MessageEndPart":
        if self.finishReason == "error" and not self.error:
            raise ValueError("message-end with finishReason 'error' requires an error string")
        if self.finishReason != "error" and self.error is not None:
            raise ValueError("only finishReason 'error' may carry an error string")
        return self


MessagePart = Annotated[
    Union[
        MessageStartPart,
        TextStartPart,
        TextDeltaPart,
        TextEndPart,
        ToolCallStartPart,
        ToolCallDeltaPart,
        ToolCallPart,
        ToolCallResultPart,
        ToolCallEndPart,
        MessageEndPart,
    ],
    Field(discriminator="type"),
]

_message_part_adapter: TypeAdapter[MessagePart] = TypeAdapter(MessagePart)


def parse_message_part(raw: dict) -> MessagePart:
    return _message_part_adapter.validate_python(raw)


# ---------------------------------------------------------------------------
# Content blocks
# ---------------------------------------------------------------------------


class TextContentBlock(BaseModel):
    type: Literal["text"] = "text"
    id: str
    text: str


class DocumentContentBlock(BaseModel):
    type: Literal["document"] = "document"
    id: str
    name: str
    mimetype: str | None = None


class ProcessDocumentToolCallBlock(BaseModel):
    type: Literal["tool-call"] = "tool-call"
    id: str
    name: Literal["processDocument"] = "processDocument"
    input: ProcessDocumentInput | None = None
    output: ToolResult | None = None


class ReadDocumentToolCallBlock(BaseModel):
    type: Literal["tool-call"] = "tool-call"
    id: str
    name: Literal["readDocument"] = "readDocument"
    input: ReadDocumentInput | None = None
    output: ToolResult | None = None


ToolCallContentBlock = Annotated[
    Union[ProcessDocumentToolCallBlock, ReadDocumentToolCallBlock],
    Field(discriminator="name"),
]

ContentBlock = Annotated[
    Union[TextContentBlock, DocumentContentBlock, ToolCallContentBlock],
    Field(discriminator="type"),
]

_content_blocks_adapter: TypeAdapter[list[ContentBlock]] = TypeAdapter(list[ContentBlock])

USER_BLOCK_TYPES = {"text", "document"}
ASSISTANT_BLOCK_TYPES = {"text", "tool-call"}


def parse_content_blocks(raw: list) -> list[ContentBlock]:
    return _content_blocks_adapter.validate_python(raw)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


class Message(BaseModel):
    id: str
    role: MessageRole
    content: list[ContentBlock] = Field(default_factory=list)
    parentMessageId: str | None = None
    chatId: str
    finishReason: FinishReason | None = None
    feedback: MessageFeedback | None = None
    createdAt: str | None = None
    updatedAt: str | None = None
    childrenMessageIds: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _blocks_match_role(self) -> "Message":
        allowed = USER_BLOCK_TYPES if self.role == "user" else ASSISTANT_BLOCK_TYPES
        for block in self.content:
            if block.type not in allowed:
                raise ValueError(f"{self.role} messages cannot hold '{block.type}' blocks")
        if self.role == "user" and self.feedback is not None:
            raise ValueError("feedback is only recorded on assistant messages")
        return self


class Chat(BaseModel):
    id: str
    title: str = ""
    userId: str
    projectId: str | None = None
    createdAt: str | None = None
    updatedAt: str | None = None
