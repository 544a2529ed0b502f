from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

from app.schemas.message import Chat, Message, MessageFeedback


class TextInput(BaseModel):
    type: Literal["text"] = "text"
    text: str = Field(min_length=1)


class DocumentInput(BaseModel):
    type: Literal["document"] = "document"
    id: str = Field(min_length=1, max_length=128)
    name: str = Field(min_length=1)
    mimetype: str | None = None


UserContentInput = Annotated[Union[TextInput, DocumentInput], Field(discriminator="type")]


class CreateChatRequest(BaseModel):
    id: str = Field(min_length=1, max_length=128, description="Id of the first user message")
    content: list[UserContentInput] = Field(min_length=1)
    chatId: str | None = Field(default=None, max_length=128)
    projectId: str | None = None


class SendMessageRequest(BaseModel):
    id: str = Field(min_length=1, max_length=128)
    content: list[UserContentInput] = Field(min_length=1)
    parentMessageId: str | None = None


class UpdateChatRequest(BaseModel):
    title: str = Field(min_length=1)


class UpdateMessageRequest(BaseModel):
    feedback: MessageFeedback | None = None


class ChatListResponse(BaseModel):
    items: list[Chat] = Field(default_factory=list)
    totalItems: int = 0
    nextCursor: str | None = None


class ChatMessagesResponse(BaseModel):
    rootMessageIds: list[str] = Field(default_factory=list)
    latestPath: list[str] = Field(default_factory=list)
    messages: dict[str, Message] = Field(default_factory=dict)


class StopChatResponse(BaseModel):
    chatId: str
    stopped: bool


class StreamEvent(BaseModel):
    """One outbound frame of a turn: a protocol part or a transport marker."""

    event: str
    data: Any = None
