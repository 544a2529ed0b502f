"""Turn orchestration and chat CRUD.

A turn validates the user message, persists it, streams the producer's
parts through the content assembler to the caller, persists the assistant
message and, on the chat's first successful turn, names the chat.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable, Sequence, TypeVar

from pydantic import BaseModel, ValidationError

from app.core.auth import AuthContext
from app.core.config import Settings
from app.core.errors import ApplicationError
from app.core.guardrails import is_valid_identifier, sanitize_limit, sanitize_title
from app.schemas.chat import (
    ChatListResponse,
    ChatMessagesResponse,
    CreateChatRequest,
    DocumentInput,
    SendMessageRequest,
    StopChatResponse,
    StreamEvent,
    UpdateChatRequest,
    UpdateMessageRequest,
    UserContentInput,
)
from app.schemas.message import (
    Chat,
    ContentBlock,
    DocumentContentBlock,
    Message,
    MessagePart,
    TextContentBlock,
)
from app.services import chat_store, run_control
from app.services.assistant import AssistantService
from app.services.chat_store import DuplicateIdError, InvalidParentError
from app.services.content_assembler import ContentAssembler
from app.services.message_tree import ancestor_chain, build_view
from app.services.run_control import ABORT_TIMEOUT, AbortSignal


logger = logging.getLogger("chatstream.chat_service")

EventCallback = Callable[[StreamEvent], None]
RequestT = TypeVar("RequestT", bound=BaseModel)


def _parse_request(model: type[RequestT], payload: Any) -> RequestT:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(item) for item in first.get("loc", ()))
        detail = first.get("msg", "invalid request")
        raise ApplicationError.bad_request(f"Invalid request: {location} {detail}".strip()) from exc


def _require_identifier(value: str | None, field_name: str) -> None:
    if value is not None and not is_valid_identifier(value):
        raise ApplicationError.bad_request(f"Invalid {field_name}.")


def _to_content_blocks(content: Sequence[UserContentInput]) -> list[ContentBlock]:
    blocks: list[ContentBlock] = []
    for item in content:
        if isinstance(item, DocumentInput):
            _require_identifier(item.id, "document id")
            blocks.append(DocumentContentBlock(id=item.id, name=item.name, mimetype=item.mimetype))
        else:
            blocks.append(TextContentBlock(id=str(uuid.uuid4()), text=item.text))
    return blocks


class ChatService:
    def __init__(self, assistant: AssistantService, settings: Settings) -> None:
        self.assistant = assistant
        self.settings = settings

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def start_chat(
        self,
        payload: Any,
        auth: AuthContext,
        on_event: EventCallback,
        signal: AbortSignal,
    ) -> Message:
        """Create a chat with its first user message and run the first turn.

        Raises ``ApplicationError`` before anything is persisted or emitted
        when the request is malformed or the message is rejected.
        """

        request = _parse_request(CreateChatRequest, payload)
        _require_identifier(request.id, "message id")
        _require_identifier(request.chatId, "chat id")
        _require_identifier(request.projectId, "project id")

        chat_id = request.chatId or str(uuid.uuid4())
        user_message = Message(
            id=request.id,
            role="user",
            content=_to_content_blocks(request.content),
            parentMessageId=None,
            chatId=chat_id,
        )
        self._moderate(user_message)

        chat = Chat(id=chat_id, title="", userId=auth.user_id, projectId=request.projectId)
        try:
            chat, user_message = chat_store.create_chat_with_message(chat, user_message)
        except DuplicateIdError as exc:
            raise ApplicationError.bad_request("Chat or message id already exists.") from exc
        logger.info("Chat created chat_id=%s user_id=%s", chat.id, auth.user_id)

        assistant_message = await self._run_turn(chat.id, [], user_message, on_event, signal)
        if assistant_message.finishReason == "stop":
            await self._name_chat(chat.id, [user_message, assistant_message])

        on_event(StreamEvent(event="end"))
        return assistant_message

    async def continue_chat(
        self,
        chat_id: str,
        payload: Any,
        auth: AuthContext,
        on_event: EventCallback,
        signal: AbortSignal,
    ) -> Message:
        request = _parse_request(SendMessageRequest, payload)
        _require_identifier(request.id, "message id")
        _require_identifier(request.parentMessageId, "parent message id")

        chat = self._get_owned_chat(chat_id, auth)
        user_message = Message(
            id=request.id,
            role="user",
            content=_to_content_blocks(request.content),
            parentMessageId=request.parentMessageId,
            chatId=chat.id,
        )
        self._moderate(user_message)

        context = ancestor_chain(chat_store.list_messages(chat.id), request.parentMessageId)
        try:
            user_message = chat_store.insert_message(user_message)
        except InvalidParentError as exc:
            raise ApplicationError.bad_request("Parent message does not exist in this chat.") from exc
        except DuplicateIdError as exc:
            raise ApplicationError.bad_request("Message id already exists.") from exc

        assistant_message = await self._run_turn(chat.id, context, user_message, on_event, signal)
        # a chat whose first turn did not finish cleanly is still unnamed
        if assistant_message.finishReason == "stop" and not chat.title:
            await self._name_chat(chat.id, [user_message, assistant_message])

        on_event(StreamEvent(event="end"))
        return assistant_message

    async def _run_turn(
        self,
        chat_id: str,
        context: Sequence[Message],
        user_message: Message,
        on_event: EventCallback,
        signal: AbortSignal,
    ) -> Message:
        on_event(StreamEvent(event="start"))

        def forward(part: MessagePart) -> None:
            on_event(StreamEvent(event=part.type, data=part))

        run_control.register_turn(chat_id, signal)
        timeout_handle: asyncio.TimerHandle | None = None
        if self.settings.turn_timeout_seconds > 0:
            loop = asyncio.get_running_loop()
            timeout_handle = loop.call_later(self.settings.turn_timeout_seconds, signal.abort, ABORT_TIMEOUT)
        try:
            assembler = ContentAssembler(user_message, signal)
            parts = self.assistant.stream_reply(list(context), user_message, signal)
            assistant_message = await assembler.assemble(parts, forward)
        finally:
            if timeout_handle is not None:
                timeout_handle.cancel()
            run_control.release_turn(chat_id, signal)

        try:
            stored = chat_store.insert_message(assistant_message)
        except InvalidParentError:
            logger.warning(
                "Chat deleted during turn chat_id=%s message_id=%s, reply not stored",
                chat_id,
                assistant_message.id,
            )
            return assistant_message
        logger.info(
            "Turn finished chat_id=%s message_id=%s finish_reason=%s blocks=%d",
            chat_id,
            stored.id,
            stored.finishReason,
            len(stored.content),
        )
        return stored

    async def _name_chat(self, chat_id: str, messages: list[Message]) -> None:
        try:
            title = sanitize_title(await self.assistant.generate_chat_title(messages))
            chat_store.update_chat_title(chat_id, title or self.settings.default_chat_title)
        except Exception:
            logger.warning("Title generation failed for chat_id=%s", chat_id, exc_info=True)

    def _moderate(self, message: Message) -> None:
        if not self.assistant.is_content_valid(message):
            logger.warning("Content policy violation message_id=%s chat_id=%s", message.id, message.chatId)
            raise ApplicationError.content_policy_violation()

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def _get_owned_chat(self, chat_id: str, auth: AuthContext) -> Chat:
        if not is_valid_identifier(chat_id):
            raise ApplicationError.not_found()
        chat = chat_store.get_chat(chat_id, user_id=auth.user_id)
        if chat is None:
            raise ApplicationError.not_found()
        return chat

    def get_chats(
        self,
        auth: AuthContext,
        search: str | None = None,
        cursor: str | None = None,
        limit: int = 20,
    ) -> ChatListResponse:
        items, total, next_cursor = chat_store.list_chats(
            auth.user_id,
            search=(search or "").strip() or None,
            cursor=(cursor or "").strip() or None,
            limit=sanitize_limit(limit),
        )
        return ChatListResponse(items=items, totalItems=total, nextCursor=next_cursor)

    def get_chat(self, chat_id: str, auth: AuthContext) -> Chat:
        return self._get_owned_chat(chat_id, auth)

    def get_chat_messages(self, chat_id: str, auth: AuthContext) -> ChatMessagesResponse:
        chat = self._get_owned_chat(chat_id, auth)
        view = build_view(chat_store.list_messages(chat.id))
        return ChatMessagesResponse(
            rootMessageIds=view.root_message_ids,
            latestPath=view.latest_path,
            messages=view.messages,
        )

    def update_chat(self, chat_id: str, payload: Any, auth: AuthContext) -> str:
        request = _parse_request(UpdateChatRequest, payload)
        chat = self._get_owned_chat(chat_id, auth)
        title = sanitize_title(request.title)
        if not title:
            raise ApplicationError.bad_request("Title must not be blank.")
        chat_store.update_chat_title(chat.id, title)
        return chat.id

    def update_message(self, chat_id: str, message_id: str, payload: Any, auth: AuthContext) -> str:
        request = _parse_request(UpdateMessageRequest, payload)
        chat = self._get_owned_chat(chat_id, auth)
        message = chat_store.get_message(message_id, chat.id)
        if message is None:
            raise ApplicationError.not_found()
        if message.role != "assistant":
            raise ApplicationError.bad_request("Feedback can only be set on assistant messages.")
        chat_store.update_message_feedback(message.id, request.feedback)
        return message.id

    def delete_chat(self, chat_id: str, auth: AuthContext) -> str:
        chat = self._get_owned_chat(chat_id, auth)
        run_control.stop_turn(chat.id)
        chat_store.delete_chat(chat.id)
        logger.info("Chat deleted chat_id=%s", chat.id)
        return chat.id

    def stop_chat(self, chat_id: str, auth: AuthContext) -> StopChatResponse:
        chat = self._get_owned_chat(chat_id, auth)
        stopped = run_control.stop_turn(chat.id)
        return StopChatResponse(chatId=chat.id, stopped=stopped)
