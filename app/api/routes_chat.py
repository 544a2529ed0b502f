import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable

from fastapi import APIRouter, Body, Depends, Header, Query
from fastapi.responses import StreamingResponse

from app.core.auth import AuthContext, get_auth_context, resolve_auth_context
from app.core.errors import ApplicationError
from app.orchestrator import get_chat_service
from app.schemas.chat import (
    ChatListResponse,
    ChatMessagesResponse,
    StopChatResponse,
    StreamEvent,
)
from app.schemas.message import Chat
from app.services.chat_service import ChatService, EventCallback
from app.services.run_control import ABORT_CLIENT_DISCONNECTED, AbortSignal

logger = logging.getLogger("chatstream.api")

router = APIRouter(prefix="/chats", tags=["chats"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
    "Transfer-Encoding": "chunked",
}

TurnRunner = Callable[[EventCallback, AbortSignal], Awaitable[Any]]

# strong references so a detached turn is not garbage collected mid-flight
_running_turns: set[asyncio.Task] = set()


def _sse_frame(event: StreamEvent) -> str:
    return f"data: {event.model_dump_json(exclude_none=True)}\n\n"


async def _turn_event_stream(run_turn: TurnRunner) -> AsyncIterator[str]:
    """Run one turn in its own task and relay its events as SSE frames.

    The response only drains the queue: if the client goes away the turn
    is aborted but keeps running until its assistant message is stored.
    """

    queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
    signal = AbortSignal()

    async def runner() -> None:
        try:
            await run_turn(queue.put_nowait, signal)
        except ApplicationError as exc:
            queue.put_nowait(StreamEvent(event="error", data=exc.to_dict()))
        except Exception:
            logger.exception("Chat turn failed")
            queue.put_nowait(StreamEvent(event="error", data=ApplicationError.internal_server_error().to_dict()))
        finally:
            queue.put_nowait(None)

    task = asyncio.create_task(runner())
    _running_turns.add(task)
    task.add_done_callback(_running_turns.discard)

    drained = False
    try:
        while True:
            event = await queue.get()
            if event is None:
                drained = True
                break
            yield _sse_frame(event)
    finally:
        if not drained:
            logger.info("Client disconnected, aborting turn")
            signal.abort(ABORT_CLIENT_DISCONNECTED)


def _streaming_response(run_turn: TurnRunner) -> StreamingResponse:
    return StreamingResponse(
        _turn_event_stream(run_turn),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("", response_model=ChatListResponse)
def list_chats(
    search: str | None = Query(default=None),
    cursor: str | None = Query(default=None),
    limit: int = Query(default=20),
    auth: AuthContext = Depends(get_auth_context),
    service: ChatService = Depends(get_chat_service),
) -> ChatListResponse:
    return service.get_chats(auth, search=search, cursor=cursor, limit=limit)


@router.post("")
def start_chat(
    payload: dict[str, Any] = Body(...),
    authorization: str | None = Header(default=None),
    service: ChatService = Depends(get_chat_service),
) -> StreamingResponse:
    async def run_turn(on_event: EventCallback, signal: AbortSignal) -> Any:
        auth = resolve_auth_context(authorization)
        return await service.start_chat(payload, auth, on_event, signal)

    return _streaming_response(run_turn)


@router.get("/{chat_id}", response_model=Chat)
def get_chat(
    chat_id: str,
    auth: AuthContext = Depends(get_auth_context),
    service: ChatService = Depends(get_chat_service),
) -> Chat:
    return service.get_chat(chat_id, auth)


@router.get("/{chat_id}/messages", response_model=ChatMessagesResponse)
def get_chat_messages(
    chat_id: str,
    auth: AuthContext = Depends(get_auth_context),
    service: ChatService = Depends(get_chat_service),
) -> ChatMessagesResponse:
    return service.get_chat_messages(chat_id, auth)


@router.post("/{chat_id}/messages")
def send_message(
    chat_id: str,
    payload: dict[str, Any] = Body(...),
    authorization: str | None = Header(default=None),
    service: ChatService = Depends(get_chat_service),
) -> StreamingResponse:
    async def run_turn(on_event: EventCallback, signal: AbortSignal) -> Any:
        auth = resolve_auth_context(authorization)
        return await service.continue_chat(chat_id, payload, auth, on_event, signal)

    return _streaming_response(run_turn)


# async: aborting touches the event loop's asyncio.Event
@router.post("/{chat_id}/stop", response_model=StopChatResponse)
async def stop_chat(
    chat_id: str,
    auth: AuthContext = Depends(get_auth_context),
    service: ChatService = Depends(get_chat_service),
) -> StopChatResponse:
    return service.stop_chat(chat_id, auth)


@router.patch("/{chat_id}")
def update_chat(
    chat_id: str,
    payload: dict[str, Any] = Body(...),
    auth: AuthContext = Depends(get_auth_context),
    service: ChatService = Depends(get_chat_service),
) -> dict[str, str]:
    return {"id": service.update_chat(chat_id, payload, auth)}


@router.patch("/{chat_id}/messages/{message_id}")
def update_message(
    chat_id: str,
    message_id: str,
    payload: dict[str, Any] = Body(...),
    auth: AuthContext = Depends(get_auth_context),
    service: ChatService = Depends(get_chat_service),
) -> dict[str, str]:
    return {"id": service.update_message(chat_id, message_id, payload, auth)}


@router.delete("/{chat_id}")
async def delete_chat(
    chat_id: str,
    auth: AuthContext = Depends(get_auth_context),
    service: ChatService = Depends(get_chat_service),
) -> dict[str, str]:
    return {"id": service.delete_chat(chat_id, auth)}
