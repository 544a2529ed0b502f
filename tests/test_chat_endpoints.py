import asyncio
import json
from typing import Any

import pytest
from fastapi.testclient import TestClient

from app.api.routes_chat import _running_turns, _turn_event_stream
from app.core.auth import AuthContext
from app.core.config import Settings
from app.main import app
from app.orchestrator import get_chat_service
from app.schemas.message import TextContentBlock
from app.services import chat_store
from app.services.assistant import MOCK_CHATS, MockAssistantService
from app.services.chat_service import ChatService

from conftest import ScriptedAssistant, hello_parts


client = TestClient(app)
AUTH = {"Authorization": "Bearer u1"}


@pytest.fixture
def scripted():
    assistant = ScriptedAssistant()
    app.dependency_overrides[get_chat_service] = lambda: ChatService(assistant=assistant, settings=Settings())
    yield assistant
    app.dependency_overrides.pop(get_chat_service, None)


def _events_from_sse(raw: str) -> list[dict[str, Any]]:
    events = []
    for line in raw.splitlines():
        if not line.startswith("data: "):
            continue
        events.append(json.loads(line[len("data: ") :]))
    return events


def _stream(path: str, payload: dict, headers: dict | None = None) -> list[dict[str, Any]]:
    with client.stream("POST", path, json=payload, headers=AUTH if headers is None else headers) as resp:
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        return _events_from_sse("".join(list(resp.iter_text())))


def _start_chat(chat_id: str = "c1", message_id: str = "m1") -> list[dict[str, Any]]:
    return _stream("/chats", {"id": message_id, "chatId": chat_id, "content": [{"type": "text", "text": "hi"}]})


def test_health() -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_start_chat_streams_turn_and_persists(scripted) -> None:
    events = _start_chat()

    assert [event["event"] for event in events] == [
        "start",
        "message-start",
        "text-start",
        "text-delta",
        "text-end",
        "message-end",
        "end",
    ]
    assert events[3]["data"] == {"type": "text-delta", "id": "p1", "delta": "hello", "messageId": "m2"}
    assert events[5]["data"]["finishReason"] == "stop"

    view = client.get("/chats/c1/messages", headers=AUTH).json()
    assert view["rootMessageIds"] == ["m1"]
    assert view["latestPath"] == ["m1", "m2"]
    assert view["messages"]["m2"]["content"] == [{"type": "text", "id": "p1", "text": "hello"}]
    assert view["messages"]["m1"]["childrenMessageIds"] == ["m2"]

    chat = client.get("/chats/c1", headers=AUTH).json()
    assert chat["title"] == "Scripted title"
    assert chat["userId"] == "u1"


def test_continue_chat_on_branch(scripted) -> None:
    _start_chat()
    scripted.parts = hello_parts(message_id="m4", part_id="p2")

    events = _stream(
        "/chats/c1/messages",
        {"id": "m3", "content": [{"type": "text", "text": "more"}], "parentMessageId": "m2"},
    )

    assert events[0]["event"] == "start"
    assert events[-1]["event"] == "end"
    view = client.get("/chats/c1/messages", headers=AUTH).json()
    assert view["latestPath"] == ["m1", "m2", "m3", "m4"]


def test_stream_errors_are_single_terminal_event(scripted) -> None:
    events = _stream(
        "/chats",
        {"id": "m1", "content": [{"type": "text", "text": "hi"}]},
        headers={},
    )
    assert events == [{"event": "error", "data": {"code": 401, "message": "Unauthorized."}}]

    scripted.allowed = False
    events = _start_chat()
    assert len(events) == 1
    assert events[0]["event"] == "error"
    assert events[0]["data"]["code"] == 1003

    events = _stream(
        "/chats/missing/messages",
        {"id": "m9", "content": [{"type": "text", "text": "x"}], "parentMessageId": None},
    )
    assert events == [{"event": "error", "data": {"code": 404, "message": "Resource not found."}}]
    assert scripted.stream_calls == []


def test_json_endpoints_require_auth() -> None:
    resp = client.get("/chats")
    assert resp.status_code == 401
    assert resp.json() == {"error": {"code": 401, "message": "Unauthorized."}}


def test_chat_crud(scripted) -> None:
    _start_chat("c1", "m1")
    scripted.parts = hello_parts(message_id="m12")
    _start_chat("c2", "m11")

    listing = client.get("/chats", params={"limit": 1}, headers=AUTH).json()
    assert [item["id"] for item in listing["items"]] == ["c2"]
    assert listing["totalItems"] == 2
    assert listing["nextCursor"]

    resp = client.patch("/chats/c1", json={"title": "Renamed"}, headers=AUTH)
    assert resp.status_code == 200
    assert resp.json() == {"id": "c1"}
    assert client.get("/chats/c1", headers=AUTH).json()["title"] == "Renamed"

    resp = client.patch("/chats/c1/messages/m2", json={"feedback": "like"}, headers=AUTH)
    assert resp.json() == {"id": "m2"}
    view = client.get("/chats/c1/messages", headers=AUTH).json()
    assert view["messages"]["m2"]["feedback"] == "like"

    resp = client.patch("/chats/c1/messages/m2", json={"feedback": "great"}, headers=AUTH)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == 400

    resp = client.post("/chats/c1/stop", headers=AUTH)
    assert resp.json() == {"chatId": "c1", "stopped": False}

    assert client.delete("/chats/c1", headers=AUTH).json() == {"id": "c1"}
    resp = client.get("/chats/c1", headers=AUTH)
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == 404


def test_other_users_chat_is_not_found(scripted) -> None:
    _start_chat()

    other = {"Authorization": "Bearer u2"}
    assert client.get("/chats/c1", headers=other).status_code == 404
    assert client.get("/chats/c1/messages", headers=other).status_code == 404
    assert client.post("/chats/c1/stop", headers=other).status_code == 404
    assert client.get("/chats", headers=other).json()["items"] == []


def test_mock_assistant_runs_document_tool_and_names_chat() -> None:
    service = ChatService(assistant=MockAssistantService(delay_ms=0), settings=Settings())
    app.dependency_overrides[get_chat_service] = lambda: service
    try:
        events = _stream(
            "/chats",
            {
                "id": "m1",
                "chatId": "mock-chat",
                "content": [
                    {"type": "text", "text": "summarize this"},
                    {"type": "document", "id": "d1", "name": "notes.pdf", "mimetype": "application/pdf"},
                ],
            },
        )
    finally:
        app.dependency_overrides.pop(get_chat_service, None)

    names = [event["event"] for event in events]
    assert names.index("tool-call-start") < names.index("tool-call-result") < names.index("tool-call-end")
    assert names.index("tool-call-end") < names.index("text-start")
    assert names[-2:] == ["message-end", "end"]

    view = client.get("/chats/mock-chat/messages", headers=AUTH).json()
    reply = view["messages"][view["latestPath"][-1]]
    assert reply["finishReason"] == "stop"
    assert reply["content"][0]["type"] == "tool-call"
    assert reply["content"][0]["output"]["success"] is True
    text = reply["content"][1]["text"]
    assert text in [chat["message"] for chat in MOCK_CHATS]

    title = client.get("/chats/mock-chat", headers=AUTH).json()["title"]
    assert title == next(chat["title"] for chat in MOCK_CHATS if chat["message"] == text)


def test_client_disconnect_interrupts_turn_and_keeps_partial_reply() -> None:
    service = ChatService(assistant=ScriptedAssistant(parts=hello_parts(), hang_at=3), settings=Settings())
    payload = {"id": "m1", "chatId": "c1", "content": [{"type": "text", "text": "hi"}]}

    async def run_turn(on_event, signal):
        return await service.start_chat(payload, AuthContext(user_id="u1"), on_event, signal)

    async def disconnect_after_first_delta() -> list[dict[str, Any]]:
        frames = _turn_event_stream(run_turn)
        received = [json.loads((await frames.__anext__())[len("data: ") :]) for _ in range(4)]
        await frames.aclose()
        await asyncio.gather(*list(_running_turns))
        return received

    received = asyncio.run(disconnect_after_first_delta())

    assert [event["event"] for event in received] == ["start", "message-start", "text-start", "text-delta"]
    stored = chat_store.get_message("m2", "c1")
    assert stored.finishReason == "interrupted"
    assert stored.content == [TextContentBlock(id="p1", text="hello")]
