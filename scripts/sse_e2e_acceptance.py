"""SSE end-to-end acceptance checks (no manual inspection required).

Runs against FastAPI TestClient with a throwaway database and asserts:
- a new chat streams start -> message parts -> end and gets a title
- a reply on the first message creates a branch that becomes the latest path
- every stored message is reachable from the tree view
"""

from __future__ import annotations

import json
import os
import sys
import tempfile
from pathlib import Path
from typing import Any

# Ensure repository root is importable when running as script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("CHATSTREAM_DB_PATH", str(Path(tempfile.mkdtemp()) / "acceptance.db"))
os.environ.setdefault("CHATSTREAM_MOCK_DELAY_MS", "0")

from fastapi.testclient import TestClient

from app.main import app

HEADERS = {"Authorization": "Bearer acceptance-user"}


def _parse_sse(raw: str) -> list[dict[str, Any]]:
    events: list[dict[str, Any]] = []
    for line in raw.splitlines():
        if not line.startswith("data:"):
            continue
        payload = line[5:].strip()
        if not payload:
            continue
        try:
            events.append(json.loads(payload))
        except json.JSONDecodeError:
            continue
    return events


def _stream(client: TestClient, path: str, payload: dict[str, Any]) -> list[dict[str, Any]]:
    with client.stream("POST", path, json=payload, headers=HEADERS) as resp:
        assert resp.status_code == 200, f"stream failed: {resp.status_code}"
        return _parse_sse("".join(list(resp.iter_text())))


def _assert_turn_shape(events: list[dict[str, Any]]) -> str:
    names = [event.get("event") for event in events]
    assert names[0] == "start", f"turn must open with start: {names}"
    assert names[-1] == "end", f"turn must close with end: {names}"
    assert names.count("message-end") == 1, f"exactly one message-end expected: {names}"
    assert names.index("message-start") < names.index("message-end"), f"invalid part order: {names}"
    end = next(event for event in events if event.get("event") == "message-end")
    assert end["data"]["finishReason"] == "stop", f"unexpected finish: {end}"
    return str(end["data"]["messageId"])


def main() -> None:
    with TestClient(app) as client:
        first = _stream(
            client,
            "/chats",
            {"id": "acc-m1", "chatId": "acc-chat", "content": [{"type": "text", "text": "hello"}]},
        )
        first_reply = _assert_turn_shape(first)

        chat = client.get("/chats/acc-chat", headers=HEADERS).json()
        assert chat["title"], "chat title was not generated"

        second = _stream(
            client,
            "/chats/acc-chat/messages",
            {"id": "acc-m3", "content": [{"type": "text", "text": "again"}], "parentMessageId": first_reply},
        )
        second_reply = _assert_turn_shape(second)

        branch = _stream(
            client,
            "/chats/acc-chat/messages",
            {"id": "acc-m5", "content": [{"type": "text", "text": "edited"}], "parentMessageId": first_reply},
        )
        branch_reply = _assert_turn_shape(branch)

        view = client.get("/chats/acc-chat/messages", headers=HEADERS).json()
        assert view["rootMessageIds"] == ["acc-m1"], view["rootMessageIds"]
        assert view["latestPath"] == ["acc-m1", first_reply, "acc-m5", branch_reply], view["latestPath"]
        assert view["messages"][first_reply]["childrenMessageIds"] == ["acc-m3", "acc-m5"]
        assert second_reply in view["messages"], "older branch must stay stored"

    print("SSE acceptance checks passed: new chat, reply, branch")


if __name__ == "__main__":
    main()
