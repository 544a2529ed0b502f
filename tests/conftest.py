import asyncio
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Sequence

# keep the default database out of the repository (before importing app)
os.environ["CHATSTREAM_DB_PATH"] = str(Path(tempfile.gettempdir()) / "chatstream_test" / "chat.db")
os.environ["CHATSTREAM_MOCK_DELAY_MS"] = "0"

import pytest

from app.schemas.message import (
    Message,
    MessageEndPart,
    MessagePart,
    MessageStartPart,
    TextDeltaPart,
    TextEndPart,
    TextStartPart,
)
from app.services import chat_store, run_control
from app.services.run_control import AbortSignal


@pytest.fixture(autouse=True)
def isolated_db(tmp_path: Path):
    db_path = tmp_path / "chat.db"
    chat_store.set_db_path(db_path)
    run_control.reset_state()
    yield db_path
    chat_store.set_db_path(None)
    run_control.reset_state()


def hello_parts(message_id: str = "m2", part_id: str = "p1", text: str = "hello") -> list[MessagePart]:
    return [
        MessageStartPart(messageId=message_id),
        TextStartPart(id=part_id, messageId=message_id),
        TextDeltaPart(id=part_id, delta=text, messageId=message_id),
        TextEndPart(id=part_id, messageId=message_id),
        MessageEndPart(messageId=message_id, finishReason="stop"),
    ]


class ScriptedAssistant:
    """Producer that replays a fixed list of parts.

    ``hang_at`` blocks forever before yielding that index; ``fail_at``
    raises before yielding that index.
    """

    def __init__(
        self,
        parts: Optional[Sequence[MessagePart]] = None,
        title: str = "Scripted title",
        allowed: bool = True,
        hang_at: Optional[int] = None,
        fail_at: Optional[int] = None,
        title_error: Optional[Exception] = None,
    ) -> None:
        self.parts = list(parts if parts is not None else hello_parts())
        self.title = title
        self.allowed = allowed
        self.hang_at = hang_at
        self.fail_at = fail_at
        self.title_error = title_error
        self.title_calls: list[list[str]] = []
        self.stream_calls: list[tuple[list[str], str]] = []
        self.validated: list[str] = []

    def is_content_valid(self, message: Message) -> bool:
        self.validated.append(message.id)
        return self.allowed

    async def stream_reply(self, previous_messages: Sequence[Message], user_message: Message, signal: AbortSignal):
        self.stream_calls.append(([message.id for message in previous_messages], user_message.id))
        for index, part in enumerate(self.parts):
            if self.fail_at == index:
                raise RuntimeError("upstream exploded")
            if self.hang_at == index:
                await asyncio.Event().wait()
            yield part
            await asyncio.sleep(0)

    async def generate_chat_title(self, messages: Sequence[Message]) -> str:
        self.title_calls.append([message.id for message in messages])
        if self.title_error is not None:
            raise self.title_error
        return self.title


class EventLog:
    """Collects outbound events; optional hook runs after each one."""

    def __init__(self, hook: Any = None) -> None:
        self.events: list = []
        self.hook = hook

    def __call__(self, event) -> None:
        self.events.append(event)
        if self.hook is not None:
            self.hook(event)

    @property
    def names(self) -> list[str]:
        return [event.event for event in self.events]
