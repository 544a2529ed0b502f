from __future__ import annotations

import asyncio
import logging


logger = logging.getLogger("chatstream.run_control")

ABORT_CLIENT_DISCONNECTED = "client_disconnected"
ABORT_STOP_REQUESTED = "stop_requested"
ABORT_TIMEOUT = "timeout"


class AbortSignal:
    """Stop flag shared by the orchestrator, the assembler and the producer.

    Aborting is idempotent; the first reason wins.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def is_aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: str = ABORT_STOP_REQUESTED) -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


_active_turns: dict[str, AbortSignal] = {}


def reset_state() -> None:
    _active_turns.clear()


def register_turn(chat_id: str, signal: AbortSignal) -> None:
    previous = _active_turns.get(chat_id)
    if previous is not None and previous is not signal:
        logger.warning("Replacing in-flight turn for chat_id=%s", chat_id)
    _active_turns[chat_id] = signal


def get_turn(chat_id: str) -> AbortSignal | None:
    return _active_turns.get(chat_id)


def release_turn(chat_id: str, signal: AbortSignal) -> None:
    if _active_turns.get(chat_id) is signal:
        _active_turns.pop(chat_id, None)


def stop_turn(chat_id: str, reason: str = ABORT_STOP_REQUESTED) -> bool:
    signal = _active_turns.get(chat_id)
    if signal is None:
        return False
    logger.info("Stopping turn for chat_id=%s reason=%s", chat_id, reason)
    signal.abort(reason)
    return True
