"""Render chat SSE events and stored messages in the terminal."""

from __future__ import annotations

from typing import Any

from app.cli.lib.safe_output import emoji, safe_print


class ChatRenderer:
    """Streams text deltas inline and prints tool calls as their own lines."""

    _TOOL_LABEL = {
        "processDocument": "Processing document",
        "readDocument": "Reading document",
    }

    def __init__(self) -> None:
        self._mid_line = False

    def _break_line(self) -> None:
        if self._mid_line:
            safe_print("")
            self._mid_line = False

    def render_event(self, event: dict[str, Any]) -> None:
        name = event.get("event")
        data = event.get("data") or {}

        if name == "text-delta":
            self.render_token(data.get("delta", ""))
        elif name == "tool-call-start":
            self._break_line()
            label = self._TOOL_LABEL.get(data.get("name", ""), data.get("name", "tool"))
            safe_print(f"{emoji('🔧', '[TOOL]')} {label}...")
        elif name == "tool-call-result":
            self.render_tool_result(data.get("name", ""), data.get("output") or {})
        elif name == "message-end":
            self._break_line()
            reason = data.get("finishReason")
            if reason == "interrupted":
                safe_print(f"{emoji('⏹', '[STOPPED]')} Response interrupted")
            elif reason == "error":
                self.render_error(data.get("error") or "assistant turn failed")
            elif reason and reason != "stop":
                safe_print(f"[finish: {reason}]")
        elif name == "error":
            self.render_error(data.get("message", "unknown error"))

    def render_token(self, content: str) -> None:
        safe_print(content, end="", flush=True)
        self._mid_line = bool(content) or self._mid_line

    def render_tool_result(self, tool_name: str, output: dict[str, Any]) -> None:
        label = self._TOOL_LABEL.get(tool_name, tool_name)
        if output.get("success"):
            safe_print(f"{emoji('✅', '[DONE]')} {label}: {output.get('data', '')}")
        else:
            safe_print(f"{emoji('❌', '[FAILED]')} {label}: {output.get('error', '')}")

    def render_message(self, message: dict[str, Any]) -> None:
        """Render one stored message with its role header."""
        role = message.get("role", "")
        header = "You" if role == "user" else "Assistant"
        safe_print(f"{header} ({message.get('id', '')}):")

        for block in message.get("content", []):
            block_type = block.get("type")
            if block_type == "text":
                safe_print(f"  {block.get('text', '')}")
            elif block_type == "document":
                safe_print(f"  [document] {block.get('name', '')}")
            elif block_type == "tool-call":
                output = block.get("output")
                status = "pending" if output is None else ("ok" if output.get("success") else "failed")
                safe_print(f"  [{block.get('name', 'tool')}] {status}")

        reason = message.get("finishReason")
        if role == "assistant" and reason and reason != "stop":
            safe_print(f"  [finish: {reason}]")

    def render_error(self, error_msg: str) -> None:
        self._break_line()
        safe_print(f"{emoji('❌', '[ERROR]')} Error: {error_msg}")
