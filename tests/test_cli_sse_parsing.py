"""
Unit tests for CLI SSE parsing.

parse_sse_line() turns one line of the chat stream into an event dict.
"""

import json

from app.cli.commands.chat import parse_sse_line


class TestSSELineParsing:
    def test_parse_start_marker(self) -> None:
        result = parse_sse_line('data: {"event": "start"}')

        assert result == {"event": "start"}

    def test_parse_text_delta(self) -> None:
        line = 'data: {"event": "text-delta", "data": {"type": "text-delta", "id": "p1", "delta": "hel", "messageId": "m2"}}'
        result = parse_sse_line(line)

        assert result is not None
        assert result["event"] == "text-delta"
        assert result["data"]["delta"] == "hel"

    def test_parse_tool_call_result(self) -> None:
        data = {
            "type": "tool-call-result",
            "id": "c1",
            "name": "processDocument",
            "input": {"id": "d1", "name": "a.pdf"},
            "output": {"success": True, "data": "ok"},
            "messageId": "m2",
        }
        result = parse_sse_line(f"data: {json.dumps({'event': 'tool-call-result', 'data': data})}")

        assert result is not None
        assert result["data"]["output"]["success"] is True

    def test_parse_error_event(self) -> None:
        result = parse_sse_line('data: {"event": "error", "data": {"code": 404, "message": "Resource not found."}}')

        assert result is not None
        assert result["data"]["code"] == 404

    def test_empty_line(self) -> None:
        assert parse_sse_line("") is None
        assert parse_sse_line("   ") is None
        assert parse_sse_line("\t\t") is None

    def test_non_data_line(self) -> None:
        assert parse_sse_line("event: token") is None
        assert parse_sse_line(": comment") is None
        assert parse_sse_line("id: 123") is None
        assert parse_sse_line("retry: 5000") is None

    def test_malformed_json(self) -> None:
        assert parse_sse_line("data: {not json") is None
        assert parse_sse_line("data:") is None

    def test_unicode_payload(self) -> None:
        result = parse_sse_line('data: {"event": "text-delta", "data": {"delta": "你好 ☕"}}')

        assert result is not None
        assert result["data"]["delta"] == "你好 ☕"
