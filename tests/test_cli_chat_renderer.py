"""Tests for the chat CLI renderer."""

from app.cli.lib.chat_renderer import ChatRenderer


def _event(name, /, **data):
    return {"event": name, "data": {"type": name, **data}}


def test_text_deltas_stream_inline(capsys):
    renderer = ChatRenderer()
    renderer.render_event({"event": "start"})
    renderer.render_event(_event("text-delta", id="p1", delta="hello ", messageId="m2"))
    renderer.render_event(_event("text-delta", id="p1", delta="world", messageId="m2"))
    renderer.render_event(_event("message-end", messageId="m2", finishReason="stop"))

    out = capsys.readouterr().out
    assert out == "hello world\n"


def test_tool_call_lines(capsys):
    renderer = ChatRenderer()
    renderer.render_event(_event("tool-call-start", id="c1", name="processDocument", messageId="m2"))
    renderer.render_event(
        _event(
            "tool-call-result",
            id="c1",
            name="processDocument",
            input={"id": "d1", "name": "a.pdf"},
            output={"success": False, "error": "unreadable"},
            messageId="m2",
        )
    )

    out = capsys.readouterr().out
    assert "Processing document..." in out
    assert "Processing document: unreadable" in out


def test_interrupted_and_error_endings(capsys):
    renderer = ChatRenderer()
    renderer.render_event(_event("message-end", messageId="m2", finishReason="interrupted"))
    renderer.render_event(_event("message-end", messageId="m3", finishReason="error", error="protocol violation"))
    renderer.render_event({"event": "error", "data": {"code": 404, "message": "Resource not found."}})

    out = capsys.readouterr().out
    assert "Response interrupted" in out
    assert "protocol violation" in out
    assert "Resource not found." in out


def test_render_stored_message(capsys):
    renderer = ChatRenderer()
    renderer.render_message(
        {
            "id": "m2",
            "role": "assistant",
            "finishReason": "interrupted",
            "content": [
                {"type": "tool-call", "id": "c1", "name": "readDocument", "input": None, "output": None},
                {"type": "text", "id": "p1", "text": "partial"},
            ],
        }
    )

    out = capsys.readouterr().out
    assert "Assistant (m2):" in out
    assert "[readDocument] pending" in out
    assert "partial" in out
    assert "[finish: interrupted]" in out
