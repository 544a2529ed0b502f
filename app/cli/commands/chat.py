"""Chat commands: start, reply on a branch, show, list, rename and delete chats."""

import json
import uuid
from typing import Any, Dict, Optional

import typer

from app.cli.client import APIClient, APIError
from app.cli.config import CLIConfig, get_global_config
from app.cli.lib.chat_renderer import ChatRenderer
from app.cli.lib.safe_output import safe_print, safe_print_err


def parse_sse_line(line: str) -> Optional[Dict[str, Any]]:
    """
    Parse a single SSE line.

    Args:
        line: Raw SSE line (e.g., "data: {...}")

    Returns:
        Parsed event dict or None if not a data line
    """
    if not line.strip():
        return None

    if not line.startswith("data:"):
        return None

    json_str = line[5:].strip()
    # Normalize potential surrogate chars from terminal/stream decoding.
    json_str = json_str.encode("utf-8", errors="replace").decode("utf-8", errors="replace")

    try:
        return json.loads(json_str)
    except (json.JSONDecodeError, UnicodeEncodeError, ValueError):
        return None


def _client(config: CLIConfig) -> APIClient:
    return APIClient(
        base_url=config.api_base,
        timeout=float(config.timeout),
        retry_times=1,
        token=config.token,
    )


def _fail(error: APIError) -> None:
    safe_print_err(error.user_friendly_message())
    raise typer.Exit(code=1)


def stream_turn(
    client: APIClient,
    path: str,
    payload: Dict[str, Any],
    renderer: ChatRenderer,
    json_output: bool = False,
) -> Optional[Dict[str, Any]]:
    """
    POST a turn and render its events as they arrive.

    Returns the ``message-end`` payload, or None if the turn failed before
    the assistant started.
    """
    message_end: Optional[Dict[str, Any]] = None
    failed = False
    with client.stream("POST", path, json=payload) as response:
        for line in response.iter_lines():
            event = parse_sse_line(line)
            if event is None:
                continue
            if json_output:
                safe_print(json.dumps(event, ensure_ascii=False))
            else:
                renderer.render_event(event)
            if event.get("event") == "message-end":
                message_end = event.get("data")
            elif event.get("event") == "error":
                failed = True
    if failed and message_end is None:
        raise typer.Exit(code=1)
    return message_end


def new(
    text: str = typer.Argument(..., help="First message of the chat."),
    project: Optional[str] = typer.Option(None, "--project", help="Project id to attach the chat to."),
) -> None:
    """Start a new chat and stream the assistant's reply."""
    config = get_global_config()
    chat_id = str(uuid.uuid4())
    payload: Dict[str, Any] = {
        "id": str(uuid.uuid4()),
        "chatId": chat_id,
        "content": [{"type": "text", "text": text}],
    }
    if project:
        payload["projectId"] = project

    with _client(config) as client:
        try:
            message_end = stream_turn(
                client, "/chats", payload, ChatRenderer(), json_output=config.output_format == "json"
            )
        except APIError as e:
            _fail(e)
            return

    if config.output_format != "json" and message_end is not None:
        safe_print(f"\nchat: {chat_id}  message: {message_end.get('messageId')}")


def send(
    chat_id: str = typer.Argument(..., help="Chat to reply in."),
    text: str = typer.Argument(..., help="Message text."),
    parent: Optional[str] = typer.Option(
        None,
        "--parent",
        help="Message to branch from; defaults to the end of the latest path.",
    ),
) -> None:
    """Send a message to an existing chat."""
    config = get_global_config()
    with _client(config) as client:
        try:
            parent_id = parent
            if parent_id is None:
                view = client.get(f"/chats/{chat_id}/messages")
                latest_path = view.get("latestPath") or []
                parent_id = latest_path[-1] if latest_path else None

            payload = {
                "id": str(uuid.uuid4()),
                "content": [{"type": "text", "text": text}],
                "parentMessageId": parent_id,
            }
            message_end = stream_turn(
                client,
                f"/chats/{chat_id}/messages",
                payload,
                ChatRenderer(),
                json_output=config.output_format == "json",
            )
        except APIError as e:
            _fail(e)
            return

    if config.output_format != "json" and message_end is not None:
        safe_print(f"\nmessage: {message_end.get('messageId')}")


def show(chat_id: str = typer.Argument(..., help="Chat to display.")) -> None:
    """Print the latest path of a chat."""
    config = get_global_config()
    with _client(config) as client:
        try:
            chat = client.get(f"/chats/{chat_id}")
            view = client.get(f"/chats/{chat_id}/messages")
        except APIError as e:
            _fail(e)
            return

    if config.output_format == "json":
        safe_print(json.dumps({"chat": chat, **view}, ensure_ascii=False, indent=2))
        return

    safe_print(f"# {chat.get('title') or '(untitled)'}")
    messages = view.get("messages", {})
    renderer = ChatRenderer()
    for message_id in view.get("latestPath", []):
        message = messages.get(message_id)
        if message is None:
            continue
        renderer.render_message(message)
        siblings = len(message.get("childrenMessageIds", []))
        if siblings > 1:
            safe_print(f"  ({siblings} replies branch from here)")


def chats(
    search: Optional[str] = typer.Option(None, "--search", help="Filter by title."),
    limit: int = typer.Option(20, "--limit", help="Page size."),
    cursor: Optional[str] = typer.Option(None, "--cursor", help="nextCursor of the previous page."),
) -> None:
    """List your chats, newest first."""
    config = get_global_config()
    params: Dict[str, Any] = {"limit": limit}
    if search:
        params["search"] = search
    if cursor:
        params["cursor"] = cursor

    with _client(config) as client:
        try:
            page = client.get("/chats", params=params)
        except APIError as e:
            _fail(e)
            return

    if config.output_format == "json":
        safe_print(json.dumps(page, ensure_ascii=False, indent=2))
        return

    items = page.get("items", [])
    if not items:
        safe_print("No chats.")
        return
    for item in items:
        safe_print(f"{item.get('id')}  {item.get('createdAt', '')}  {item.get('title') or '(untitled)'}")
    if page.get("nextCursor"):
        safe_print(f"\nmore: --cursor {page['nextCursor']}")


def rename(
    chat_id: str = typer.Argument(..., help="Chat to rename."),
    title: str = typer.Argument(..., help="New title."),
) -> None:
    """Rename a chat."""
    config = get_global_config()
    with _client(config) as client:
        try:
            result = client.patch(f"/chats/{chat_id}", json={"title": title})
        except APIError as e:
            _fail(e)
            return

    if config.output_format == "json":
        safe_print(json.dumps(result, ensure_ascii=False))
    else:
        safe_print(f"Renamed {result.get('id', chat_id)}")


def delete(
    chat_id: str = typer.Argument(..., help="Chat to delete."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Delete a chat and all of its messages; a running reply is stopped first."""
    config = get_global_config()
    if not yes and not typer.confirm(f"Delete chat {chat_id}?"):
        raise typer.Exit(code=0)

    with _client(config) as client:
        try:
            result = client.delete(f"/chats/{chat_id}")
        except APIError as e:
            _fail(e)
            return

    if config.output_format == "json":
        safe_print(json.dumps(result, ensure_ascii=False))
    else:
        safe_print(f"Deleted {result.get('id', chat_id)}")
