import json
import logging
import sqlite3
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, TypeVar

from fastapi.encoders import jsonable_encoder

from app.core.config import build_settings
from app.schemas.message import Chat, Message, parse_content_blocks


logger = logging.getLogger("chatstream.chat_store")
_active_db_path: Path | None = None
_initialized_paths: set[Path] = set()

T = TypeVar("T")


class ChatStoreError(Exception):
    pass


class InvalidParentError(ChatStoreError):
    """parentMessageId does not name a message of the same chat."""


class DuplicateIdError(ChatStoreError):
    pass


def _now_utc() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _default_db_path() -> Path:
    return build_settings().db_path


def _fallback_db_path() -> Path:
    return Path(tempfile.gettempdir()) / "chatstream" / "chat.db"


def _get_active_db_path() -> Path:
    global _active_db_path
    if _active_db_path is not None:
        return _active_db_path
    _active_db_path = _default_db_path()
    return _active_db_path


def _set_fallback_db_path() -> Path:
    global _active_db_path
    _active_db_path = _fallback_db_path()
    return _active_db_path


def set_db_path(db_path: Path | None) -> None:
    """Point the store at ``db_path``; ``None`` re-reads the configured path."""

    global _active_db_path
    _active_db_path = Path(db_path) if db_path is not None else None


def _is_disk_io_error(exc: sqlite3.OperationalError) -> bool:
    return "disk i/o error" in str(exc).lower()


def _connect(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def _create_tables(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = _connect(db_path)
    try:
        with conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chats (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL DEFAULT '',
                    user_id TEXT NOT NULL,
                    project_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id TEXT PRIMARY KEY,
                    chat_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    content_json TEXT NOT NULL,
                    parent_message_id TEXT,
                    finish_reason TEXT,
                    feedback TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY(chat_id) REFERENCES chats(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_chat_created ON messages(chat_id, created_at)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_chats_user_created ON chats(user_id, created_at)")
    finally:
        conn.close()
    _initialized_paths.add(db_path)


def init_db() -> None:
    db_path = _get_active_db_path()
    if db_path in _initialized_paths and db_path.exists():
        return
    try:
        _create_tables(db_path)
    except sqlite3.OperationalError as exc:
        if not _is_disk_io_error(exc):
            raise
        fallback = _set_fallback_db_path()
        logger.warning("Chat db path not writable, falling back to temp dir: %s", fallback)
        _create_tables(fallback)


def _execute(db_path: Path, operation: Callable[[sqlite3.Connection], T]) -> T:
    conn = _connect(db_path)
    try:
        # one transaction: commit on success, roll back on any error
        with conn:
            return operation(conn)
    finally:
        conn.close()


def _run(operation: Callable[[sqlite3.Connection], T]) -> T:
    init_db()
    db_path = _get_active_db_path()
    try:
        return _execute(db_path, operation)
    except sqlite3.OperationalError as exc:
        if not _is_disk_io_error(exc):
            raise
        fallback = _set_fallback_db_path()
        logger.warning("Chat db write failed, falling back to temp dir: %s", fallback)
        _create_tables(fallback)
        return _execute(fallback, operation)


def _row_to_chat(row: sqlite3.Row) -> Chat:
    return Chat(
        id=row["id"],
        title=row["title"] or "",
        userId=row["user_id"],
        projectId=row["project_id"],
        createdAt=row["created_at"],
        updatedAt=row["updated_at"],
    )


def _row_to_message(row: sqlite3.Row) -> Message:
    content: list[Any] = json.loads(row["content_json"]) if row["content_json"] else []
    return Message(
        id=row["id"],
        role=row["role"],
        content=parse_content_blocks(content),
        parentMessageId=row["parent_message_id"],
        chatId=row["chat_id"],
        finishReason=row["finish_reason"],
        feedback=row["feedback"],
        createdAt=row["created_at"],
        updatedAt=row["updated_at"],
    )


def _insert_chat(conn: sqlite3.Connection, chat: Chat) -> Chat:
    now = chat.createdAt or _now_utc()
    try:
        conn.execute(
            """
            INSERT INTO chats (id, title, user_id, project_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (chat.id, chat.title, chat.userId, chat.projectId, now, now),
        )
    except sqlite3.IntegrityError as exc:
        raise DuplicateIdError(f"chat '{chat.id}' already exists") from exc
    return chat.model_copy(update={"createdAt": now, "updatedAt": now})


def _insert_message(conn: sqlite3.Connection, message: Message) -> Message:
    if message.parentMessageId is not None:
        parent = conn.execute(
            "SELECT 1 FROM messages WHERE id = ? AND chat_id = ?",
            (message.parentMessageId, message.chatId),
        ).fetchone()
        if parent is None:
            raise InvalidParentError(
                f"parent '{message.parentMessageId}' is not a message of chat '{message.chatId}'"
            )

    now = message.createdAt or _now_utc()
    content_json = json.dumps(jsonable_encoder(message.content), ensure_ascii=False)
    try:
        conn.execute(
            """
            INSERT INTO messages (
                id, chat_id, role, content_json, parent_message_id, finish_reason, feedback, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                message.id,
                message.chatId,
                message.role,
                content_json,
                message.parentMessageId,
                message.finishReason,
                message.feedback,
                now,
                now,
            ),
        )
    except sqlite3.IntegrityError as exc:
        raise DuplicateIdError(f"message '{message.id}' cannot be inserted: {exc}") from exc
    return message.model_copy(update={"createdAt": now, "updatedAt": now})


def create_chat_with_message(chat: Chat, message: Message) -> tuple[Chat, Message]:
    """Insert a chat and its first message atomically."""

    def _op(conn: sqlite3.Connection) -> tuple[Chat, Message]:
        stored_chat = _insert_chat(conn, chat)
        stored_message = _insert_message(conn, message)
        return stored_chat, stored_message

    return _run(_op)


def insert_message(message: Message) -> Message:
    return _run(lambda conn: _insert_message(conn, message))


def list_messages(chat_id: str) -> list[Message]:
    def _op(conn: sqlite3.Connection) -> list[Message]:
        rows = conn.execute(
            """
            SELECT id, chat_id, role, content_json, parent_message_id, finish_reason, feedback, created_at, updated_at
            FROM messages
            WHERE chat_id = ?
            ORDER BY created_at ASC, id ASC
            """,
            (chat_id,),
        ).fetchall()
        return [_row_to_message(row) for row in rows]

    return _run(_op)


def get_message(message_id: str, chat_id: str) -> Message | None:
    def _op(conn: sqlite3.Connection) -> Message | None:
        row = conn.execute(
            """
            SELECT id, chat_id, role, content_json, parent_message_id, finish_reason, feedback, created_at, updated_at
            FROM messages
            WHERE id = ? AND chat_id = ?
            """,
            (message_id, chat_id),
        ).fetchone()
        return _row_to_message(row) if row is not None else None

    return _run(_op)


def get_chat(chat_id: str, user_id: str | None = None) -> Chat | None:
    sql = "SELECT id, title, user_id, project_id, created_at, updated_at FROM chats WHERE id = ?"
    params: list[Any] = [chat_id]
    if user_id is not None:
        sql += " AND user_id = ?"
        params.append(user_id)

    def _op(conn: sqlite3.Connection) -> Chat | None:
        row = conn.execute(sql, params).fetchone()
        return _row_to_chat(row) if row is not None else None

    return _run(_op)


CURSOR_SEPARATOR = "|"


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def list_chats(
    user_id: str,
    *,
    search: str | None = None,
    cursor: str | None = None,
    limit: int = 20,
) -> tuple[list[Chat], int, str | None]:
    """Newest-first page of a user's chats.

    ``cursor`` is ``"<createdAt>|<id>"`` of the last chat already seen, so chats
    sharing a timestamp are neither skipped nor repeated. A bare createdAt is
    accepted as well.
    """

    where = ["user_id = ?"]
    params: list[Any] = [user_id]
    if search:
        where.append("title LIKE ? ESCAPE '\\'")
        params.append(f"%{_escape_like(search)}%")

    def _op(conn: sqlite3.Connection) -> tuple[list[Chat], int, str | None]:
        total = conn.execute(f"SELECT COUNT(*) FROM chats WHERE {' AND '.join(where)}", params).fetchone()[0]

        page_where = list(where)
        page_params = list(params)
        if cursor:
            created_at, _, last_id = cursor.partition(CURSOR_SEPARATOR)
            if last_id:
                page_where.append("(created_at < ? OR (created_at = ? AND id < ?))")
                page_params.extend([created_at, created_at, last_id])
            else:
                page_where.append("created_at < ?")
                page_params.append(created_at)
        rows = conn.execute(
            f"""
            SELECT id, title, user_id, project_id, created_at, updated_at
            FROM chats
            WHERE {' AND '.join(page_where)}
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (*page_params, limit + 1),
        ).fetchall()

        items = [_row_to_chat(row) for row in rows[:limit]]
        next_cursor = None
        if len(rows) > limit and items:
            next_cursor = f"{items[-1].createdAt}{CURSOR_SEPARATOR}{items[-1].id}"
        return items, int(total), next_cursor

    return _run(_op)


def update_chat_title(chat_id: str, title: str) -> bool:
    def _op(conn: sqlite3.Connection) -> bool:
        cur = conn.execute(
            "UPDATE chats SET title = ?, updated_at = ? WHERE id = ?",
            (title, _now_utc(), chat_id),
        )
        return cur.rowcount > 0

    return _run(_op)


def update_message_feedback(message_id: str, feedback: str | None) -> bool:
    def _op(conn: sqlite3.Connection) -> bool:
        cur = conn.execute(
            "UPDATE messages SET feedback = ?, updated_at = ? WHERE id = ?",
            (feedback, _now_utc(), message_id),
        )
        return cur.rowcount > 0

    return _run(_op)


def delete_chat(chat_id: str) -> bool:
    def _op(conn: sqlite3.Connection) -> bool:
        cur = conn.execute("DELETE FROM chats WHERE id = ?", (chat_id,))
        return cur.rowcount > 0

    return _run(_op)
