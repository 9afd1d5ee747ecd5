"""Local SQLite history of chats and their messages."""

import json
import logging
import os
import sqlite3
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, TypeVar

from elevate.schemas.chat import ChatMessageRecord, ChatRecord

DB_PATH = Path.home() / ".elevate" / "chat.db"
logger = logging.getLogger("elevate.chat_store")
_active_db_path: Path | None = None

T = TypeVar("T")


def _default_db_path() -> Path:
    custom_path = os.getenv("ELEVATE_CHAT_DB_PATH", "").strip()
    if custom_path:
        return Path(custom_path)
    return DB_PATH


def _fallback_db_path() -> Path:
    return Path(tempfile.gettempdir()) / "elevate" / "chat.db"


def _get_active_db_path() -> Path:
    global _active_db_path
    if _active_db_path is None:
        _active_db_path = _default_db_path()
    return _active_db_path


def _set_fallback_db_path() -> Path:
    global _active_db_path
    _active_db_path = _fallback_db_path()
    return _active_db_path


def reset_db_path() -> None:
    """Forget the resolved path so the next call re-reads ELEVATE_CHAT_DB_PATH."""
    global _active_db_path
    _active_db_path = None


def _is_disk_io_error(exc: sqlite3.OperationalError) -> bool:
    return "disk i/o error" in str(exc).lower()


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _create_tables(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS chats (
                chat_id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                session_id TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS chat_messages (
                message_id TEXT PRIMARY KEY,
                chat_id TEXT NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                thinking TEXT,
                attachments_json TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY(chat_id) REFERENCES chats(chat_id)
            )
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_chat_messages_chat_created "
            "ON chat_messages(chat_id, created_at)"
        )
        conn.commit()


def init_db() -> None:
    db_path = _get_active_db_path()
    try:
        _create_tables(db_path)
    except sqlite3.OperationalError as exc:
        if not _is_disk_io_error(exc):
            raise
        fallback = _set_fallback_db_path()
        logger.warning("Chat database path is not writable, using temp dir: %s", fallback)
        _create_tables(fallback)


def _with_connection(operation: Callable[[sqlite3.Connection], T]) -> T:
    """Run ``operation`` on the active database, moving to the temp dir on disk I/O errors."""
    init_db()
    db_path = _get_active_db_path()
    try:
        with sqlite3.connect(db_path) as conn:
            conn.row_factory = sqlite3.Row
            return operation(conn)
    except sqlite3.OperationalError as exc:
        if not _is_disk_io_error(exc):
            raise
        fallback = _set_fallback_db_path()
        logger.warning("Chat database access failed, using temp dir: %s", fallback)
        _create_tables(fallback)
        with sqlite3.connect(fallback) as conn:
            conn.row_factory = sqlite3.Row
            return operation(conn)


def _chat_from_row(row: sqlite3.Row) -> ChatRecord:
    return ChatRecord(
        chat_id=row["chat_id"],
        title=row["title"],
        session_id=row["session_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _message_from_row(row: sqlite3.Row) -> ChatMessageRecord:
    return ChatMessageRecord(
        message_id=row["message_id"],
        chat_id=row["chat_id"],
        role=row["role"],
        content=row["content"],
        thinking=row["thinking"],
        attachments=json.loads(row["attachments_json"]) if row["attachments_json"] else [],
        created_at=row["created_at"],
    )


def create_chat(title: str = "New Chat", session_id: str | None = None) -> ChatRecord:
    """Create a chat and return it."""
    chat_id = f"chat_{uuid.uuid4().hex}"
    now = _now()

    def insert(conn: sqlite3.Connection) -> None:
        conn.execute(
            "INSERT INTO chats (chat_id, title, session_id, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (chat_id, title, session_id, now, now),
        )
        conn.commit()

    _with_connection(insert)
    return ChatRecord(
        chat_id=chat_id, title=title, session_id=session_id, created_at=now, updated_at=now
    )


def get_chat(chat_id: str) -> ChatRecord | None:
    def select(conn: sqlite3.Connection) -> sqlite3.Row | None:
        return conn.execute(
            "SELECT chat_id, title, session_id, created_at, updated_at FROM chats WHERE chat_id = ?",
            (chat_id,),
        ).fetchone()

    row = _with_connection(select)
    return _chat_from_row(row) if row else None


def list_chats(limit: int = 20) -> list[ChatRecord]:
    """Most recently updated first."""

    def select(conn: sqlite3.Connection) -> list[sqlite3.Row]:
        return conn.execute(
            "SELECT chat_id, title, session_id, created_at, updated_at FROM chats "
            "ORDER BY updated_at DESC, created_at DESC LIMIT ?",
            (limit,),
        ).fetchall()

    return [_chat_from_row(row) for row in _with_connection(select)]


def update_chat(
    chat_id: str, title: str | None = None, session_id: str | None = None
) -> ChatRecord | None:
    """Rename a chat and/or bind it to an upstream session; bumps updated_at."""
    assignments = ["updated_at = ?"]
    params: list[Any] = [_now()]
    if title is not None:
        assignments.append("title = ?")
        params.append(title)
    if session_id is not None:
        assignments.append("session_id = ?")
        params.append(session_id)
    params.append(chat_id)

    def update(conn: sqlite3.Connection) -> int:
        cursor = conn.execute(
            f"UPDATE chats SET {', '.join(assignments)} WHERE chat_id = ?", params
        )
        conn.commit()
        return cursor.rowcount

    if not _with_connection(update):
        return None
    return get_chat(chat_id)


def append_message(
    chat_id: str,
    role: str,
    content: str,
    thinking: str | None = None,
    attachments: list[dict[str, Any]] | None = None,
) -> ChatMessageRecord:
    """Store a message and bump the chat's updated_at."""
    record = ChatMessageRecord(
        message_id=f"msg_{uuid.uuid4().hex}",
        chat_id=chat_id,
        role=role,  # type: ignore[arg-type]
        content=content,
        thinking=thinking or None,
        attachments=attachments or [],
        created_at=_now(),
    )

    def insert(conn: sqlite3.Connection) -> None:
        conn.execute(
            "INSERT INTO chat_messages "
            "(message_id, chat_id, role, content, thinking, attachments_json, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                record.message_id,
                record.chat_id,
                record.role,
                record.content,
                record.thinking,
                json.dumps(record.attachments, ensure_ascii=False) if record.attachments else None,
                record.created_at,
            ),
        )
        conn.execute(
            "UPDATE chats SET updated_at = ? WHERE chat_id = ?", (record.created_at, chat_id)
        )
        conn.commit()

    _with_connection(insert)
    return record


def list_messages(chat_id: str) -> list[ChatMessageRecord]:
    def select(conn: sqlite3.Connection) -> list[sqlite3.Row]:
        return conn.execute(
            "SELECT message_id, chat_id, role, content, thinking, attachments_json, created_at "
            "FROM chat_messages WHERE chat_id = ? ORDER BY created_at ASC, rowid ASC",
            (chat_id,),
        ).fetchall()

    return [_message_from_row(row) for row in _with_connection(select)]


def delete_chat(chat_id: str) -> bool:
    def delete(conn: sqlite3.Connection) -> int:
        conn.execute("DELETE FROM chat_messages WHERE chat_id = ?", (chat_id,))
        cursor = conn.execute("DELETE FROM chats WHERE chat_id = ?", (chat_id,))
        conn.commit()
        return cursor.rowcount

    return bool(_with_connection(delete))


def clear_chats() -> int:
    """Delete every chat; returns how many were removed."""

    def delete_all(conn: sqlite3.Connection) -> int:
        conn.execute("DELETE FROM chat_messages")
        cursor = conn.execute("DELETE FROM chats")
        conn.commit()
        return cursor.rowcount

    return _with_connection(delete_all)
