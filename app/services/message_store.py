"""SQLite-backed mirror of inbound messages, deduplicated per account."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional
from uuid import uuid4

from app.models.message import InboundMessage, MessageType


def _to_db_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


class MessageStore:
    """Insert-once storage keyed by ``(account_id, platform_message_id)``."""

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_tables()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_tables(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id TEXT PRIMARY KEY,
                    account_id TEXT NOT NULL,
                    platform_message_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    content TEXT NOT NULL,
                    sender_id TEXT NOT NULL,
                    sender_username TEXT NOT NULL,
                    sender_display_name TEXT,
                    received_at TEXT NOT NULL,
                    thread_id TEXT,
                    parent_message_id TEXT,
                    post_url TEXT,
                    created_at TEXT NOT NULL,
                    UNIQUE (account_id, platform_message_id)
                )
                """
            )

    def upsert(self, account_id: str, message: InboundMessage) -> bool:
        """Store ``message`` unless already present. Returns True for a new row."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO messages (
                    id,
                    account_id,
                    platform_message_id,
                    type,
                    content,
                    sender_id,
                    sender_username,
                    sender_display_name,
                    received_at,
                    thread_id,
                    parent_message_id,
                    post_url,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(account_id, platform_message_id) DO NOTHING
                """,
                (
                    uuid4().hex,
                    account_id,
                    message.platform_message_id,
                    message.type.value,
                    message.content,
                    message.sender_id,
                    message.sender_username,
                    message.sender_display_name,
                    _to_db_time(message.received_at),
                    message.thread_id,
                    message.parent_message_id,
                    message.post_url,
                    _to_db_time(datetime.now(timezone.utc)),
                ),
            )
        return cursor.rowcount == 1

    def count(self, account_id: Optional[str] = None) -> int:
        with self._connect() as conn:
            if account_id is None:
                row = conn.execute("SELECT COUNT(*) AS total FROM messages").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) AS total FROM messages WHERE account_id = ?",
                    (account_id,),
                ).fetchone()
        return int(row["total"])

    def list_for_account(self, account_id: str, limit: int = 100) -> List[InboundMessage]:
        """Most recent messages first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM messages WHERE account_id = ? "
                "ORDER BY received_at DESC LIMIT ?",
                (account_id, limit),
            ).fetchall()
        return [
            InboundMessage(
                platform_message_id=row["platform_message_id"],
                type=MessageType(row["type"]),
                content=row["content"],
                sender_id=row["sender_id"],
                sender_username=row["sender_username"],
                sender_display_name=row["sender_display_name"],
                received_at=datetime.fromisoformat(row["received_at"]),
                thread_id=row["thread_id"],
                parent_message_id=row["parent_message_id"],
                post_url=row["post_url"],
            )
            for row in rows
        ]

    def delete_for_account(self, account_id: str) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM messages WHERE account_id = ?", (account_id,)
            )
        return cursor.rowcount


__all__ = ["MessageStore"]
