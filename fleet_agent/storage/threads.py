"""
Conversation thread persistence.

Threads group conversation memory under a resource (an end user or channel).
Threads are never deleted here; retention is handled outside the process.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from .db import get_connection
from .models import Thread, ThreadMessage


class ThreadRepository:
    """SQLite-backed store for threads and their message history."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def create_thread(self, resource_id: str, title: Optional[str] = None) -> Thread:
        """Create a new thread owned by resource_id.

        Concurrent creations for the same resource each get their own row;
        the resolver simply reuses the newest one afterwards.
        """
        thread = Thread(
            id=uuid.uuid4().hex,
            resource_id=resource_id,
            created_at=datetime.now(timezone.utc),
            title=title
        )
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "INSERT INTO thread (id, resource_id, title, created_at) VALUES (?, ?, ?, ?)",
                (thread.id, thread.resource_id, thread.title, thread.created_at.isoformat())
            )
            conn.commit()
        finally:
            conn.close()
        return thread

    def ensure_thread(self, thread_id: str, resource_id: str) -> None:
        """Persist a caller-supplied thread id if it is not stored yet.

        An existing thread keeps its original resource id.
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "INSERT OR IGNORE INTO thread (id, resource_id, title, created_at) VALUES (?, ?, NULL, ?)",
                (thread_id, resource_id, datetime.now(timezone.utc).isoformat())
            )
            conn.commit()
        finally:
            conn.close()

    def get_thread_by_id(self, thread_id: str) -> Optional[Thread]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT id, resource_id, title, created_at FROM thread WHERE id = ?",
                (thread_id,)
            ).fetchone()
        finally:
            conn.close()
        return _row_to_thread(row) if row else None

    def list_threads(self, resource_id: Optional[str] = None) -> List[Thread]:
        """List threads ordered by creation, oldest first.

        Args:
            resource_id: Optional owner filter

        Returns:
            Threads in creation order; insertion order breaks timestamp ties
        """
        query = "SELECT id, resource_id, title, created_at FROM thread"
        params: List[object] = []
        if resource_id is not None:
            query += " WHERE resource_id = ?"
            params.append(resource_id)
        query += " ORDER BY created_at ASC, seq ASC"

        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [_row_to_thread(row) for row in rows]

    def append_message(self, thread_id: str, role: str, content: str) -> ThreadMessage:
        message = ThreadMessage(
            thread_id=thread_id,
            role=role,
            content=content,
            created_at=datetime.now(timezone.utc)
        )
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "INSERT INTO thread_message (thread_id, role, content, created_at) VALUES (?, ?, ?, ?)",
                (message.thread_id, message.role, message.content, message.created_at.isoformat())
            )
            conn.commit()
        finally:
            conn.close()
        return message

    def recent_messages(self, thread_id: str, limit: int) -> List[ThreadMessage]:
        """Return the last `limit` messages of a thread, oldest first."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute("""
                SELECT thread_id, role, content, created_at FROM thread_message
                WHERE thread_id = ?
                ORDER BY id DESC LIMIT ?
            """, (thread_id, limit)).fetchall()
        finally:
            conn.close()

        messages = [
            ThreadMessage(
                thread_id=row[0],
                role=row[1],
                content=row[2],
                created_at=datetime.fromisoformat(row[3])
            )
            for row in rows
        ]
        messages.reverse()
        return messages


def _row_to_thread(row) -> Thread:
    return Thread(
        id=row[0],
        resource_id=row[1],
        title=row[2],
        created_at=datetime.fromisoformat(row[3])
    )


def initialize_schema(db_path: str) -> None:
    """Create the thread and thread_message tables if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS thread (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                resource_id TEXT NOT NULL,
                title TEXT,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS thread_message (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                thread_id TEXT NOT NULL REFERENCES thread(id),
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_thread_resource ON thread(resource_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_message_thread ON thread_message(thread_id)")
        conn.commit()
    finally:
        conn.close()
