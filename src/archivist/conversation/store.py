"""
Conversation persistence with pluggable backends.

Each conversation is one flat record: scalar columns plus JSON-encoded
sub-fields for messages, tags and referenced sources. Timestamps are stored
as epoch-second floats. Storage errors propagate to the caller.
"""

import copy
import json
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..observability.logging import get_logger
from .models import Conversation, ConversationMessage

log = get_logger(__name__)


def conversation_to_row(conversation: Conversation) -> dict[str, Any]:
    """Flatten a conversation into storable scalars."""
    return {
        "id": conversation.id,
        "title": conversation.title,
        "messages_json": json.dumps(
            [m.model_dump(mode="json") for m in conversation.messages], ensure_ascii=False
        ),
        "created_at": float(conversation.created_at),
        "updated_at": float(conversation.updated_at),
        "is_favorite": int(conversation.is_favorite),
        "tags_json": json.dumps(conversation.tags, ensure_ascii=False),
        "referenced_source_ids_json": json.dumps(conversation.referenced_source_ids),
        "branch_parent_id": conversation.branch_parent_id,
        "branch_point_message_id": conversation.branch_point_message_id,
    }


def conversation_from_row(row: dict[str, Any]) -> Conversation:
    return Conversation(
        id=row["id"],
        title=row["title"],
        messages=[
            ConversationMessage.model_validate(m) for m in json.loads(row["messages_json"] or "[]")
        ],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        is_favorite=bool(row["is_favorite"]),
        tags=json.loads(row["tags_json"] or "[]"),
        referenced_source_ids=json.loads(row["referenced_source_ids_json"] or "[]"),
        branch_parent_id=row["branch_parent_id"],
        branch_point_message_id=row["branch_point_message_id"],
    )


def _matches(conversation: Conversation, needle: str) -> bool:
    needle = needle.lower()
    return (
        needle in conversation.title.lower()
        or any(needle in m.content.lower() for m in conversation.messages)
        or any(needle in t.lower() for t in conversation.tags)
    )


class ConversationStore(ABC):
    """Record store for conversations keyed by id."""

    @abstractmethod
    def save(self, conversation: Conversation) -> None:
        """Insert or replace a conversation."""
        pass

    @abstractmethod
    def get(self, conversation_id: str) -> Conversation | None:
        """Load one conversation."""
        pass

    @abstractmethod
    def list_conversations(self) -> list[Conversation]:
        """All conversations, most recently updated first."""
        pass

    @abstractmethod
    def delete(self, conversation_id: str) -> bool:
        """Remove a conversation; False when it did not exist."""
        pass

    def search(self, query: str) -> list[Conversation]:
        """Conversations whose title, messages or tags contain ``query``."""
        return [c for c in self.list_conversations() if _matches(c, query)]

    def favorites(self) -> list[Conversation]:
        return [c for c in self.list_conversations() if c.is_favorite]


class InMemoryConversationStore(ConversationStore):
    """Process-local store, mostly for tests and one-shot CLI runs."""

    def __init__(self):
        self._rows: dict[str, dict[str, Any]] = {}

    def save(self, conversation: Conversation) -> None:
        self._rows[conversation.id] = conversation_to_row(conversation)

    def get(self, conversation_id: str) -> Conversation | None:
        row = self._rows.get(conversation_id)
        return conversation_from_row(copy.deepcopy(row)) if row else None

    def list_conversations(self) -> list[Conversation]:
        rows = sorted(self._rows.values(), key=lambda r: r["updated_at"], reverse=True)
        return [conversation_from_row(r) for r in rows]

    def delete(self, conversation_id: str) -> bool:
        return self._rows.pop(conversation_id, None) is not None


class SQLiteConversationStore(ConversationStore):
    """SQLite-backed store, one row per conversation."""

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS conversations (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            messages_json TEXT NOT NULL,
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL,
            is_favorite INTEGER NOT NULL DEFAULT 0,
            tags_json TEXT NOT NULL DEFAULT '[]',
            referenced_source_ids_json TEXT NOT NULL DEFAULT '[]',
            branch_parent_id TEXT,
            branch_point_message_id TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_conversations_updated ON conversations(updated_at DESC);
    """

    COLUMNS = (
        "id",
        "title",
        "messages_json",
        "created_at",
        "updated_at",
        "is_favorite",
        "tags_json",
        "referenced_source_ids_json",
        "branch_parent_id",
        "branch_point_message_id",
    )

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self.get_connection() as conn:
            conn.executescript(self.SCHEMA)
        log.info("Conversation store ready", path=str(self.db_path))

    @contextmanager
    def get_connection(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def save(self, conversation: Conversation) -> None:
        row = conversation_to_row(conversation)
        placeholders = ", ".join("?" for _ in self.COLUMNS)
        with self.get_connection() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO conversations ({', '.join(self.COLUMNS)}) "
                f"VALUES ({placeholders})",
                tuple(row[c] for c in self.COLUMNS),
            )

    def get(self, conversation_id: str) -> Conversation | None:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
        return conversation_from_row(dict(row)) if row else None

    def list_conversations(self) -> list[Conversation]:
        with self.get_connection() as conn:
            rows = conn.execute("SELECT * FROM conversations ORDER BY updated_at DESC").fetchall()
        return [conversation_from_row(dict(r)) for r in rows]

    def delete(self, conversation_id: str) -> bool:
        with self.get_connection() as conn:
            cursor = conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
            return cursor.rowcount > 0
