"""
Conversation entities.

A ``Conversation`` owns its messages outright: copies are deep, so a branch
can never alias turns of its parent. Timestamps are seconds since the epoch.
"""

import time
import uuid
from enum import Enum
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field


def _new_id() -> str:
    return str(uuid.uuid4())


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class CitationConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Citation(BaseModel):
    """Provenance link from an answer back to one archive message."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    index: int = Field(..., ge=1, description="1-based display index within the answer")
    sender: str = ""
    subject: str = ""
    date: str = ""
    snippet: str = ""
    relevance_score: float = Field(0.0, ge=0.0, le=1.0)

    @property
    def marker(self) -> str:
        return f"[{self.index}]"

    @property
    def confidence(self) -> CitationConfidence:
        if self.relevance_score >= 0.8:
            return CitationConfidence.HIGH
        if self.relevance_score >= 0.5:
            return CitationConfidence.MEDIUM
        return CitationConfidence.LOW


class MessageMetadata(BaseModel):
    """How an assistant turn was produced."""

    query_type: str | None = None
    search_mode: str | None = None
    processing_time: float | None = None
    model_used: str | None = None
    search_results: int = 0
    suggested_follow_ups: list[str] = Field(default_factory=list)
    error: str | None = None


class ConversationMessage(BaseModel):
    """One turn."""

    id: str = Field(default_factory=_new_id)
    role: MessageRole
    content: str
    timestamp: float = Field(default_factory=time.time)
    citations: list[Citation] = Field(default_factory=list)
    metadata: MessageMetadata | None = None
    is_streaming: bool = False
    token_count: int | None = None

    @property
    def is_user(self) -> bool:
        return self.role is MessageRole.USER

    @property
    def is_assistant(self) -> bool:
        return self.role is MessageRole.ASSISTANT


class Conversation(BaseModel):
    """A multi-turn dialogue thread."""

    DEFAULT_TITLE: ClassVar[str] = "New Conversation"

    id: str = Field(default_factory=_new_id)
    title: str = DEFAULT_TITLE
    messages: list[ConversationMessage] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)
    is_favorite: bool = False
    tags: list[str] = Field(default_factory=list)
    referenced_source_ids: list[str] = Field(default_factory=list)
    branch_parent_id: str | None = None
    branch_point_message_id: str | None = None

    @property
    def display_title(self) -> str:
        if self.title and self.title != self.DEFAULT_TITLE:
            return self.title
        first_user = next((m for m in self.messages if m.is_user), None)
        if first_user is not None:
            text = " ".join(first_user.content.split())
            return text[:50] + ("..." if len(text) > 50 else "")
        return self.DEFAULT_TITLE

    @property
    def is_branch(self) -> bool:
        return self.branch_parent_id is not None

    @property
    def last_message(self) -> ConversationMessage | None:
        return self.messages[-1] if self.messages else None

    def touch(self) -> None:
        """Advance ``updated_at``; strictly monotonic even within one clock tick."""
        self.updated_at = max(time.time(), self.updated_at + 1e-6)

    def add_message(self, message: ConversationMessage) -> None:
        self.messages.append(message)
        self.touch()

    def remove_message(self, message_id: str) -> ConversationMessage:
        index = self.message_index(message_id)
        removed = self.messages.pop(index)
        self.touch()
        return removed

    def message_index(self, message_id: str) -> int:
        for i, message in enumerate(self.messages):
            if message.id == message_id:
                return i
        raise KeyError(f"Message {message_id} not in conversation {self.id}")

    def context_messages(self, limit: int) -> list[ConversationMessage]:
        """The most recent ``limit`` messages, oldest first."""
        return self.messages[-limit:] if limit > 0 else []

    def reference_sources(self, source_ids: list[str]) -> list[str]:
        """Record source ids not referenced before; returns the new ones."""
        known = set(self.referenced_source_ids)
        added = [s for s in dict.fromkeys(source_ids) if s not in known]
        if added:
            self.referenced_source_ids.extend(added)
            self.touch()
        return added

    def add_tag(self, tag: str) -> bool:
        tag = tag.strip()
        if not tag or tag in self.tags:
            return False
        self.tags.append(tag)
        self.touch()
        return True
