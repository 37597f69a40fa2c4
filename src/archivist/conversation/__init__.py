"""Multi-turn conversations: entities, persistence, export and the engine."""

from .engine import (
    ConversationEngine,
    ConversationState,
    EngineSnapshot,
    build_citations,
    parse_follow_ups,
)
from .export import ExportFormat, from_json, to_json, to_markdown, to_plain_text
from .models import Citation, Conversation, ConversationMessage, MessageMetadata, MessageRole
from .store import ConversationStore, InMemoryConversationStore, SQLiteConversationStore

__all__ = [
    "Citation",
    "Conversation",
    "ConversationMessage",
    "MessageMetadata",
    "MessageRole",
    "ConversationStore",
    "InMemoryConversationStore",
    "SQLiteConversationStore",
    "ExportFormat",
    "to_markdown",
    "to_json",
    "to_plain_text",
    "from_json",
    "ConversationEngine",
    "ConversationState",
    "EngineSnapshot",
    "parse_follow_ups",
    "build_citations",
]
