"""
Conversation engine.

Owns multi-turn state on top of the retrieval engine and a generation
backend. Each conversation moves ``EMPTY -> ACTIVE -> IDLE`` and back to
``ACTIVE`` on every new turn. Only one turn per conversation is in flight at
a time; a second ``send`` waits for the first to finish.

A turn is committed in one step once the answer is ready: the assistant
message, its citations, referenced sources and (for the first exchange) a
generated title. Failures become a visible assistant error turn instead of
an exception, so the history stays usable. Cancellation leaves only the
user's turn behind.
"""

import asyncio
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from ..observability.logging import get_logger
from ..observability.probe import probe
from ..providers.generation import GenerationBackend
from ..rag.context import HistoryTurn, PromptBuilder
from ..rag.documents import Document, DocumentMatch
from ..rag.retriever import RetrievalEngine
from ..records import ArchiveRecord
from .export import ExportFormat, export_conversation
from .models import (
    Citation,
    Conversation,
    ConversationMessage,
    MessageMetadata,
    MessageRole,
)
from .store import ConversationStore

logger = get_logger(__name__)

FOLLOW_UP_MARKERS = [
    "You might also ask:",
    "Follow-up questions:",
    "You could also explore:",
    "Related questions:",
]

GENERIC_FOLLOW_UPS = [
    "Tell me more about this topic",
    "What are the key action items?",
    "Show me related conversations",
]

CONTINUE_PROMPT = "Please continue and elaborate on your previous response."

TITLE_SYSTEM_PROMPT = "You generate concise conversation titles. Respond with only the title."

_BULLET_RE = re.compile(r"^(?:[-•*]|\d+[.)])\s*")


class ConversationState(str, Enum):
    EMPTY = "empty"
    ACTIVE = "active"
    IDLE = "idle"


@dataclass
class EngineSnapshot:
    """Observable state of one conversation after a change."""

    conversation_id: str
    state: ConversationState
    title: str
    message_count: int
    citations: list[Citation] = field(default_factory=list)
    suggested_follow_ups: list[str] = field(default_factory=list)
    last_error: str | None = None

    @property
    def is_processing(self) -> bool:
        return self.state is ConversationState.ACTIVE


Listener = Callable[[EngineSnapshot], None]


def parse_follow_ups(text: str, limit: int = 3) -> list[str]:
    """
    Suggested questions listed after a known marker line.

    Bullets and numbering are stripped; candidates must be 11 to 199
    characters. Reading stops at the first blank line after the list starts
    or at a line ending in a colon.
    """
    lower = text.lower()
    for marker in FOLLOW_UP_MARKERS:
        position = lower.find(marker.lower())
        if position < 0:
            continue

        candidates: list[str] = []
        started = False
        for line in text[position + len(marker) :].splitlines():
            stripped = line.strip()
            if not stripped:
                if started:
                    break
                continue
            started = True
            if stripped.endswith(":"):
                break
            cleaned = _BULLET_RE.sub("", stripped).strip()
            if 10 < len(cleaned) < 200:
                candidates.append(cleaned)
            if len(candidates) >= limit:
                break
        if candidates:
            return candidates
    return []


def build_citations(matches: list[DocumentMatch]) -> list[Citation]:
    """One citation per evidence item, numbered by rank from 1."""
    return [
        Citation(
            source_id=match.source_id,
            index=rank,
            sender=match.document.sender,
            subject=match.document.subject,
            date=match.document.date,
            snippet=match.snippet,
            relevance_score=match.score,
        )
        for rank, match in enumerate(matches, start=1)
    ]


class ConversationEngine:
    """Multi-turn, citation-tracking dialogue over the archive."""

    def __init__(
        self,
        retrieval: RetrievalEngine,
        generator: GenerationBackend,
        store: ConversationStore,
        prompt_builder: PromptBuilder | None = None,
        max_context_messages: int = 10,
        default_title: str = Conversation.DEFAULT_TITLE,
        temperature: float = 0.7,
        title_temperature: float = 0.3,
    ):
        self.retrieval = retrieval
        self.generator = generator
        self.store = store
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.max_context_messages = max_context_messages
        self.default_title = default_title
        self.temperature = temperature
        self.title_temperature = title_temperature

        self.records: list[ArchiveRecord] | None = None
        self.current_id: str | None = None

        self._conversations: dict[str, Conversation] = {}
        self._states: dict[str, ConversationState] = {}
        self._errors: dict[str, str | None] = {}
        self._suggestions: dict[str, list[str]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._listeners: list[Listener] = []

    # Observation

    @property
    def current(self) -> Conversation | None:
        return self._conversations.get(self.current_id) if self.current_id else None

    @property
    def last_error(self) -> str | None:
        return self._errors.get(self.current_id) if self.current_id else None

    @property
    def citations(self) -> list[Citation]:
        return self.snapshot().citations if self.current_id else []

    @property
    def suggested_follow_ups(self) -> list[str]:
        return self._suggestions.get(self.current_id, []) if self.current_id else []

    def state(self, conversation_id: str | None = None) -> ConversationState:
        conversation_id = conversation_id or self.current_id
        return self._states.get(conversation_id, ConversationState.EMPTY)

    def is_processing(self, conversation_id: str | None = None) -> bool:
        return self.state(conversation_id) is ConversationState.ACTIVE

    def snapshot(self, conversation_id: str | None = None) -> EngineSnapshot:
        conversation = self._require(conversation_id)
        last_assistant = next(
            (m for m in reversed(conversation.messages) if m.is_assistant), None
        )
        return EngineSnapshot(
            conversation_id=conversation.id,
            state=self.state(conversation.id),
            title=conversation.display_title,
            message_count=len(conversation.messages),
            citations=list(last_assistant.citations) if last_assistant else [],
            suggested_follow_ups=list(self._suggestions.get(conversation.id, [])),
            last_error=self._errors.get(conversation.id),
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with a snapshot after every change; returns an unsubscribe hook."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_records(self, records: list[ArchiveRecord] | None) -> None:
        """Records to scan directly when nothing has been indexed."""
        self.records = records

    # Lifecycle

    def start_new(self, title: str | None = None) -> Conversation:
        conversation = Conversation(title=title or self.default_title)
        self.store.save(conversation)
        self._conversations[conversation.id] = conversation
        self._states[conversation.id] = ConversationState.EMPTY
        self._errors[conversation.id] = None
        self._suggestions[conversation.id] = []
        self.current_id = conversation.id
        logger.info("Started conversation", conversation_id=conversation.id)
        self._notify(conversation.id)
        return conversation

    def load(self, conversation_id: str) -> Conversation:
        conversation = self.store.get(conversation_id)
        if conversation is None:
            raise KeyError(f"Conversation not found: {conversation_id}")
        self._conversations[conversation.id] = conversation
        self._states[conversation.id] = (
            ConversationState.IDLE if conversation.messages else ConversationState.EMPTY
        )
        last_assistant = next(
            (m for m in reversed(conversation.messages) if m.is_assistant), None
        )
        self._suggestions[conversation.id] = (
            list(last_assistant.metadata.suggested_follow_ups)
            if last_assistant and last_assistant.metadata
            else []
        )
        self._errors.setdefault(conversation.id, None)
        self.current_id = conversation.id
        self._notify(conversation.id)
        return conversation

    def save(self, conversation_id: str | None = None) -> None:
        self.store.save(self._require(conversation_id))

    def delete(self, conversation_id: str) -> bool:
        deleted = self.store.delete(conversation_id)
        self._conversations.pop(conversation_id, None)
        self._states.pop(conversation_id, None)
        self._errors.pop(conversation_id, None)
        self._suggestions.pop(conversation_id, None)
        lock = self._locks.get(conversation_id)
        if lock is not None and not lock.locked():
            del self._locks[conversation_id]
        if self.current_id == conversation_id:
            self.current_id = None
        return deleted

    def list_conversations(self) -> list[Conversation]:
        return self.store.list_conversations()

    def search_conversations(self, query: str) -> list[Conversation]:
        return self.store.search(query)

    def favorites(self) -> list[Conversation]:
        return self.store.favorites()

    # Mutations outside the turn cycle

    def toggle_favorite(self, conversation_id: str | None = None) -> bool:
        conversation = self._require(conversation_id)
        conversation.is_favorite = not conversation.is_favorite
        conversation.touch()
        self.store.save(conversation)
        self._notify(conversation.id)
        return conversation.is_favorite

    def update_title(self, title: str, conversation_id: str | None = None) -> None:
        conversation = self._require(conversation_id)
        conversation.title = title.strip() or self.default_title
        conversation.touch()
        self.store.save(conversation)
        self._notify(conversation.id)

    def add_tag(self, tag: str, conversation_id: str | None = None) -> bool:
        conversation = self._require(conversation_id)
        added = conversation.add_tag(tag)
        if added:
            self.store.save(conversation)
            self._notify(conversation.id)
        return added

    def related_source_ids(self, conversation_id: str | None = None) -> list[str]:
        return list(self._require(conversation_id).referenced_source_ids)

    def resolve_citation(self, citation: Citation) -> Document | None:
        """Look the cited document up again through the index."""
        return self.retrieval.index.get(citation.source_id)

    def export(
        self, fmt: ExportFormat | str = ExportFormat.MARKDOWN, conversation_id: str | None = None
    ) -> str:
        return export_conversation(self._require(conversation_id), fmt)

    # Turns

    async def send(self, content: str, conversation_id: str | None = None) -> ConversationMessage:
        """Append a user turn and answer it; returns the assistant turn."""
        content = content.strip()
        if not content:
            raise ValueError("Message content is empty")
        if conversation_id is None:
            conversation_id = self.current_id or self.start_new().id

        async with self._lock_for(conversation_id):
            conversation = self._require(conversation_id)
            conversation.add_message(ConversationMessage(role=MessageRole.USER, content=content))
            self.store.save(conversation)
            return await self._respond(conversation, content)

    async def regenerate_last(self, conversation_id: str | None = None) -> ConversationMessage:
        """Drop the latest answer and answer the preceding user turn again."""
        conversation_id = conversation_id or self.current_id
        if conversation_id is None:
            raise ValueError("No active conversation")

        async with self._lock_for(conversation_id):
            conversation = self._require(conversation_id)
            last = conversation.last_message
            if last is not None and last.is_assistant:
                conversation.remove_message(last.id)
                last = conversation.last_message
            if last is None or not last.is_user:
                raise ValueError("No user message to regenerate a response for")
            self.store.save(conversation)
            return await self._respond(conversation, last.content)

    async def continue_thought(
        self, conversation_id: str | None = None
    ) -> ConversationMessage | None:
        """Ask for an elaboration of the last answer, if the last turn is one."""
        conversation = self._require(conversation_id)
        last = conversation.last_message
        if last is None or not last.is_assistant:
            return None
        return await self.send(CONTINUE_PROMPT, conversation.id)

    def branch(self, from_message_id: str, conversation_id: str | None = None) -> Conversation:
        """New conversation holding a copy of the history up to ``from_message_id``."""
        source = self._require(conversation_id)
        index = source.message_index(from_message_id)
        branch = Conversation(
            title=f"Branch: {source.display_title}",
            messages=[m.model_copy(deep=True) for m in source.messages[: index + 1]],
            tags=list(source.tags),
            referenced_source_ids=list(source.referenced_source_ids),
            branch_parent_id=source.id,
            branch_point_message_id=from_message_id,
        )
        self.store.save(branch)
        self._conversations[branch.id] = branch
        self._states[branch.id] = ConversationState.IDLE
        self._errors[branch.id] = None
        self._suggestions[branch.id] = []
        self.current_id = branch.id
        logger.info(
            "Branched conversation",
            conversation_id=branch.id,
            parent_id=source.id,
            messages=len(branch.messages),
        )
        self._notify(branch.id)
        return branch

    # Internals

    async def _respond(self, conversation: Conversation, question: str) -> ConversationMessage:
        """Answer the user turn at the end of ``conversation``. Caller holds its lock."""
        self._set_state(conversation.id, ConversationState.ACTIVE)
        started = time.perf_counter()
        # The most recent turns, minus the question itself
        history = conversation.context_messages(self.max_context_messages)[:-1]

        try:
            try:
                with probe("conversation.respond", conversation_id=conversation.id):
                    retrieval = await self.retrieval.retrieve(
                        question,
                        history=[m.content for m in history if m.is_user],
                        records=self.records,
                    )
                    prompts = self.prompt_builder.build(
                        question,
                        retrieval,
                        [HistoryTurn(m.role.value, m.content) for m in history],
                    )
                    answer = await self.generator.generate(
                        prompts.user, system_prompt=prompts.system, temperature=self.temperature
                    )
                    title = None
                    if len(conversation.messages) == 1 and conversation.title == self.default_title:
                        title = await self._generate_title(conversation.messages[0].content)
            except asyncio.CancelledError:
                logger.info("Turn cancelled", conversation_id=conversation.id)
                raise
            except Exception as e:
                logger.error(f"Turn failed: {e}", conversation_id=conversation.id)
                message = ConversationMessage(
                    role=MessageRole.ASSISTANT,
                    content=f"I encountered an error: {e}. Please try again.",
                    metadata=MessageMetadata(
                        processing_time=time.perf_counter() - started,
                        model_used=self.generator.model,
                        error=str(e),
                    ),
                )
                conversation.add_message(message)
                self._errors[conversation.id] = str(e)
                self._suggestions[conversation.id] = []
                self.store.save(conversation)
                return message

            citations = build_citations(retrieval.matches)
            suggestions = parse_follow_ups(answer) or list(GENERIC_FOLLOW_UPS)
            message = ConversationMessage(
                role=MessageRole.ASSISTANT,
                content=answer,
                citations=citations,
                metadata=MessageMetadata(
                    query_type=retrieval.query_type.value,
                    search_mode=retrieval.mode.value if retrieval.mode else None,
                    processing_time=time.perf_counter() - started,
                    model_used=self.generator.model,
                    search_results=len(retrieval.matches),
                    suggested_follow_ups=suggestions,
                ),
                token_count=len(answer.split()),
            )

            conversation.add_message(message)
            conversation.reference_sources([c.source_id for c in citations])
            if title:
                conversation.title = title
            self._errors[conversation.id] = None
            self._suggestions[conversation.id] = suggestions
            self.store.save(conversation)
            return message
        finally:
            self._set_state(conversation.id, ConversationState.IDLE)

    async def _generate_title(self, first_message: str) -> str:
        prompt = (
            "Generate a very short (3-5 words) title for a conversation that started "
            f'with this message:\n"{first_message[:200]}"\n\n'
            "Respond with ONLY the title, nothing else."
        )
        try:
            title = await self.generator.generate(
                prompt, system_prompt=TITLE_SYSTEM_PROMPT, temperature=self.title_temperature
            )
            title = title.strip().strip('"').strip()[:50]
            if title:
                return title
        except Exception as e:
            logger.warning(f"Title generation failed, using first words: {e}")
        return " ".join(first_message.split()[:5])

    def _require(self, conversation_id: str | None = None) -> Conversation:
        conversation_id = conversation_id or self.current_id
        if conversation_id is None:
            raise ValueError("No active conversation")
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            conversation = self.store.get(conversation_id)
            if conversation is None:
                raise KeyError(f"Conversation not found: {conversation_id}")
            self._conversations[conversation_id] = conversation
            self._states.setdefault(
                conversation_id,
                ConversationState.IDLE if conversation.messages else ConversationState.EMPTY,
            )
        return conversation

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = self._locks[conversation_id] = asyncio.Lock()
        return lock

    def _set_state(self, conversation_id: str, state: ConversationState) -> None:
        self._states[conversation_id] = state
        self._notify(conversation_id)

    def _notify(self, conversation_id: str) -> None:
        if not self._listeners or conversation_id not in self._conversations:
            return
        snapshot = self.snapshot(conversation_id)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Conversation listener failed", conversation_id=conversation_id)
