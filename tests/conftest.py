"""
Shared fixtures: deterministic embedding and generation fakes plus a small
archive of records.
"""

from collections.abc import Callable
from datetime import datetime, timedelta

import pytest

from archivist.conversation.engine import ConversationEngine
from archivist.conversation.store import InMemoryConversationStore
from archivist.observability.logging import clear_trace_id
from archivist.observability.probe import clear_trace_metrics
from archivist.providers.base import EmbeddingProvider, ProviderKind, ProviderStatus
from archivist.providers.generation import GenerationBackend
from archivist.providers.registry import EmbeddingRegistry
from archivist.rag.context import PromptBuilder
from archivist.rag.index import DocumentIndex
from archivist.rag.retriever import RetrievalEngine
from archivist.records import ArchiveRecord

VOCABULARY = ["budget", "meeting", "invoice", "vacation", "project", "deadline", "lunch", "report"]


class FakeEmbeddingProvider(EmbeddingProvider):
    """Bag-of-words vectors over a fixed vocabulary."""

    name = "fake"
    kind = ProviderKind.LOCAL_NATIVE

    def __init__(self, model: str = "bow", dimension: int = len(VOCABULARY), fail: bool = False):
        super().__init__(model, dimension)
        self.is_available = True
        self.status_message = "fake ready"
        self.fail = fail
        self.calls: list[list[str]] = []

    async def _probe(self) -> ProviderStatus:
        return ProviderStatus(True, f"fake ready ({self.dimension} dimensions)")

    async def _embed_many(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail:
            from archivist.providers.errors import NetworkError

            raise NetworkError("connection refused", self.name)
        vectors = []
        for text in texts:
            lower = text.lower()
            vector = [float(lower.count(word)) for word in VOCABULARY[: self.dimension]]
            vectors.append(vector + [0.0] * (self.dimension - len(vector)))
        return vectors


class FakeGenerator(GenerationBackend):
    """Generation backend answering from a script, or from a callable."""

    name = "fake"

    def __init__(self, responses: list[str] | Callable[[str], str] | None = None):
        super().__init__(model="fake-llm")
        self.responses = responses if responses is not None else []
        self.prompts: list[dict] = []

    async def generate(self, prompt, system_prompt=None, temperature=None):
        self.prompts.append(
            {"prompt": prompt, "system_prompt": system_prompt, "temperature": temperature}
        )
        if callable(self.responses):
            return self.responses(prompt)
        if not self.responses:
            return "Fallback answer"
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_records(now: datetime | None = None) -> list[ArchiveRecord]:
    now = now or datetime(2024, 6, 14, 12, 0)
    return [
        ArchiveRecord(
            id="m1",
            sender="Sarah Chen <sarah@example.com>",
            subject="Q3 budget review",
            body="The budget for Q3 needs another pass. I will send the revised numbers by Friday.",
            date="2024-06-13",
            timestamp=now - timedelta(days=1),
        ),
        ArchiveRecord(
            id="m2",
            sender="Tom Baker <tom@example.com>",
            subject="Team lunch",
            body="Lunch is booked for Thursday at noon. Let me know if you can make it.",
            date="2024-06-10",
            timestamp=now - timedelta(days=4),
        ),
        ArchiveRecord(
            id="m3",
            sender="Sarah Chen <sarah@example.com>",
            subject="Project deadline",
            body="The project deadline was yesterday and the report is now overdue. Unacceptable.",
            date="2024-05-20",
            timestamp=now - timedelta(days=25),
        ),
        ArchiveRecord(
            id="m4",
            sender="Billing <billing@vendor.com>",
            subject="Invoice 1042",
            body="Please find attached invoice 1042. Payment is past due.",
            date="2024-04-02",
            timestamp=now - timedelta(days=73),
        ),
        ArchiveRecord(
            id="m5",
            sender="Priya Patel <priya@example.com>",
            subject="Vacation plans",
            body="I'll be on vacation in July. Frustrated that the flights are so expensive.",
            date="2024-03-15",
            timestamp=now - timedelta(days=91),
        ),
    ]


@pytest.fixture(autouse=True)
def reset_observability():
    clear_trace_id()
    clear_trace_metrics()
    yield
    clear_trace_id()
    clear_trace_metrics()


@pytest.fixture
def records() -> list[ArchiveRecord]:
    return make_records()


@pytest.fixture
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def registry(fake_provider) -> EmbeddingRegistry:
    return EmbeddingRegistry([fake_provider], active="fake")


@pytest.fixture
def keyword_registry() -> EmbeddingRegistry:
    return EmbeddingRegistry()


@pytest.fixture
def index(registry) -> DocumentIndex:
    return DocumentIndex(registry, max_concurrent=2, sample_on_miss=3)


@pytest.fixture
def retrieval(index) -> RetrievalEngine:
    return RetrievalEngine(index, max_evidence=5)


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def engine(retrieval, generator, store) -> ConversationEngine:
    return ConversationEngine(
        retrieval=retrieval,
        generator=generator,
        store=store,
        prompt_builder=PromptBuilder(),
    )
