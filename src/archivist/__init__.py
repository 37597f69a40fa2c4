"""
Archivist - retrieval and conversation over a personal mail archive.

Messages are indexed into a hybrid document index (embedding vectors plus a
keyword index), questions are routed by intent, and a conversation engine
answers them with numbered citations back to the source messages. A search
agent covers the questions plain retrieval handles poorly: criteria filters,
behavioral patterns and comparisons.

Embedding backends are pluggable: a local Ollama daemon, the OpenAI cloud,
any OpenAI-compatible server, an in-process sentence-transformers model, or
none at all (keyword search only).

Quick Start:
    >>> from archivist.config import setup_container
    >>> from archivist.records import ArchiveRecord
    >>>
    >>> container = setup_container()
    >>> registry = container.get("embedding_registry")
    >>> await registry.select("ollama")
    >>> index = container.get("document_index")
    >>> await index.index_records(records)
    >>>
    >>> engine = container.get("conversation_engine")
    >>> engine.set_records(records)
    >>> reply = await engine.send("What did Sarah say about the budget?")
    >>> print(reply.content, [c.marker for c in reply.citations])

Configuration:
    - ARCHIVIST_EMBEDDINGS__PROVIDER=ollama (ollama, openai, openai_compatible,
      sentence_transformers, none)
    - ARCHIVIST_EMBEDDINGS__OPENAI_API_KEY=sk-...
    - ARCHIVIST_GENERATION__MODEL=llama3.1:8b
    - ARCHIVIST_CONVERSATION__STORE=sqlite
    - ARCHIVIST_OBSERVABILITY__LOG_LEVEL=INFO
"""

__version__ = "0.3.0"

from .agent.search_agent import SearchAgent, SearchPattern
from .config.settings import Settings
from .conversation.engine import ConversationEngine
from .providers.registry import EmbeddingRegistry
from .rag.index import DocumentIndex
from .rag.retriever import RetrievalEngine
from .records import ArchiveRecord

__all__ = [
    "ArchiveRecord",
    "EmbeddingRegistry",
    "DocumentIndex",
    "RetrievalEngine",
    "ConversationEngine",
    "SearchAgent",
    "SearchPattern",
    "Settings",
]
