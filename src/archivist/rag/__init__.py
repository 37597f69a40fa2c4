"""Hybrid document index, query routing and retrieval."""

from .context import PromptBuilder
from .documents import Document, DocumentMatch, SearchMode, make_snippet
from .index import ArchiveStats, DocumentIndex
from .indexer import BatchIndexer, IndexingProgress, IndexingStatus
from .retriever import RetrievalEngine, RetrievalResult
from .router import QueryRouter, QueryType, SearchIntent, SearchStrategy

__all__ = [
    "Document",
    "DocumentMatch",
    "SearchMode",
    "make_snippet",
    "DocumentIndex",
    "ArchiveStats",
    "BatchIndexer",
    "IndexingProgress",
    "IndexingStatus",
    "QueryRouter",
    "QueryType",
    "SearchIntent",
    "SearchStrategy",
    "RetrievalEngine",
    "RetrievalResult",
    "PromptBuilder",
]
